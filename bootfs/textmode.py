"""An 80x25 VGA text-mode terminal backend with double buffering.

Video memory is modelled as a ``bytearray`` of character/attribute byte
pairs, laid out exactly as the hardware text buffer at 0xB8000.
"""

from __future__ import annotations

from typing import Union

VD_COLS = 80 * 2
VD_ROWS = 25
VIDEO_SIZE = VD_ROWS * VD_COLS
VIDEO_BOTTOM = VIDEO_SIZE - 1

DEFAULT_PALETTE = 0x07
_BRIGHT = 1 << 3

# ANSI colour index to VGA colour index.
_ANSI_COLOURS = (0, 4, 2, 6, 1, 5, 3, 7)


def _swap_nibbles(value: int) -> int:
    return ((value << 4) | (value >> 4)) & 0xFF


class TextModeTerminal:
    """Character cells, colours, cursor and scrolling of a VGA text screen.

    ``back_buffer`` holds what is being drawn, ``front_buffer`` what was last
    flushed, and ``video_mem`` what the screen shows. When ``managed`` is
    true the terminal draws its own cursor; ``serial`` shortens a managed
    terminal to 24 rows so it fits a serial console.
    """

    def __init__(self, managed: bool = True, serial: bool = False) -> None:
        self.video_mem = bytearray(VIDEO_SIZE)
        self.back_buffer = bytearray(VIDEO_SIZE)
        self.front_buffer = bytearray(VIDEO_SIZE)

        self.cursor_offset = 0
        self.old_cursor_offset = 0
        self.text_palette = DEFAULT_PALETTE
        self.saved_state_text_palette = DEFAULT_PALETTE
        self.saved_state_cursor_offset = 0

        self.cursor_enabled = False
        self.scroll_enabled = True

        self.clear(False)
        self.double_buffer_flush()

        self.cols = 80
        self.rows = 24 if managed and serial else 25
        self.scroll_top_margin = 0
        self.scroll_bottom_margin = self.rows
        self.cursor_enabled = managed

        self.full_refresh()

    def _draw_cursor(self) -> None:
        attr = self.back_buffer[self.cursor_offset + 1]
        self.video_mem[self.cursor_offset + 1] = _swap_nibbles(attr)

    def _blank_row(self, row: int) -> None:
        start = row * VD_COLS
        self.back_buffer[start:start + VD_COLS:2] = b" " * (VD_COLS // 2)
        self.back_buffer[start + 1:start + VD_COLS:2] = bytes([self.text_palette]) * (VD_COLS // 2)

    def save_state(self) -> None:
        """Remember the current colours and cursor position."""
        self.saved_state_text_palette = self.text_palette
        self.saved_state_cursor_offset = self.cursor_offset

    def restore_state(self) -> None:
        """Return to the colours and cursor position last saved."""
        self.text_palette = self.saved_state_text_palette
        self.cursor_offset = self.saved_state_cursor_offset

    def swap_palette(self) -> None:
        """Exchange foreground and background colours."""
        self.text_palette = _swap_nibbles(self.text_palette)

    def scroll(self) -> None:
        """Move the scroll region up one row and blank its last row."""
        top = self.scroll_top_margin * VD_COLS
        bottom = (self.scroll_bottom_margin - 1) * VD_COLS
        if bottom > top:
            self.back_buffer[top:bottom] = self.back_buffer[top + VD_COLS:bottom + VD_COLS]
        self._blank_row(self.scroll_bottom_margin - 1)

    def revscroll(self) -> None:
        """Move the scroll region down one row and blank its first row."""
        top = self.scroll_top_margin * VD_COLS
        last = (self.scroll_bottom_margin - 1) * VD_COLS - 2
        if last >= top:
            self.back_buffer[top + VD_COLS:last + VD_COLS + 1] = self.back_buffer[top:last + 1]
        self._blank_row(self.scroll_top_margin)

    def clear(self, move: bool = True) -> None:
        """Fill the screen with blanks; home the cursor if ``move``."""
        for row in range(VD_ROWS):
            self._blank_row(row)
        if move:
            self.cursor_offset = 0

    def full_refresh(self) -> None:
        """Redraw the whole screen from the front buffer."""
        self.video_mem[:] = self.front_buffer
        self.back_buffer[:] = self.front_buffer
        if self.cursor_enabled:
            self._draw_cursor()
            self.old_cursor_offset = self.cursor_offset

    def double_buffer_flush(self) -> None:
        """Copy the cells that changed since the last flush to the screen."""
        if self.cursor_enabled:
            self._draw_cursor()

        if self.cursor_offset != self.old_cursor_offset or not self.cursor_enabled:
            old_attr = self.old_cursor_offset + 1
            self.video_mem[old_attr] = self.back_buffer[old_attr]

        cursor_attr = self.cursor_offset + 1
        for i, (back, front) in enumerate(zip(self.back_buffer, self.front_buffer)):
            if back == front:
                continue
            self.front_buffer[i] = back
            if self.cursor_enabled and i == cursor_attr:
                continue
            self.video_mem[i] = back

        if self.cursor_enabled:
            self.old_cursor_offset = self.cursor_offset

    def get_cursor_pos(self) -> tuple[int, int]:
        """Return the cursor position as ``(x, y)``."""
        return (self.cursor_offset % VD_COLS) // 2, self.cursor_offset // VD_COLS

    def set_cursor_pos(self, x: int, y: int) -> None:
        """Move the cursor, clamping the position to the screen."""
        if x < 0:
            x = 0
        elif x >= VD_COLS // 2:
            x = VD_COLS // 2 - 1
        if y < 0:
            y = 0
        elif y >= VD_ROWS:
            y = VD_ROWS - 1
        self.cursor_offset = y * VD_COLS + x * 2

    def move_character(self, new_x: int, new_y: int, old_x: int, old_y: int) -> None:
        """Copy the character at ``(old_x, old_y)`` to ``(new_x, new_y)``."""
        for x, y in ((old_x, old_y), (new_x, new_y)):
            if not (0 <= x < VD_COLS // 2 and 0 <= y < VD_ROWS):
                return
        self.back_buffer[new_y * VD_COLS + new_x * 2] = \
            self.back_buffer[old_y * VD_COLS + old_x * 2]

    def set_text_fg(self, fg: int) -> None:
        self.text_palette = (self.text_palette & 0xF0) | _ANSI_COLOURS[fg]

    def set_text_bg(self, bg: int) -> None:
        self.text_palette = (self.text_palette & 0x0F) | (_ANSI_COLOURS[bg] << 4)

    def set_text_fg_bright(self, fg: int) -> None:
        self.text_palette = (self.text_palette & 0xF0) | _ANSI_COLOURS[fg] | _BRIGHT

    def set_text_bg_bright(self, bg: int) -> None:
        self.text_palette = (self.text_palette & 0x0F) | ((_ANSI_COLOURS[bg] | _BRIGHT) << 4)

    def set_text_fg_default(self) -> None:
        self.text_palette = (self.text_palette & 0xF0) | 7

    def set_text_bg_default(self) -> None:
        self.text_palette &= 0x0F

    def set_text_fg_default_bright(self) -> None:
        self.text_palette = (self.text_palette & 0xF0) | 7 | _BRIGHT

    def set_text_bg_default_bright(self) -> None:
        self.text_palette = (self.text_palette & 0x0F) | (_BRIGHT << 4)

    def putchar(self, c: Union[int, str, bytes]) -> None:
        """Write one character at the cursor and advance it."""
        if isinstance(c, str):
            c = c.encode("latin-1")
        if isinstance(c, (bytes, bytearray)):
            if len(c) != 1:
                raise ValueError("putchar takes exactly one character")
            c = c[0]
        if not 0 <= c <= 0xFF:
            raise ValueError("character code out of range")

        offset = self.cursor_offset
        self.back_buffer[offset] = c
        self.back_buffer[offset + 1] = self.text_palette
        if (offset // VD_COLS == self.scroll_bottom_margin - 1
                and offset % VD_COLS == VD_COLS - 2):
            if self.scroll_enabled:
                self.scroll()
                self.cursor_offset = offset - offset % VD_COLS
        elif offset >= VIDEO_BOTTOM - 1:
            self.cursor_offset = offset - offset % VD_COLS
        else:
            self.cursor_offset = offset + 2