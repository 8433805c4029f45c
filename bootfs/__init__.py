"""Readers for ext2/FAT/ISO 9660 volumes, boot menu configs, ACPI/SMBIOS tables, BLAKE2b and a text-mode screen model."""

__version__ = "0.1.0"

__all__ = ["acpi", "blake2b", "config", "ext2", "fat32", "files", "iso9660", "textmode", "volume"]