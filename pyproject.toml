[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bootfs"
version = "0.1.0"
description = "Read boot-time filesystems (ext2/ext4, FAT12/16/32, ISO 9660), boot menu configs, ACPI tables and a VGA text-mode model from raw images"
requires-python = ">=3.10"
dependencies = []
keywords = ["bootloader", "filesystem", "ext2", "fat32", "iso9660", "acpi", "smbios", "blake2b", "disk-image"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: System :: Boot",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bootfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
