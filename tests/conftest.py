"""Fixtures used across the test suite."""

import os
import struct
from pathlib import Path
from shutil import rmtree
from tempfile import mkdtemp, mkstemp
from uuid import UUID
from zlib import crc32

import pytest

HEADER_FORMAT = "<8sIIIIQQQQ16sQIII"
ENTRY_FORMAT = "<16s16sQQQ72s"
REVISION = 0x00010000  # 1.0

DISK_GUID = UUID("6C0B3F3A-5E34-4C4C-9C2B-0A1E7F3D2B10")
LINUX_FILESYSTEM = UUID("0FC63DAF-8483-4772-8E79-3D69D8477DE4")
PARTITION_GUID = UUID("2D4F5B7E-1C9A-4E53-8A0B-9F1E3C7D6A42")

IMAGE_SIZE = 6 * 1024 * 1024


@pytest.fixture
def tempdir():
    """Fixture providing a new temporary directory for testing purposes.

    Returns a ``pathlib.Path`` object representing the path of the temporary directory.
    """
    path = Path(mkdtemp())
    yield path
    rmtree(path)  # clean up


@pytest.fixture
def tempfile():
    """Fixture providing a new temporary file for testing purposes.

    Returns a ``pathlib.Path`` object representing the path of the temporary file.
    """
    fd, path_str = mkstemp()
    os.close(fd)  # we are going to use a Path object instead
    path = Path(path_str)
    yield path
    path.unlink(missing_ok=True)  # clean up


def _partition_array(entries_count: int) -> bytes:
    """Partition entry array holding a single Linux partition followed by empty
    entries.
    """
    name = "root".encode("utf-16le")
    first = struct.pack(
        ENTRY_FORMAT,
        LINUX_FILESYSTEM.bytes_le,
        PARTITION_GUID.bytes_le,
        2048,
        4095,
        0,
        name,
    )
    return first + b"\x00" * 128 * (entries_count - 1)


def _header(
    current_lba: int,
    backup_lba: int,
    first_usable_lba: int,
    last_usable_lba: int,
    array_lba: int,
    entries_count: int,
    array_crc32: int,
) -> bytes:
    header = struct.pack(
        HEADER_FORMAT,
        b"EFI PART",
        REVISION,
        92,
        0,  # placeholder for header CRC32
        0,  # reserved
        current_lba,
        backup_lba,
        first_usable_lba,
        last_usable_lba,
        DISK_GUID.bytes_le,
        array_lba,
        entries_count,
        128,
        array_crc32,
    )
    header_crc32 = crc32(header).to_bytes(4, "little")
    return header[:16] + header_crc32 + header[20:]


def write_gpt(path: Path, size: int, lss: int, entries_count: int) -> None:
    """Write a zero-filled image of ``size`` bytes holding a GPT with a partition
    entry array of ``entries_count`` entries to ``path``.

    Mirrors the layout common partitioning tools produce: primary array at LBA 2,
    backup array directly in front of the backup header in the last sector.
    """
    array = _partition_array(entries_count)
    array_sectors = -(-len(array) // lss)
    last_lba = size // lss - 1
    backup_array_lba = last_lba - array_sectors
    first_usable = 2 + array_sectors
    last_usable = backup_array_lba - 1

    array_crc32 = crc32(array)
    primary = _header(
        1, last_lba, first_usable, last_usable, 2, entries_count, array_crc32
    )
    backup = _header(
        last_lba,
        1,
        first_usable,
        last_usable,
        backup_array_lba,
        entries_count,
        array_crc32,
    )

    with path.open("wb") as f:
        f.truncate(size)
        f.seek(510)
        f.write(b"\x55\xaa")  # protective MBR signature
        f.seek(lss)
        f.write(primary)
        f.seek(2 * lss)
        f.write(array)
        f.seek(backup_array_lba * lss)
        f.write(array)
        f.seek(last_lba * lss)
        f.write(backup)


@pytest.fixture
def gpt_image(tempfile):
    """Fixture providing a factory writing a GPT disk image to a temporary file.

    The factory accepts the keyword arguments ``size`` (default 6 MiB), ``lss``
    (logical sector size, default 512) and ``entries_count`` (default 128) and
    returns the ``pathlib.Path`` of the image.
    """

    def factory(*, size: int = IMAGE_SIZE, lss: int = 512, entries_count: int = 128):
        write_gpt(tempfile, size, lss, entries_count)
        return tempfile

    return factory
