"""GPT header access.

Reading, validating and writing of the primary and backup GPT headers of an image,
as well as the computations needed to keep them consistent with their partition
entry arrays.

See https://uefi.org/specifications.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from zlib import crc32

from typing_extensions import Annotated

from .base import (
    ChecksumError,
    ImageIOError,
    Role,
    RunContext,
    SizeAlignmentError,
    StructuralError,
    UsageError,
)
from .bytestruct import ByteStruct
from .image import Image

__all__ = [
    "Header",
    "header_checksum",
    "align_up",
    "partition_array_offset",
    "array_checksum",
    "check_entries_count",
    "minimum_image_sectors",
    "check_image_size",
    "validate_header",
    "read_headers",
    "write_headers",
    "SIGNATURE",
    "HEADER_SIZE",
    "PARTITION_ENTRY_SIZE",
    "PRIMARY_HEADER_LBA",
    "PRIMARY_ARRAY_LBA",
]


log = logging.getLogger(__name__)


SIGNATURE = b"EFI PART"
HEADER_SIZE = 92
PARTITION_ENTRY_SIZE = 128

PRIMARY_HEADER_LBA = 1
PRIMARY_ARRAY_LBA = 2  # array directly follows the protective MBR and primary header

# 1 protective MBR + 1 header + 32 sectors of a 128 entry array
MIN_BACKUP_LBA = 34
# 1 header + 32 sectors of a 128 entry array at the end of the image
BACKUP_RESERVED_SECTORS = 33

MAX_DEFAULT_ENTRIES = 128
ENTRIES_ALIGNMENT = 4  # 4 * 128 bytes fill a 512 byte sector


@dataclass(frozen=True)
class Header(ByteStruct, byteorder="<"):
    """GPT header, 92 bytes long.

    Only the fields needed to resize the partition entry array are interpreted;
    all other fields are carried along unmodified.
    """

    signature: Annotated[bytes, 8]
    revision: Annotated[int, 4]
    header_size: Annotated[int, 4]
    header_crc32: Annotated[int, 4]
    reserved: Annotated[bytes, 4]
    current_lba: Annotated[int, 8]
    backup_lba: Annotated[int, 8]
    first_usable_lba: Annotated[int, 8]
    last_usable_lba: Annotated[int, 8]
    disk_guid: Annotated[bytes, 16]
    partition_array_lba: Annotated[int, 8]
    partition_entries_count: Annotated[int, 4]
    partition_entry_size: Annotated[int, 4]
    partition_array_crc32: Annotated[int, 4]

    def with_header_crc32(self) -> Header:
        """Return a copy of the header carrying its own, freshly computed CRC32.

        Must be applied after every other field change.
        """
        return replace(self, header_crc32=header_checksum(bytes(self)))


def header_checksum(b: bytes) -> int:
    """Return the CRC32 of the GPT header `b` with its CRC32 field zeroed out."""
    if len(b) != HEADER_SIZE:
        raise ValueError(f"GPT header is {HEADER_SIZE} bytes long, got {len(b)} bytes")
    start = Header.field_offset("header_crc32")
    header_for_crc32 = b[:start] + b"\x00" * 4 + b[start + 4 :]
    return crc32(header_for_crc32)


def align_up(value: int, alignment: int) -> int:
    """Round `value` up to the next multiple of `alignment`.

    Values which already are a multiple of `alignment` are returned unchanged.
    """
    return (value + alignment - 1) // alignment * alignment


def partition_array_offset(role: Role, entries_count: int, context: RunContext) -> int:
    """Return the byte offset of the partition entry array belonging to the header
    of role `role`, given an array of `entries_count` entries.

    The primary array always starts at sector 2. The backup array ends directly
    before the backup header and occupies as many whole sectors as needed to hold
    `entries_count` entries.
    """
    sector_size = context.sector_size
    if role is Role.PRIMARY:
        return PRIMARY_ARRAY_LBA * sector_size

    array_size = align_up(entries_count * PARTITION_ENTRY_SIZE, sector_size)
    return context.backup_lba * sector_size - array_size


def array_checksum(
    image: Image, role: Role, entries_count: int, context: RunContext
) -> int:
    """Return the CRC32 of the `entries_count` partition entries found at the array
    offset of role `role`.

    Raises `ImageIOError` if the array would start before the beginning of the
    image or if the image ends before the last entry.
    """
    offset = partition_array_offset(role, entries_count, context)
    if offset < 0:
        raise ImageIOError(
            f"{image} - {role} partition array of {entries_count} entries would "
            f"start at byte {offset}, before the beginning of the image"
        )
    array = image.read_at(offset, entries_count * PARTITION_ENTRY_SIZE)
    checksum = crc32(array)
    log.debug(
        f"{image} - {role} partition array at byte {offset}, {entries_count} "
        f"entries, CRC32 {checksum:#010x}"
    )
    return checksum


def check_entries_count(entries_count: int) -> None:
    """Raise `UsageError` if a partition entry array of `entries_count` entries
    cannot be requested.

    Counts above 128 must be a multiple of 4 so the array fills whole 512 byte
    sectors.
    """
    if entries_count < 1:
        raise UsageError(
            f"Partition entry count must be at least 1, got {entries_count}"
        )
    if entries_count > MAX_DEFAULT_ENTRIES and entries_count % ENTRIES_ALIGNMENT:
        raise UsageError(
            f"Partition entry count must be at most {MAX_DEFAULT_ENTRIES} or a "
            f"multiple of {ENTRIES_ALIGNMENT}, got {entries_count}"
        )


def minimum_image_sectors(entries_count: int, sector_size: int) -> int:
    """Return the minimum amount of sectors an image needs to hold a GPT with a
    partition entry array of `entries_count` entries.
    """
    array_sectors = -(-entries_count * PARTITION_ENTRY_SIZE // sector_size)
    return MIN_BACKUP_LBA + BACKUP_RESERVED_SECTORS + array_sectors


def check_image_size(image: Image, entries_count: int) -> None:
    """Raise `SizeAlignmentError` if the size of `image` is not a multiple of its
    sector size, or `ImageIOError` if `image` is too small for an array of
    `entries_count` entries.
    """
    sector_size = image.sector_size
    if image.size % sector_size != 0:
        raise SizeAlignmentError(
            f"{image} - Image size of {image.size} bytes is not a multiple of the "
            f"sector size {sector_size}"
        )

    min_sectors = minimum_image_sectors(entries_count, sector_size)
    if image.size_lba < min_sectors:
        raise ImageIOError(
            f"{image} - Image holds {image.size_lba} sectors, at least "
            f"{min_sectors} sectors are required for {entries_count} entries"
        )


def validate_header(header: Header, role: Role, context: RunContext) -> None:
    """Check a GPT header read from an image before it is modified.

    ``context.backup_lba`` must be the backup LBA recorded in the primary header.

    Raises `StructuralError` if the self-referential fields of the header are
    inconsistent, or `ChecksumError` if the stored header CRC32 does not match.
    """
    if header.signature != SIGNATURE:
        raise StructuralError(role, "signature", SIGNATURE, header.signature)

    if role is Role.PRIMARY:
        if header.current_lba != PRIMARY_HEADER_LBA:
            raise StructuralError(
                role, "current_lba", PRIMARY_HEADER_LBA, header.current_lba
            )
        if header.backup_lba <= MIN_BACKUP_LBA:
            raise StructuralError(
                role, "backup_lba", f"greater than {MIN_BACKUP_LBA}", header.backup_lba
            )
        if header.partition_array_lba != PRIMARY_ARRAY_LBA:
            raise StructuralError(
                role,
                "partition_array_lba",
                PRIMARY_ARRAY_LBA,
                header.partition_array_lba,
            )
    else:
        if header.current_lba != context.backup_lba:
            raise StructuralError(
                role, "current_lba", context.backup_lba, header.current_lba
            )
        if header.backup_lba != PRIMARY_HEADER_LBA:
            raise StructuralError(
                role, "backup_lba", PRIMARY_HEADER_LBA, header.backup_lba
            )

    if header.header_size != HEADER_SIZE:
        raise StructuralError(role, "header_size", HEADER_SIZE, header.header_size)
    if header.partition_entry_size != PARTITION_ENTRY_SIZE:
        raise StructuralError(
            role,
            "partition_entry_size",
            PARTITION_ENTRY_SIZE,
            header.partition_entry_size,
        )

    computed = header_checksum(bytes(header))
    if computed != header.header_crc32:
        raise ChecksumError(
            role,
            "header_crc32",
            f"{computed:#010x}",
            f"{header.header_crc32:#010x}",
            message=(
                f"{role} GPT header: CRC32 does not match (stored "
                f"{header.header_crc32:#010x}, computed {computed:#010x})"
            ),
        )


def read_headers(image: Image) -> tuple[Header, Header]:
    """Read the primary and the backup GPT header of `image`.

    The backup header is read from the sector recorded in the primary header.
    Neither header is validated.
    """
    sector_size = image.sector_size
    primary = Header.from_bytes(
        image.read_at(PRIMARY_HEADER_LBA * sector_size, HEADER_SIZE)
    )
    log.debug(f"{image} - Primary header: {primary}")

    backup = Header.from_bytes(
        image.read_at(primary.backup_lba * sector_size, HEADER_SIZE)
    )
    log.debug(f"{image} - Backup header: {backup}")
    return primary, backup


def write_headers(
    image: Image, primary: Header, backup: Header, context: RunContext
) -> None:
    """Write `primary` and `backup` to their positions on `image`.

    The headers are written one after another. If writing the backup header fails,
    the image is left with only the primary header updated.
    """
    image.write_at(PRIMARY_HEADER_LBA * context.sector_size, bytes(primary))
    image.write_at(context.backup_lba * context.sector_size, bytes(backup))
    log.info(f"{image} - Wrote primary and backup GPT header")
