"""Change the declared size of the partition entry array of a GPT image.

The partition entry arrays themselves are never moved or rewritten. Only the
bookkeeping fields of both GPT headers are updated so the image stays consistent
with its new declared array size.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, NamedTuple

from .base import Role, RunContext
from .gpt import (
    Header,
    array_checksum,
    check_entries_count,
    check_image_size,
    partition_array_offset,
    read_headers,
    validate_header,
    write_headers,
)
from .image import DEFAULT_SECTOR_SIZE, Image

if TYPE_CHECKING:
    from .typing_ import StrPath

__all__ = ["ResizeResult", "mutate_header", "resize"]


log = logging.getLogger(__name__)


class ResizeResult(NamedTuple):
    """GPT headers of an image before and after resizing its partition entry
    array.
    """

    primary_before: Header
    backup_before: Header
    primary: Header
    backup: Header


def mutate_header(
    header: Header,
    role: Role,
    entries_count: int,
    image: Image,
    context: RunContext,
) -> Header:
    """Return a copy of the validated `header` declaring a partition entry array of
    `entries_count` entries.

    The array CRC32 is computed over the bytes currently found on `image` at the
    array offset for `role`. For the backup header, the array LBA is moved so the
    array ends directly before the header. The header CRC32 is updated last.
    """
    header = replace(header, partition_entries_count=entries_count)

    checksum = array_checksum(image, role, entries_count, context)
    header = replace(header, partition_array_crc32=checksum)

    if role is Role.BACKUP:
        offset = partition_array_offset(role, entries_count, context)
        assert offset % context.sector_size == 0, "array offset not sector aligned"
        header = replace(header, partition_array_lba=offset // context.sector_size)

    return header.with_header_crc32()


def resize(
    path: StrPath,
    entries_count: int,
    *,
    sector_size: int = DEFAULT_SECTOR_SIZE,
    dry_run: bool = False,
) -> ResizeResult:
    """Declare a partition entry array of `entries_count` entries in both GPT
    headers of the image at `path`, in place.

    The image must already contain a valid array of at least `entries_count`
    entries at each resolved array offset.

    If `dry_run` is true, nothing is written to the image.

    **Caution:** If writing the backup header fails, the image is left with
    an updated primary header and an outdated backup header.
    """
    check_entries_count(entries_count)

    # read phase
    with Image.open(path, sector_size=sector_size) as image:
        check_image_size(image, entries_count)
        primary_before, backup_before = read_headers(image)

    # validate phase
    context = RunContext(sector_size, primary_before.backup_lba)
    validate_header(primary_before, Role.PRIMARY, context)
    validate_header(backup_before, Role.BACKUP, context)
    log.info(
        f"{path} - Valid GPT found, {primary_before.partition_entries_count} "
        f"partition entries, backup header at LBA {context.backup_lba}"
    )

    # mutate and write phase
    with Image.open(path, sector_size=sector_size, readonly=dry_run) as image:
        primary = mutate_header(
            primary_before, Role.PRIMARY, entries_count, image, context
        )
        backup = mutate_header(
            backup_before, Role.BACKUP, entries_count, image, context
        )

        if dry_run:
            log.info(f"{image} - Dry run, not writing GPT headers")
        else:
            log.info(
                f"{image} - Resizing partition entry arrays to {entries_count} entries"
            )
            write_headers(image, primary, backup, context)
            image.flush()

    return ResizeResult(primary_before, backup_before, primary, backup)
