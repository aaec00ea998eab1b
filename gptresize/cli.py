"""Command line interface of ``gptresize``."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from . import __version__
from .base import UsageError
from .gpt import Header
from .image import DEFAULT_SECTOR_SIZE
from .resize import resize

__all__ = ["main", "build_parser"]


log = logging.getLogger(__name__)

PROG = "gptresize"
LOG_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description=(
            "Change the number of partition entries declared in both GPT headers "
            "of a disk image and update their checksums in place. The partition "
            "entry arrays themselves are not modified."
        ),
    )
    parser.add_argument(
        "-n",
        "--entries",
        type=int,
        required=True,
        metavar="COUNT",
        help="new number of partition entries (1-128, or a multiple of 4)",
    )
    parser.add_argument(
        "-s",
        "--sector-size",
        type=int,
        default=DEFAULT_SECTOR_SIZE,
        metavar="BYTES",
        help=f"logical sector size of the image (default: {DEFAULT_SECTOR_SIZE})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="validate and compute the new headers without writing them",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="print progress information, repeat for debug output",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("image", help="path of the disk image to modify in place")
    return parser


def _describe(header: Header) -> str:
    return (
        f"LBA {header.current_lba}, array LBA {header.partition_array_lba}, "
        f"{header.partition_entries_count} entries, "
        f"array CRC32 {header.partition_array_crc32:#010x}, "
        f"header CRC32 {header.header_crc32:#010x}"
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = LOG_LEVELS[min(args.verbose, len(LOG_LEVELS) - 1)]
    logging.basicConfig(
        level=level, format=f"{PROG}: %(levelname)s: %(message)s", stream=sys.stderr
    )

    try:
        result = resize(
            args.image,
            args.entries,
            sector_size=args.sector_size,
            dry_run=args.dry_run,
        )
    except UsageError as e:
        parser.error(str(e))
    except (ValueError, OSError) as e:
        log.debug("Resizing failed", exc_info=True)
        print(f"{PROG}: error: {e}", file=sys.stderr)
        return 1

    if args.verbose or args.dry_run:
        print(f"primary: {_describe(result.primary)}")
        print(f"backup:  {_describe(result.backup)}")
    return 0
