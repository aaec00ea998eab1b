"""Exception classes, data structures and helper functions used across ``gptresize``."""

from __future__ import annotations

from enum import Enum
from typing import Any, NamedTuple

__all__ = [
    "Role",
    "RunContext",
    "ValidationError",
    "StructuralError",
    "ChecksumError",
    "SizeAlignmentError",
    "UsageError",
    "ImageIOError",
    "is_power_of_two",
]


class Role(Enum):
    """Which of the two redundant copies of a GPT header is meant."""

    PRIMARY = "primary"
    BACKUP = "backup"

    def __str__(self) -> str:
        return self.value


class RunContext(NamedTuple):
    """Values fixed for the duration of a single run against one image.

    - ``sector_size``: Logical sector size of the image in bytes.
    - ``backup_lba``: Sector of the backup GPT header as recorded in the primary
      GPT header.
    """

    sector_size: int
    backup_lba: int


class ValidationError(ValueError):
    """Exception raised if a GPT header read from an image does not conform to the
    structure this tool expects.

    Carries the role of the offending header, the name of the offending field and
    the expected and observed values so the failure can be diagnosed without
    looking at the image in a hex editor.
    """

    def __init__(
        self,
        role: Role,
        field: str,
        expected: Any,
        observed: Any,
        message: str | None = None,
    ):
        self.role = role
        self.field = field
        self.expected = expected
        self.observed = observed
        if message is None:
            message = (
                f"{role} GPT header: {field} must be {expected}, got {observed}"
            )
        super().__init__(message)


class StructuralError(ValidationError):
    """Exception raised if a self-referential field of a GPT header (LBAs, sizes,
    signature) is inconsistent.
    """


class ChecksumError(ValidationError):
    """Exception raised if the stored CRC32 of a GPT header does not match the
    CRC32 computed over the header.

    In contrast to `StructuralError`, the header may look well-formed but its
    content is already inconsistent with its digest.
    """


class SizeAlignmentError(ValueError):
    """Exception raised if the size of an image is not a multiple of the sector
    size.
    """


class UsageError(ValueError):
    """Exception raised if a caller passes an unusable parameter, for example an
    illegal partition entry count.
    """


class ImageIOError(OSError):
    """Exception raised if fewer bytes than requested could be read from or written
    to an image, or if an image is too small to hold the requested GPT layout.
    """


def is_power_of_two(value: int) -> bool:
    """Check if ``value`` is a power of two.

    ``value`` must be an ``int`` greater than zero.

    Returns whether ``value`` can be expressed as 2 to the power of x, with x being
    an integer greater than or equal to zero.
    """
    if value <= 0:
        raise ValueError("Value must be greater than 0")
    return value & (value - 1) == 0
