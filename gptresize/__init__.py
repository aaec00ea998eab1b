"""Resize the partition entry array declared by a GPT disk image.

Produces GPT images with partition entry counts other than the usual 128, for
example to test partitioning software against unusual but valid tables.
"""

__version__ = "0.1.0"

from .base import (
    ChecksumError,
    ImageIOError,
    Role,
    SizeAlignmentError,
    StructuralError,
    UsageError,
    ValidationError,
)
from .resize import ResizeResult, resize

__all__ = [
    "resize",
    "ResizeResult",
    "Role",
    "ValidationError",
    "StructuralError",
    "ChecksumError",
    "SizeAlignmentError",
    "UsageError",
    "ImageIOError",
]
