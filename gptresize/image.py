"""Image access.

An image is a regular file holding a raw disk image. It is treated as a flat,
byte-addressable sequence which is divided into sectors of a fixed size.
"""

from __future__ import annotations

import logging
import os
from stat import S_ISREG
from types import TracebackType
from typing import TYPE_CHECKING, Any

from .base import ImageIOError, UsageError, is_power_of_two

if TYPE_CHECKING:
    from .typing_ import ReadableBuffer, StrPath

__all__ = ["Image", "check_sector_size", "DEFAULT_SECTOR_SIZE", "MIN_SECTOR_SIZE"]


log = logging.getLogger(__name__)


DEFAULT_SECTOR_SIZE = 512
MIN_SECTOR_SIZE = 512  # minimum logical sector size required for GPT partitioning


if hasattr(os, "pread") and hasattr(os, "pwrite"):
    _read = os.pread
    _write = os.pwrite
else:

    def _read(fd: int, size: int, pos: int) -> bytes:
        """Read `size` bytes from file descriptor `fd` starting at byte `pos`."""
        os.lseek(fd, pos, os.SEEK_SET)
        return os.read(fd, size)

    def _write(fd: int, b: ReadableBuffer, pos: int) -> int:
        """Write raw bytes `b` to file descriptor `fd` starting at byte `pos`."""
        os.lseek(fd, pos, os.SEEK_SET)
        return os.write(fd, b)


def check_sector_size(sector_size: int) -> None:
    """Raise `UsageError` if `sector_size` cannot be used for GPT partitioning."""
    if sector_size < MIN_SECTOR_SIZE:
        raise UsageError(
            f"GPT partitioning requires a sector size of at least {MIN_SECTOR_SIZE} "
            f"bytes, got {sector_size}"
        )
    if not is_power_of_two(sector_size):
        raise UsageError(f"Sector size must be a power of 2, got {sector_size}")


class Image:
    """Disk image file which one can read from and write to at byte offsets.

    Do not use `__init__` directly, use `Image.open()` instead.
    """

    def __init__(
        self,
        fd: int,
        path: StrPath,
        size: int,
        sector_size: int,
        writable: bool,
    ):
        self._fd = fd
        self._path = str(path)
        self._size = size
        self._sector_size = sector_size
        self._writable = writable
        self._closed = False

        mode = "read-write" if writable else "read-only"
        log.info(f"Opened image {self} ({mode})")
        log.info(f"{self} - Size: {size} bytes, sector size: {sector_size} bytes")

    @classmethod
    def open(
        cls,
        path: StrPath,
        *,
        sector_size: int = DEFAULT_SECTOR_SIZE,
        readonly: bool = True,
    ) -> Image:
        """Open the disk image at `path`."""
        check_sector_size(sector_size)

        read_write_flag = os.O_RDONLY if readonly else os.O_RDWR
        flags = read_write_flag | getattr(os, "O_BINARY", 0)
        fd = os.open(path, flags)

        try:
            stat = os.fstat(fd)
            if not S_ISREG(stat.st_mode):
                raise ImageIOError(f"{path} is not a regular file")
            return cls(fd, path, stat.st_size, sector_size, not readonly)

        except BaseException:
            os.close(fd)
            raise

    def read_at(self, pos: int, size: int) -> bytes:
        """Read exactly `size` bytes from the image starting at byte `pos`.

        Raises `ImageIOError` if the image ends before `size` bytes were read.
        """
        self.check_closed()

        if pos < 0:
            raise ValueError("Position to read from must be zero or positive")
        if size < 0:
            raise ValueError("Amount of bytes to read must be zero or positive")
        if size == 0:
            return b""

        if pos + size > self._size:
            raise ImageIOError(
                f"{self} - Read of {size} bytes at byte {pos} exceeds image size "
                f"of {self._size} bytes"
            )

        b = _read(self._fd, size, pos)

        if len(b) != size:
            raise ImageIOError(
                f"{self} - Short read at byte {pos} (expected {size} bytes, "
                f"got {len(b)} bytes)"
            )
        return b

    def write_at(self, pos: int, b: ReadableBuffer) -> None:
        """Write raw bytes `b` to the image starting at byte `pos`.

        Writing never extends the image. Raises `ImageIOError` if fewer bytes than
        passed could be written.
        """
        self.check_closed()
        self.check_writable()

        if pos < 0:
            raise ValueError("Position to write at must be zero or positive")
        if not isinstance(b, memoryview):
            b = memoryview(b).cast("B")
        size = b.nbytes
        if size == 0:
            return

        if pos + size > self._size:
            raise ImageIOError(
                f"{self} - Write of {size} bytes at byte {pos} exceeds image size "
                f"of {self._size} bytes"
            )

        bytes_written = _write(self._fd, b, pos)

        if bytes_written != size:
            raise ImageIOError(
                f"{self} - Short write at byte {pos} (expected {size} bytes, "
                f"wrote {bytes_written} bytes)"
            )

    def flush(self) -> None:
        """Flush write buffers of the underlying file."""
        self.check_closed()
        os.fsync(self._fd)

    def close(self) -> None:
        """Close the underlying file.

        This method has no effect if the file is already closed.
        """
        if self._closed:
            return
        os.close(self._fd)
        self._closed = True
        log.info(f"Closed image {self}")

    def __enter__(self) -> Image:
        """Context management protocol."""
        self.check_closed()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context management protocol."""
        self.close()

    @property
    def path(self) -> str:
        return self._path

    @property
    def size(self) -> int:
        """Size of the image in bytes."""
        return self._size

    @property
    def size_lba(self) -> int:
        """Size of the image in whole sectors."""
        return self._size // self._sector_size

    @property
    def sector_size(self) -> int:
        """Logical sector size of the image in bytes."""
        return self._sector_size

    @property
    def closed(self) -> bool:
        """Whether the underlying file is closed."""
        return self._closed

    @property
    def writable(self) -> bool:
        """Whether the underlying file was opened for writing."""
        self.check_closed()
        return self._writable

    def check_closed(self) -> None:
        """Raise `ValueError` if the underlying file is closed."""
        if self._closed:
            raise ValueError("I/O operation on closed image")

    def check_writable(self) -> None:
        """Raise `ValueError` if the underlying file is read-only."""
        if not self._writable:
            raise ValueError("Image is not writable")

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, Image):
            return self._path == other._path
        return NotImplemented

    def __str__(self) -> str:
        return self._path

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._path}, size={self._size})"
