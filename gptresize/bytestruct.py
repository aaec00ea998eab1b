"""Packing and validation of fixed-size binary structures."""

from __future__ import annotations

import struct
from typing import Any, ClassVar, Literal, NamedTuple, TypeVar

from typing_extensions import Annotated, get_args, get_origin, get_type_hints

__all__ = ["ByteStruct", "PackError"]


INT_CONVERSION = {1: "B", 2: "H", 4: "I", 8: "Q"}
INTERNAL_NAMES = (
    "__bytestruct_fields__",
    "__bytestruct_format__",
    "__bytestruct_size__",
    "__bytestruct_cached__",
)

_Bs = TypeVar("_Bs", bound="ByteStruct")


class PackError(ValueError):
    """Exception raised if a field value cannot be packed into its declared
    binary format.
    """


class _FieldDescriptor(NamedTuple):
    """Metadata about a field of a `ByteStruct`.

    - `type_origin`: Origin of the `Annotated` type (`int` or `bytes`).
    - `size`: Size of the field in bytes.
    - `offset`: Offset of the field from the start of the structure in bytes.
    """

    type_origin: type
    size: int
    offset: int


class _ByteStructMeta(type):
    """Metaclass of `ByteStruct`.

    Analyzes the type annotations found in a `ByteStruct` subclass and sets
    `__bytestruct_fields__`, `__bytestruct_format__` and `__bytestruct_size__`
    accordingly.
    """

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> _ByteStructMeta:
        """Provide a signature of `__new__()` which allows specifying `byteorder`
        when subclassing `ByteStruct`.
        """
        return super().__new__(mcs, name, bases, namespace)

    def __init__(
        cls,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        byteorder: Literal["<", ">"] = "<",
    ):
        super().__init__(name, bases, namespace)
        if not bases:
            return  # cls is ByteStruct

        type_hints = get_type_hints(cls, include_extras=True)
        format_ = byteorder
        fields = {}
        offset = 0

        for name, type_ in type_hints.items():
            if name in INTERNAL_NAMES or get_origin(type_) is ClassVar:
                continue

            if get_origin(type_) is not Annotated:
                raise TypeError(
                    f"Unannotated type {type_} of field {name!r} is not allowed for "
                    f"ByteStruct"
                )

            annotated_type, size = get_args(type_)[:2]
            if not isinstance(size, int):
                raise TypeError("Field size must be specified as int")
            if size < 1:
                raise ValueError("Field size must be greater than or equal to 1")

            if annotated_type is int:
                if size not in INT_CONVERSION:
                    raise ValueError(
                        f"Invalid int field size {size}, must be one of "
                        f"{tuple(INT_CONVERSION)}"
                    )
                format_ += INT_CONVERSION[size]
            elif annotated_type is bytes:
                format_ += f"{size}s"
            else:
                raise TypeError(
                    f"Annotated type {annotated_type} of field {name!r} is not "
                    f"allowed for ByteStruct"
                )

            fields[name] = _FieldDescriptor(annotated_type, size, offset)
            offset += size

        cls.__bytestruct_fields__ = fields
        cls.__bytestruct_format__ = format_
        cls.__bytestruct_size__ = struct.calcsize(format_)

    def __len__(cls) -> int:
        """Size of the `bytes` form of the `ByteStruct` in bytes."""
        return cls.__bytestruct_size__


class ByteStruct(metaclass=_ByteStructMeta):
    """Packed binary data without implicit padding.

    Every `ByteStruct` subclass must be a frozen `dataclass`. Field types are
    declared through `typing.Annotated`::

        @dataclasses.dataclass(frozen=True)
        class MyStruct(ByteStruct, byteorder='<'):

            field_1: Annotated[int, 4]    # unsigned int of size 4 bytes
            field_2: Annotated[bytes, 8]  # bytes of size 8

    Instances are immutable values. Use `dataclasses.replace()` to derive a
    modified copy; the copy is packed and validated again.

    Custom validation logic can be added by overriding the `validate()` method.
    """

    # Populated per class
    __bytestruct_fields__: ClassVar[dict[str, _FieldDescriptor]]
    __bytestruct_format__: ClassVar[str]
    __bytestruct_size__: ClassVar[int]

    # Populated per instance
    __bytestruct_cached__: bytes

    @classmethod
    def _check_direct_instantiation(cls) -> None:
        """Raise `TypeError` if `ByteStruct` itself is instantiated."""
        if cls.__bases__ == (object,):
            raise TypeError(f"Cannot directly instantiate {cls.__name__}")

    @classmethod
    def _check_frozen_dataclass(cls) -> None:
        """Raise `TypeError` if the subclass is not a frozen `dataclass`."""
        params: Any = getattr(cls, "__dataclass_params__", None)
        if params is None or not params.frozen:
            raise TypeError("ByteStruct subclass must be a frozen dataclass")

    # noinspection PyUnusedLocal
    def __init__(self, *args: Any, **kwargs: Any):
        self._check_direct_instantiation()
        self._check_frozen_dataclass()

    def __post_init__(self) -> None:
        """Pack the field values, then run the user-defined validation logic."""
        self._check_frozen_dataclass()
        if "__bytestruct_cached__" not in self.__dict__:
            self._pack_and_cache()
        self.validate()

    def _pack_and_cache(self) -> None:
        """Validate field values against the defined formats and keep the packed
        result.
        """
        values = []

        for name, descriptor in self.__bytestruct_fields__.items():
            value = getattr(self, name)
            if descriptor.type_origin is bytes and len(value) != descriptor.size:
                raise PackError(
                    f"Value of field {name!r} must be of length {descriptor.size} "
                    f"bytes, got {len(value)} bytes"
                )
            values.append(value)

        # int values are range-checked by struct.pack()
        try:
            bytes_ = struct.pack(self.__bytestruct_format__, *values)
        except (struct.error, OverflowError) as e:
            raise PackError(
                f"Value out of range (format is {self.__bytestruct_format__!r})"
            ) from e

        # Avoid __setattr__() here because this is a frozen dataclass.
        self.__dict__["__bytestruct_cached__"] = bytes_

    def validate(self) -> None:
        """Custom validation logic.

        Automatically executed after object creation, after the field values were
        packed.
        """

    @classmethod
    def from_bytes(cls: type[_Bs], b: bytes) -> _Bs:
        """Parse structure from `bytes`."""
        cls._check_direct_instantiation()

        size = cls.__bytestruct_size__
        if len(b) != size:
            raise ValueError(f"Structure is {size} bytes long, got {len(b)} bytes")

        unpacked_values = struct.unpack(cls.__bytestruct_format__, b)
        self = cls.__new__(cls)
        # Cache first so that __post_init__() does not pack again
        self.__dict__["__bytestruct_cached__"] = bytes(b)
        cls.__init__(self, *unpacked_values)  # type: ignore[misc]
        return self

    @classmethod
    def field_offset(cls, name: str) -> int:
        """Offset of field `name` from the start of the structure in bytes."""
        try:
            return cls.__bytestruct_fields__[name].offset
        except KeyError:
            raise KeyError(f"{cls.__name__} has no field {name!r}") from None

    def __bytes__(self) -> bytes:
        """`bytes` form of the `ByteStruct` instance."""
        return self.__bytestruct_cached__

    def __len__(self) -> int:
        """Size of the `bytes` form of the `ByteStruct` in bytes."""
        return self.__bytestruct_size__
