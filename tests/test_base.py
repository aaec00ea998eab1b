"""Tests for the ``base`` module."""

import pytest

from gptresize.base import (
    ChecksumError,
    ImageIOError,
    Role,
    StructuralError,
    ValidationError,
    is_power_of_two,
)

POWERS_OF_TWO = [1 << i for i in range(20)]


@pytest.mark.parametrize("value", range(1, 1 << 12))
def test_is_power_of_two(value):
    assert is_power_of_two(value) == (value in POWERS_OF_TWO)


@pytest.mark.parametrize("value", range(-64, 1))
def test_is_power_of_two_fail(value):
    with pytest.raises(ValueError):
        is_power_of_two(value)


def test_structural_error_message():
    e = StructuralError(Role.BACKUP, "current_lba", 12287, 12286)
    assert str(e) == "backup GPT header: current_lba must be 12287, got 12286"
    assert e.role is Role.BACKUP
    assert e.field == "current_lba"
    assert e.expected == 12287
    assert e.observed == 12286


def test_error_hierarchy():
    assert issubclass(StructuralError, ValidationError)
    assert issubclass(ChecksumError, ValidationError)
    assert not issubclass(ChecksumError, StructuralError)
    assert issubclass(ValidationError, ValueError)
    assert issubclass(ImageIOError, OSError)
