"""Tests for variable name validation."""

import pytest

from nbprobe.inspect.identifiers import is_valid_identifier


@pytest.mark.parametrize("name", ["x", "_private", "data_2024", "DataArray", "match", "case"])
def test_valid_names(name):
    assert is_valid_identifier(name)


@pytest.mark.parametrize(
    "name",
    ["", "2x", "a-b", "a b", "class", "None", "lambda", "print", "len", "__import__", "__name__", "__x__"],
)
def test_invalid_names(name):
    assert not is_valid_identifier(name)
