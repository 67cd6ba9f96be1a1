"""Python identifier validation for variable names reported by the kernel."""

import builtins
import keyword
import re

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

PYTHON_KEYWORDS = frozenset(name.lower() for name in keyword.kwlist)

PYTHON_BUILTINS = frozenset(
    name for name in dir(builtins) if not name.startswith("_")
) | {"__import__"}

PYTHON_MAGIC_VARS = frozenset({
    "__annotations__", "__builtins__", "__cached__", "__doc__", "__file__",
    "__loader__", "__name__", "__package__", "__spec__",
})


def is_dunder_name(value: str) -> bool:
    return len(value) > 4 and value.startswith("__") and value.endswith("__")


def is_valid_identifier(value: str) -> bool:
    """True for plain user variable names (no keywords, builtins or dunders)."""
    if not value or not _IDENTIFIER.match(value):
        return False
    if value.lower() in PYTHON_KEYWORDS:
        return False
    if value in PYTHON_BUILTINS:
        return False
    if is_dunder_name(value) or value in PYTHON_MAGIC_VARS:
        return False
    return True
