"""
Validated identifier types for permissions and roles.

`PermissionKey` and `RoleName` are `str` subclasses, so they drop into
sets, dict keys, SQL parameters and JSON without conversion, but they
can only be built from a well-formed value.  A guard declared with a
malformed key fails when the module is imported, instead of silently
denying every request at runtime.
"""

import re
from collections.abc import Iterable

_PERMISSION_KEY_RE = re.compile(r"^[a-z][a-z0-9_.]*$")
MAX_PERMISSION_KEY_LENGTH = 128
MAX_ROLE_NAME_LENGTH = 64


class PermissionKey(str):
    """A stable permission identifier such as ``leads_view``."""

    __slots__ = ()

    def __new__(cls, value: str) -> "PermissionKey":
        if isinstance(value, PermissionKey):
            return value
        if not isinstance(value, str):
            raise TypeError(f"Permission key must be a string, got {type(value).__name__}")
        if len(value) > MAX_PERMISSION_KEY_LENGTH or not _PERMISSION_KEY_RE.match(value):
            raise ValueError(f"Invalid permission key: {value!r}")
        return super().__new__(cls, value)

    def __repr__(self) -> str:
        return f"PermissionKey({str.__repr__(self)})"


class RoleName(str):
    """A role display name, stripped and at most 64 chars."""

    __slots__ = ()

    def __new__(cls, value: str) -> "RoleName":
        if isinstance(value, RoleName):
            return value
        if not isinstance(value, str):
            raise TypeError(f"Role name must be a string, got {type(value).__name__}")
        cleaned = value.strip()
        if not cleaned or len(cleaned) > MAX_ROLE_NAME_LENGTH:
            raise ValueError(f"Invalid role name: {value!r}")
        return super().__new__(cls, cleaned)

    def __repr__(self) -> str:
        return f"RoleName({str.__repr__(self)})"


def to_permission_keys(values: Iterable[str]) -> frozenset[PermissionKey]:
    return frozenset(PermissionKey(value) for value in values)
