from __future__ import annotations

import uuid
from typing import Any, Callable, Optional

RefCheck = Callable[[Any], bool]


def is_valid_ref(value: Any) -> bool:
    """Return True if ``value`` is a syntactically valid record id (a UUID)."""

    if value is None or isinstance(value, bool):
        return False
    if isinstance(value, uuid.UUID):
        return True
    s = str(value).strip()
    if not s:
        return False
    try:
        uuid.UUID(s)
    except ValueError:
        return False
    return True


def clean_ref(value: Any, *, check: RefCheck = is_valid_ref) -> Optional[str]:
    """Normalize a reference to its canonical string form, or None if invalid."""

    if not check(value):
        return None
    s = str(value).strip()
    try:
        return str(uuid.UUID(s))
    except ValueError:
        # A custom ``check`` accepted a non-UUID id; keep it verbatim.
        return s


def new_id() -> str:
    return str(uuid.uuid4())


def coerce_year(value: Any) -> Optional[int]:
    """Coerce form input to an int year.

    Empty strings, zero and anything non-numeric become None, the same way
    the web form's "leave blank" is treated.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value or None
    s = str(value).strip()
    if not s:
        return None
    try:
        return int(float(s)) or None
    except (ValueError, OverflowError):
        # "abc", "nan", "inf"
        return None
