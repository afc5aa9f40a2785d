"""
Shared validators for identifiers received over the chat protocol.
"""

import uuid
from collections.abc import Iterable


def is_valid_uuid(value: object) -> bool:
    """
    Check that a value is a canonical UUID string.

    Accepts any RFC 4122 variant in its 36-character hyphenated form;
    rejects non-strings, braces, URNs and bare hex.
    """
    if not isinstance(value, str) or len(value) != 36:
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def filter_valid_ids(values: Iterable[object]) -> list[str]:
    """
    Keep only well-formed UUID strings, preserving order and dropping duplicates.

    Malformed entries are discarded silently.
    """
    seen: set[str] = set()
    valid: list[str] = []
    for value in values:
        if is_valid_uuid(value) and value not in seen:
            seen.add(value)
            valid.append(value)
    return valid
