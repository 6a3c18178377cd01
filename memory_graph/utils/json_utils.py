"""
JSON utilities for list fields stored as text at the storage boundary.
"""

import json
from typing import Iterable, List, Optional


def encode_string_list(values: Optional[Iterable[str]]) -> str:
    """Encode a sequence of strings as a JSON array string.

    Args:
        values: Strings to encode (None encodes as an empty array)

    Returns:
        JSON text
    """
    return json.dumps([str(v) for v in (values or [])], ensure_ascii=False)


def decode_string_list(raw) -> List[str]:
    """Decode a JSON array string back to a list of strings.

    Stores that already return native lists are passed through. Blank or
    malformed text decodes to an empty list.

    Args:
        raw: JSON text, a list, or None

    Returns:
        List of strings
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(v) for v in raw]

    raw = str(raw).strip()
    if not raw:
        return []

    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return []

    if not isinstance(decoded, list):
        return []
    return [str(v) for v in decoded]
