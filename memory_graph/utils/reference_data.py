"""
Static reference data used by entity matching.

The nickname table ships as ``memory_graph/data/nicknames.json`` and can be
replaced without code changes by pointing ``NICKNAMES_PATH`` at another JSON
object of ``{"formal name": ["nickname", ...]}``.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Dict, FrozenSet, Mapping, Optional, Union

from .config import config
from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_NICKNAMES_PATH = Path(__file__).resolve().parent.parent / 'data' / 'nicknames.json'

# formal name -> all variants of that name, the formal name included
NicknameTable = Mapping[str, FrozenSet[str]]


class ReferenceDataError(Exception):
    """Custom exception for unreadable reference data."""
    pass


def build_nickname_table(raw: Mapping[str, object]) -> Dict[str, FrozenSet[str]]:
    """Build a variant table from a ``{formal: [nicknames]}`` mapping.

    Args:
        raw: Mapping of formal names to nickname lists

    Returns:
        Dictionary of lowercase formal name to frozen set of lowercase variants

    Raises:
        ReferenceDataError: If the mapping has the wrong shape
    """
    if not isinstance(raw, Mapping):
        raise ReferenceDataError(f'Nickname table must be a JSON object, got {type(raw).__name__}')

    table = {}
    for formal, nicknames in raw.items():
        if not isinstance(nicknames, (list, tuple)):
            raise ReferenceDataError(f"Nicknames for '{formal}' must be a list")
        key = str(formal).strip().lower()
        table[key] = frozenset([key] + [str(n).strip().lower() for n in nicknames])
    return table


def load_nickname_table(path: Optional[Union[str, Path]] = None) -> Dict[str, FrozenSet[str]]:
    """Load the nickname table from a JSON file.

    Args:
        path: JSON file path (uses the packaged table if None)

    Returns:
        Nickname variant table

    Raises:
        ReferenceDataError: If the file cannot be read or parsed
    """
    path = Path(path) if path else DEFAULT_NICKNAMES_PATH
    try:
        with open(path, encoding='utf-8') as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f'Failed to load nickname table from {path}: {e}')
        raise ReferenceDataError(f'Failed to load nickname table: {e}')

    table = build_nickname_table(raw)
    logger.debug(f'Loaded {len(table)} nickname entries from {path}')
    return table


@lru_cache(maxsize=1)
def get_nickname_table() -> NicknameTable:
    """Nickname table configured for this process (loaded once)."""
    return load_nickname_table(config.entity_resolution.nicknames_path)
