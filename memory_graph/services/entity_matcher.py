"""
Entity matching for entity resolution.

Scores how likely two entity mentions denote the same real-world thing:

- exact match after normalization: 1.0
- known alias from the user's alias table: 0.95
- person names with the same last name: nickname 0.85, similar first names
  0.80, initial 0.70
- Jaro-Winkler similarity of the whole value: 0.9 at or above 0.9, the
  similarity itself between 0.7 and 0.9, no match below

Nothing in this module raises on bad input; unusable values score 0.
"""

import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models.core import EntityAlias, EntityMention, MatchResult
from ..utils.logging_config import get_logger
from ..utils.reference_data import NicknameTable, get_nickname_table

logger = get_logger(__name__)

# Minimum similarity for two entities to be a potential match
MIN_MATCH_THRESHOLD = 0.7

# Moderate confidence, flagged for human review
REVIEW_THRESHOLD = 0.8

# Very high confidence, may be accepted without review
AUTO_ACCEPT_THRESHOLD = 0.95

EXACT_MATCH_CONFIDENCE = 1.0
ALIAS_MATCH_CONFIDENCE = 0.95
HIGH_SIMILARITY_CONFIDENCE = 0.9
NICKNAME_MATCH_CONFIDENCE = 0.85
SIMILAR_FIRST_NAME_CONFIDENCE = 0.8
INITIAL_MATCH_CONFIDENCE = 0.7

LAST_NAME_THRESHOLD = 0.9
FIRST_NAME_THRESHOLD = 0.8
HIGH_SIMILARITY_THRESHOLD = 0.9

WINKLER_PREFIX_LIMIT = 4
WINKLER_SCALING_FACTOR = 0.1

_PUNCTUATION = re.compile(r'[^\w\s]')
_WHITESPACE = re.compile(r'\s+')


def normalize_for_matching(value: Optional[str]) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    if not value:
        return ''
    value = _PUNCTUATION.sub('', str(value).lower())
    return _WHITESPACE.sub(' ', value).strip()


def jaro_similarity(s1: str, s2: str) -> float:
    """Jaro similarity of two strings (0.0 when nothing matches)."""
    if s1 == s2:
        return 1.0

    len1, len2 = len(s1), len(s2)
    if len1 == 0 or len2 == 0:
        return 0.0

    match_window = max(len1, len2) // 2 - 1

    s1_matches = [False] * len1
    s2_matches = [False] * len2
    matches = 0

    for i in range(len1):
        start = max(0, i - match_window)
        end = min(i + match_window + 1, len2)
        for j in range(start, end):
            if s2_matches[j] or s1[i] != s2[j]:
                continue
            s1_matches[i] = True
            s2_matches[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i in range(len1):
        if not s1_matches[i]:
            continue
        while not s2_matches[k]:
            k += 1
        if s1[i] != s2[k]:
            transpositions += 1
        k += 1

    return (matches / len1 + matches / len2 + (matches - transpositions / 2) / matches) / 3


def jaro_winkler_similarity(s1: Optional[str], s2: Optional[str]) -> float:
    """Jaro-Winkler similarity between 0.0 (nothing shared) and 1.0 (identical).

    Strings are lowercased and trimmed first. The common prefix (up to four
    characters) earns the Winkler bonus, so names that agree from the start
    score higher.

    Args:
        s1: First string to compare
        s2: Second string to compare

    Returns:
        Similarity score between 0.0 and 1.0
    """
    str1 = (s1 or '').lower().strip()
    str2 = (s2 or '').lower().strip()

    if str1 == str2:
        return 1.0
    if not str1 or not str2:
        return 0.0

    # The greedy match pass depends on operand order; fix it so a/b and b/a agree
    if str1 > str2:
        str1, str2 = str2, str1

    jaro = jaro_similarity(str1, str2)

    prefix_length = 0
    for c1, c2 in zip(str1[:WINKLER_PREFIX_LIMIT], str2[:WINKLER_PREFIX_LIMIT]):
        if c1 != c2:
            break
        prefix_length += 1

    return min(1.0, jaro + prefix_length * WINKLER_SCALING_FACTOR * (1 - jaro))


def is_nickname_match(name1: str, name2: str, nicknames: Optional[NicknameTable] = None) -> bool:
    """True if both first names are variants of the same formal name."""
    if nicknames is None:
        nicknames = get_nickname_table()

    n1 = name1.lower()
    n2 = name2.lower()
    return any(n1 in variants and n2 in variants for variants in nicknames.values())


def _is_initial(name: str) -> bool:
    return len(name) <= 2 and (len(name) == 1 or name.endswith('.'))


def is_initial_match(name1: str, name2: str) -> bool:
    """True if one name is an initial of the other ("j" / "J." vs "John")."""
    if _is_initial(name1):
        return name2.lower().startswith(name1.replace('.', '').lower())
    if _is_initial(name2):
        return name1.lower().startswith(name2.replace('.', '').lower())
    return False


def _check_alias_match(entity1: EntityMention, entity2: EntityMention,
                       aliases: Iterable[EntityAlias]) -> Optional[str]:
    value1 = (entity1.value or '').strip().lower()
    value2 = (entity2.value or '').strip().lower()

    for alias in aliases:
        if alias.entity_type != entity1.type:
            continue

        canonical = alias.entity_value.strip().lower()
        alternate = alias.alias.strip().lower()
        if (value1 == canonical and value2 == alternate) or (value1 == alternate and value2 == canonical):
            return f'known alias: "{alias.alias}" -> "{alias.entity_value}"'

    return None


def _check_name_components(name1: str, name2: str, nicknames: Optional[NicknameTable]) -> Tuple[float, str]:
    parts1 = name1.split()
    parts2 = name2.split()

    if len(parts1) < 2 or len(parts2) < 2:
        return 0.0, 'not enough name parts'

    first1, last1 = parts1[0], parts1[-1]
    first2, last2 = parts2[0], parts2[-1]

    if jaro_winkler_similarity(last1, last2) < LAST_NAME_THRESHOLD:
        return 0.0, 'different last names'

    if is_nickname_match(first1, first2, nicknames):
        return NICKNAME_MATCH_CONFIDENCE, f'same last name, nickname match: {first1} / {first2}'

    if is_initial_match(first1, first2):
        return INITIAL_MATCH_CONFIDENCE, f'same last name, initial match: {first1} / {first2}'

    first_name_similarity = jaro_winkler_similarity(first1, first2)
    if first_name_similarity >= FIRST_NAME_THRESHOLD:
        return SIMILAR_FIRST_NAME_CONFIDENCE, f'same last name, similar first names ({first_name_similarity:.3f})'

    return 0.0, 'no component match'


def calculate_match_score(entity1: EntityMention,
                          entity2: EntityMention,
                          aliases: Sequence[EntityAlias] = (),
                          nicknames: Optional[NicknameTable] = None) -> Tuple[float, str]:
    """Confidence that two entity mentions denote the same thing.

    Rules are tried in order and the first one that applies wins.

    Args:
        entity1: First entity to compare
        entity2: Second entity to compare
        aliases: The user's known aliases
        nicknames: Nickname table (uses the configured table if None)

    Returns:
        Tuple of (confidence in [0, 1], human-readable reason)
    """
    if entity1.type != entity2.type:
        return 0.0, 'different entity types'

    value1 = normalize_for_matching(entity1.value)
    value2 = normalize_for_matching(entity2.value)

    if value1 == value2:
        return EXACT_MATCH_CONFIDENCE, 'exact match'

    if not value1 or not value2:
        return 0.0, 'empty entity value'

    alias_reason = _check_alias_match(entity1, entity2, aliases or ())
    if alias_reason:
        return ALIAS_MATCH_CONFIDENCE, alias_reason

    if entity1.type == 'person':
        confidence, reason = _check_name_components(value1, value2, nicknames)
        if confidence > 0:
            return confidence, reason

    similarity = jaro_winkler_similarity(value1, value2)

    if similarity >= HIGH_SIMILARITY_THRESHOLD:
        return HIGH_SIMILARITY_CONFIDENCE, f'high Jaro-Winkler similarity ({similarity:.3f})'

    if similarity >= MIN_MATCH_THRESHOLD:
        return similarity, f'Jaro-Winkler similarity ({similarity:.3f})'

    return 0.0, 'below similarity threshold'


def needs_review(confidence: float) -> bool:
    """True for matches confident enough to show a reviewer but not to auto-accept."""
    return REVIEW_THRESHOLD <= confidence < AUTO_ACCEPT_THRESHOLD


def group_by_type(entities: Iterable[EntityMention]) -> Dict[str, List[EntityMention]]:
    groups = defaultdict(list)
    for entity in entities:
        groups[entity.type].append(entity)
    return dict(groups)


def match_entities(entities: Iterable[EntityMention],
                   aliases: Sequence[EntityAlias] = (),
                   nicknames: Optional[NicknameTable] = None,
                   min_confidence: float = MIN_MATCH_THRESHOLD) -> List[MatchResult]:
    """Compare every unordered pair of same-typed entities.

    Type groups are independent; within a group each pair is scored once.

    Args:
        entities: Entities to compare
        aliases: The user's known aliases
        nicknames: Nickname table (uses the configured table if None)
        min_confidence: Minimum confidence to keep a match

    Returns:
        Matches at or above ``min_confidence``, highest confidence first
    """
    if nicknames is None:
        nicknames = get_nickname_table()

    matches = []
    for entity_type, group in group_by_type(entities).items():
        logger.debug(f'Comparing {len(group)} {entity_type} entities')

        for i in range(len(group)):
            for j in range(i + 1, len(group)):
                confidence, reason = calculate_match_score(group[i], group[j], aliases, nicknames)
                if confidence >= min_confidence:
                    matches.append(MatchResult(entity1=group[i], entity2=group[j], confidence=confidence, match_reason=reason))

    matches.sort(key=lambda m: m.confidence, reverse=True)
    return matches
