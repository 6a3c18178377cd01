"""
SAME_AS edges between the acting user's own identity mentions.

Extraction flags mentions that are known aliases of the user ("Bob", "Robert
Matsuoka", "J. Matsuoka"). Those are compared pairwise with a relaxed threshold
and every match becomes a SAME_AS edge in the user's graph.
"""

from typing import Iterable, List, Optional

from ..models.core import RELATIONSHIP_ACTIVE, SAME_AS, EntityMention, Relationship
from ..repositories.base import RelationshipRepository, RepositoryError
from ..utils.logging_config import get_logger
from ..utils.reference_data import NicknameTable, get_nickname_table
from ..utils.timestamp_utils import utc_now
from .entity_matcher import MIN_MATCH_THRESHOLD, calculate_match_score, group_by_type

logger = get_logger(__name__)

# Identity mentions are already known to refer to the user, so a weaker match suffices
IDENTITY_THRESHOLD = max(MIN_MATCH_THRESHOLD - 0.2, 0.5)

DEFAULT_IDENTITY_CONFIDENCE = 0.9
IDENTITY_SOURCE_ID = 'identity-resolution'


class IdentityRelationshipError(Exception):
    """Custom exception for identity relationship errors."""
    pass


def _identity_confidence(entity: EntityMention) -> float:
    if entity.match_confidence is None:
        return DEFAULT_IDENTITY_CONFIDENCE
    return entity.match_confidence


def collect_identity_entities(entities: Iterable[EntityMention]) -> List[EntityMention]:
    return [entity for entity in entities if entity.is_identity]


def build_identity_relationships(entities: Iterable[EntityMention],
                                 user_id: str,
                                 nicknames: Optional[NicknameTable] = None) -> List[Relationship]:
    """Build SAME_AS edges between matching identity mentions.

    Args:
        entities: Entity mentions; only those flagged ``is_identity`` are used
        user_id: Owner of the edges
        nicknames: Nickname table (uses the configured table if None)

    Returns:
        One edge per matching same-type pair (empty with fewer than two
        identity mentions)
    """
    identity_entities = collect_identity_entities(entities)
    if len(identity_entities) < 2:
        return []

    if nicknames is None:
        nicknames = get_nickname_table()

    now = utc_now()
    relationships = []
    for group in group_by_type(identity_entities).values():
        for i in range(len(group)):
            for j in range(i + 1, len(group)):
                entity1, entity2 = group[i], group[j]
                confidence, reason = calculate_match_score(entity1, entity2, nicknames=nicknames)
                if confidence < IDENTITY_THRESHOLD:
                    logger.debug(f'No identity match: {entity1.value} / {entity2.value} ({reason})')
                    continue

                confidence = max(confidence, _identity_confidence(entity1), _identity_confidence(entity2))
                relationships.append(
                    Relationship(user_id=user_id,
                                 from_entity_type=entity1.type,
                                 from_entity_value=entity1.value,
                                 to_entity_type=entity2.type,
                                 to_entity_value=entity2.value,
                                 relationship_type=SAME_AS,
                                 confidence=min(1.0, confidence),
                                 evidence=f'Identity alias match: {reason}',
                                 source_id=IDENTITY_SOURCE_ID,
                                 inferred_at=now,
                                 status=RELATIONSHIP_ACTIVE))

    return relationships


class IdentityRelationshipService:
    """Persists SAME_AS edges for the user's identity mentions."""

    def __init__(self, relationship_repository: RelationshipRepository, nicknames: Optional[NicknameTable] = None):
        self.relationships = relationship_repository
        self.nicknames = nicknames

    async def create_identity_relationships(self, entities: Iterable[EntityMention], user_id: str) -> int:
        """Create SAME_AS edges between matching identity mentions.

        Args:
            entities: Entity mentions from one extraction
            user_id: Owner of the graph

        Returns:
            Number of edges newly stored (existing edges are not duplicated)

        Raises:
            IdentityRelationshipError: If the edges cannot be stored
        """
        relationships = build_identity_relationships(entities, user_id, self.nicknames)
        if not relationships:
            return 0

        try:
            saved = await self.relationships.save_relationships(user_id, relationships)
        except RepositoryError as e:
            logger.error(f'Failed to save identity relationships for user {user_id}: {e}')
            raise IdentityRelationshipError(f'Failed to save identity relationships: {e}')

        logger.info(f'Saved {saved} of {len(relationships)} identity relationships for user {user_id}')
        return saved

    async def process_identity_relationships(self, records: Iterable[dict], user_id: str) -> int:
        """Parse raw extraction records and create their identity edges."""
        entities = [EntityMention.from_dict(record) for record in records]
        return await self.create_identity_relationships(entities, user_id)
