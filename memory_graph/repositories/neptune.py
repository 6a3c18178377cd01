"""
Neptune-backed relationship repository.
"""

import asyncio
from typing import Any, Dict, List, Sequence

from ..models.core import RELATIONSHIP_ACTIVE, Relationship
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.timestamp_utils import from_iso
from .base import RelationshipRepository, relationship_key, translate_errors

logger = get_logger(__name__)

# Existing edges scanned for duplicates before a write
DEDUP_SCAN_LIMIT = 5000


def edge_to_relationship(edge: Dict[str, Any]) -> Relationship:
    return Relationship(user_id=edge['user_id'],
                        from_entity_type=edge['from_entity_type'],
                        from_entity_value=edge['from_entity_value'],
                        to_entity_type=edge['to_entity_type'],
                        to_entity_value=edge['to_entity_value'],
                        relationship_type=edge['relationship_type'],
                        confidence=float(edge['confidence']),
                        evidence=edge.get('evidence') or '',
                        source_id=edge.get('source_id') or '',
                        inferred_at=from_iso(edge.get('inferred_at')),
                        status=edge.get('status') or RELATIONSHIP_ACTIVE,
                        id=edge.get('id'))


class NeptuneRelationshipRepository(RelationshipRepository):

    def __init__(self, client: NeptuneClient):
        self.client = client

    @translate_errors(NeptuneError)
    async def save_relationships(self, user_id: str, relationships: Sequence[Relationship]) -> int:
        if not relationships:
            return 0

        existing = await asyncio.to_thread(self.client.get_relationships, user_id, DEDUP_SCAN_LIMIT)
        seen = {relationship_key(edge_to_relationship(edge)) for edge in existing}

        saved = 0
        for relationship in relationships:
            if relationship.user_id != user_id:
                raise ValueError(f'Relationship belongs to user {relationship.user_id}, not {user_id}')

            key = relationship_key(relationship)
            if key in seen:
                logger.debug(f'Relationship already stored: {relationship.source} {relationship.relationship_type} {relationship.target}')
                continue

            await asyncio.to_thread(self.client.create_relationship_edge, relationship)
            seen.add(key)
            saved += 1

        return saved

    @translate_errors(NeptuneError)
    async def list_relationships(self, user_id: str, limit: int) -> List[Relationship]:
        edges = await asyncio.to_thread(self.client.get_relationships, user_id, limit)
        return [edge_to_relationship(edge) for edge in edges]
