"""
In-process repositories.

Used by the tests and for local runs without AWS. Records are kept per user and
copied on the way in and out so callers never share state with the store.
"""

import re
import uuid
from copy import deepcopy
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ..models.core import EntityAlias, Memory, MergeSuggestion, Relationship
from ..utils.timestamp_utils import utc_now
from .base import (AliasRepository, DuplicateRecordError, MemoryRepository, MergeSuggestionRepository, RecordNotFoundError,
                   RelationshipRepository, relationship_key, suggestion_pair_key)

_TOKEN = re.compile(r'\w+')


def _tokens(text: str) -> set:
    return set(_TOKEN.findall((text or '').lower()))


class InMemoryMemoryRepository(MemoryRepository):

    def __init__(self):
        self._memories: Dict[str, Dict[str, Memory]] = {}

    def _user(self, user_id: str) -> Dict[str, Memory]:
        return self._memories.setdefault(user_id, {})

    async def insert(self, memory: Memory) -> Memory:
        memories = self._user(memory.user_id)
        if memory.id in memories:
            raise DuplicateRecordError(f'Memory {memory.id} already exists')
        memories[memory.id] = deepcopy(memory)
        return deepcopy(memory)

    async def insert_many(self, memories: Sequence[Memory]) -> List[Memory]:
        return [await self.insert(memory) for memory in memories]

    async def get(self, user_id: str, memory_id: str) -> Optional[Memory]:
        memory = self._user(user_id).get(memory_id)
        return deepcopy(memory) if memory else None

    async def search(self, user_id: str, query: str, limit: int) -> List[Memory]:
        query_tokens = _tokens(query)
        if not query_tokens:
            return []

        hits = []
        for memory in self._user(user_id).values():
            if memory.is_deleted:
                continue
            text = ' '.join([memory.content] + memory.tags + memory.related_entities)
            overlap = len(query_tokens & _tokens(text))
            if overlap:
                hits.append((overlap, memory))

        hits.sort(key=lambda h: (h[0], h[1].created_at), reverse=True)
        return [deepcopy(memory) for _, memory in hits[:limit]]

    async def list_memories(self, user_id: str, limit: int, include_deleted: bool = False) -> List[Memory]:
        memories = [m for m in self._user(user_id).values() if include_deleted or not m.is_deleted]
        memories.sort(key=lambda m: m.created_at, reverse=True)
        return [deepcopy(m) for m in memories[:limit]]

    async def update_last_accessed(self, user_id: str, memory_id: str, accessed_at: datetime) -> None:
        memory = self._require(user_id, memory_id)
        memory.last_accessed = accessed_at
        memory.updated_at = accessed_at

    async def soft_delete(self, user_id: str, memory_id: str) -> None:
        memory = self._require(user_id, memory_id)
        memory.is_deleted = True
        memory.updated_at = utc_now()

    async def hard_delete(self, user_id: str, memory_id: str) -> None:
        self._require(user_id, memory_id)
        del self._user(user_id)[memory_id]

    def _require(self, user_id: str, memory_id: str) -> Memory:
        memory = self._user(user_id).get(memory_id)
        if memory is None:
            raise RecordNotFoundError(f'Memory {memory_id} not found for user {user_id}')
        return memory


class InMemoryAliasRepository(AliasRepository):

    def __init__(self, aliases: Sequence[EntityAlias] = ()):
        self._aliases: Dict[str, List[EntityAlias]] = {}
        for alias in aliases:
            self._aliases.setdefault(alias.user_id, []).append(deepcopy(alias))

    async def list_aliases(self, user_id: str) -> List[EntityAlias]:
        return deepcopy(self._aliases.get(user_id, []))

    async def add_alias(self, alias: EntityAlias) -> EntityAlias:
        aliases = self._aliases.setdefault(alias.user_id, [])
        key = (alias.entity_type, alias.entity_value.strip().lower(), alias.alias.strip().lower())
        for existing in aliases:
            if (existing.entity_type, existing.entity_value.strip().lower(), existing.alias.strip().lower()) == key:
                raise DuplicateRecordError(f'Alias "{alias.alias}" already recorded for "{alias.entity_value}"')

        stored = deepcopy(alias)
        stored.id = stored.id or str(uuid.uuid4())
        stored.created_at = stored.created_at or utc_now()
        aliases.append(stored)
        return deepcopy(stored)


class InMemoryMergeSuggestionRepository(MergeSuggestionRepository):

    def __init__(self):
        self._suggestions: Dict[str, MergeSuggestion] = {}
        self._pairs = set()

    async def insert(self, suggestion: MergeSuggestion) -> MergeSuggestion:
        pair = suggestion_pair_key(suggestion)
        if pair in self._pairs:
            raise DuplicateRecordError(
                f'Merge suggestion for "{suggestion.entity1_value}" / "{suggestion.entity2_value}" already exists')

        stored = deepcopy(suggestion)
        stored.id = stored.id or str(uuid.uuid4())
        stored.created_at = stored.created_at or utc_now()
        self._suggestions[stored.id] = stored
        self._pairs.add(pair)
        return deepcopy(stored)

    async def list_suggestions(self, user_id: str, status: Optional[str] = None) -> List[MergeSuggestion]:
        suggestions = [
            s for s in self._suggestions.values() if s.user_id == user_id and (status is None or s.status == status)
        ]
        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        return deepcopy(suggestions)

    async def update_status(self, user_id: str, suggestion_id: str, status: str,
                            reviewed_at: Optional[datetime],
                            reviewed_by: Optional[str] = None) -> MergeSuggestion:
        suggestion = self._suggestions.get(suggestion_id)
        if suggestion is None or suggestion.user_id != user_id:
            raise RecordNotFoundError(f'Merge suggestion {suggestion_id} not found for user {user_id}')
        suggestion.status = status
        suggestion.reviewed_at = reviewed_at
        suggestion.reviewed_by = reviewed_by
        return deepcopy(suggestion)


class InMemoryRelationshipRepository(RelationshipRepository):

    def __init__(self, relationships: Sequence[Relationship] = ()):
        self._relationships: Dict[str, List[Relationship]] = {}
        self._keys = set()
        for relationship in relationships:
            self._store(relationship)

    def _store(self, relationship: Relationship) -> bool:
        key = relationship_key(relationship)
        if key in self._keys:
            return False
        stored = deepcopy(relationship)
        stored.id = stored.id or str(uuid.uuid4())
        self._relationships.setdefault(stored.user_id, []).append(stored)
        self._keys.add(key)
        return True

    async def save_relationships(self, user_id: str, relationships: Sequence[Relationship]) -> int:
        saved = 0
        for relationship in relationships:
            if relationship.user_id != user_id:
                raise ValueError(f'Relationship belongs to user {relationship.user_id}, not {user_id}')
            if self._store(relationship):
                saved += 1
        return saved

    async def list_relationships(self, user_id: str, limit: int) -> List[Relationship]:
        return deepcopy(self._relationships.get(user_id, [])[:limit])
