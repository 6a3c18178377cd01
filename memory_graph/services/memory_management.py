"""
Memory Management Service for storing and retrieving decaying memories.
"""

import asyncio
import uuid
from datetime import datetime
from typing import List, Optional, Sequence

from ..models.core import (MEMORY_CATEGORIES, MEMORY_SOURCES, CreateMemoryInput, DecayStats, Memory, MemorySearchOptions, MemoryStats,
                           ScoredMemory)
from ..repositories.base import MemoryRepository, RecordNotFoundError, RepositoryError
from ..utils.config import MemoryConfig, config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import ensure_utc, utc_now
from .decay import decay_rate_for, default_importance_for, get_decay_stats, is_expired, rank_by_relevance, score_memory

logger = get_logger(__name__)

# Upper bound when a call needs every memory of a user
ALL_MEMORIES_LIMIT = 10000


class MemoryManagementError(Exception):
    """Custom exception for memory management errors."""
    pass


class MemoryService:
    """Stores memories and retrieves them ranked by decay-weighted relevance."""

    def __init__(self, memory_repository: MemoryRepository, settings: Optional[MemoryConfig] = None):
        """Initialize the memory service.

        Args:
            memory_repository: Store of memory records
            settings: MemoryConfig instance, uses default if None
        """
        self.memories = memory_repository
        self.settings = settings or config.memory
        logger.info('Initialized MemoryService')

    def _build_memory(self, memory_input: CreateMemoryInput, now: datetime) -> Memory:
        if not memory_input.user_id or not memory_input.user_id.strip():
            raise ValueError('User ID is required')
        if memory_input.category not in MEMORY_CATEGORIES:
            raise ValueError(f'Unknown memory category: {memory_input.category}')
        if memory_input.source_type not in MEMORY_SOURCES:
            raise ValueError(f'Unknown memory source type: {memory_input.source_type}')

        importance = memory_input.importance
        if importance is None:
            importance = default_importance_for(memory_input.category)
        confidence = memory_input.confidence
        if confidence is None:
            confidence = self.settings.default_confidence

        return Memory(id=str(uuid.uuid4()),
                      user_id=memory_input.user_id,
                      content=memory_input.content,
                      category=memory_input.category,
                      source_type=memory_input.source_type,
                      source_id=memory_input.source_id or '',
                      source_date=ensure_utc(memory_input.source_date) or now,
                      importance=max(0.0, min(1.0, importance)),
                      decay_rate=decay_rate_for(memory_input.category),
                      confidence=max(0.0, min(1.0, confidence)),
                      expires_at=ensure_utc(memory_input.expires_at),
                      related_entities=list(memory_input.related_entities or []),
                      tags=list(memory_input.tags or []),
                      created_at=now,
                      updated_at=now)

    async def save_memory(self, memory_input: CreateMemoryInput) -> Memory:
        """Create and store a memory.

        Decay rate comes from the category; importance and confidence take
        their defaults when not supplied.

        Args:
            memory_input: Memory to create

        Returns:
            The stored memory with its id

        Raises:
            ValueError: If the category or source type is unknown
            MemoryManagementError: If the memory cannot be stored
        """
        memory = self._build_memory(memory_input, utc_now())
        try:
            stored = await self.memories.insert(memory)
        except RepositoryError as e:
            logger.error(f'Failed to save memory for user {memory.user_id}: {e}')
            raise MemoryManagementError(f'Memory save failed: {e}')

        logger.debug(f'Saved {memory.category} memory {stored.id} for user {stored.user_id}')
        return stored

    async def save_memories(self, memory_inputs: Sequence[CreateMemoryInput]) -> List[Memory]:
        """Create and store several memories of one user in a single write.

        Ids are assigned before the write, so the returned memories carry the
        ids actually stored.

        Raises:
            ValueError: If the inputs belong to more than one user
            MemoryManagementError: If the batch cannot be stored
        """
        if not memory_inputs:
            return []

        user_ids = {memory_input.user_id for memory_input in memory_inputs}
        if len(user_ids) > 1:
            raise ValueError('All memories in a batch must belong to the same user')

        now = utc_now()
        memories = [self._build_memory(memory_input, now) for memory_input in memory_inputs]
        user_id = memories[0].user_id
        try:
            stored = await self.memories.insert_many(memories)
        except RepositoryError as e:
            logger.error(f'Failed to save {len(memories)} memories for user {user_id}: {e}')
            raise MemoryManagementError(f'Memory batch save failed: {e}')

        logger.info(f'Saved {len(stored)} memories for user {user_id}')
        return stored

    async def search_memories(self, options: MemorySearchOptions, now: Optional[datetime] = None) -> List[ScoredMemory]:
        """Search a user's memories and rank them by decay-weighted relevance.

        Candidates come from a keyword search (or the newest memories for a
        blank query), are filtered, ranked, and cut to ``options.limit`` (at least 1). The
        top results have their decay clock reset.

        Args:
            options: Query and filters
            now: Evaluation time (defaults to the current time)

        Returns:
            Scored memories, most relevant first

        Raises:
            MemoryManagementError: If the store cannot be searched
        """
        now = ensure_utc(now or utc_now())
        limit = max(1, options.limit or self.settings.default_search_limit)

        try:
            if options.query and options.query.strip():
                candidates = await self.memories.search(options.user_id, options.query, self.settings.candidate_limit)
            else:
                candidates = await self.memories.list_memories(options.user_id, self.settings.candidate_limit)
        except RepositoryError as e:
            logger.error(f'Failed to search memories for user {options.user_id}: {e}')
            raise MemoryManagementError(f'Memory search failed: {e}')

        candidates = [memory for memory in candidates if self._matches(memory, options, now)]
        ranked = rank_by_relevance(candidates, now)
        if options.min_strength is not None:
            ranked = [scored for scored in ranked if scored.strength >= options.min_strength]

        results = ranked[:limit]
        logger.debug(f'Found {len(results)} memories for user {options.user_id} (of {len(candidates)} candidates)')

        await self._refresh_top(results[:self.settings.refresh_top_k], now)
        return results

    @staticmethod
    def _matches(memory: Memory, options: MemorySearchOptions, now: datetime) -> bool:
        if memory.user_id != options.user_id or memory.is_deleted:
            return False
        if not options.include_expired and is_expired(memory, now):
            return False
        if options.categories and memory.category not in options.categories:
            return False
        if options.source_type and memory.source_type != options.source_type:
            return False
        if options.min_confidence is not None and memory.confidence < options.min_confidence:
            return False
        if options.min_importance is not None and memory.importance < options.min_importance:
            return False
        if options.related_entity:
            wanted = options.related_entity.strip().lower()
            if wanted not in (entity.strip().lower() for entity in memory.related_entities):
                return False
        if options.tags and not set(options.tags) & set(memory.tags):
            return False
        return True

    async def _refresh_top(self, results: List[ScoredMemory], now: datetime) -> None:
        if not results:
            return

        outcomes = await asyncio.gather(
            *(self.memories.update_last_accessed(r.memory.user_id, r.memory.id, now) for r in results),
            return_exceptions=True)

        for scored, outcome in zip(results, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f'Failed to refresh memory {scored.memory.id}: {outcome}')
            else:
                scored.memory.last_accessed = now
                scored.memory.updated_at = now

    async def get_recent_memories(self,
                                  user_id: str,
                                  limit: Optional[int] = None,
                                  categories: Optional[Sequence[str]] = None,
                                  min_strength: Optional[float] = None,
                                  now: Optional[datetime] = None) -> List[ScoredMemory]:
        """A user's newest live memories with their current strength."""
        now = ensure_utc(now or utc_now())
        try:
            memories = await self.memories.list_memories(user_id, max(1, limit or self.settings.recent_limit))
        except RepositoryError as e:
            logger.error(f'Failed to list memories for user {user_id}: {e}')
            raise MemoryManagementError(f'Memory listing failed: {e}')

        scored = [score_memory(m, now) for m in memories if not categories or m.category in categories]
        if min_strength is not None:
            scored = [s for s in scored if s.strength >= min_strength]
        scored.sort(key=lambda s: s.memory.created_at, reverse=True)
        return scored

    async def get_memories_by_category(self,
                                       user_id: str,
                                       category: str,
                                       limit: Optional[int] = None,
                                       min_strength: Optional[float] = None) -> List[ScoredMemory]:
        return await self.get_recent_memories(user_id, limit, [category], min_strength)

    async def get_memories_by_entity(self,
                                     user_id: str,
                                     entity_name: str,
                                     limit: Optional[int] = None,
                                     min_strength: Optional[float] = None) -> List[ScoredMemory]:
        return await self.search_memories(
            MemorySearchOptions(query=entity_name,
                                user_id=user_id,
                                related_entity=entity_name,
                                limit=limit,
                                min_strength=min_strength))

    async def get_memories_by_tags(self,
                                   user_id: str,
                                   tags: Sequence[str],
                                   limit: Optional[int] = None,
                                   min_strength: Optional[float] = None) -> List[ScoredMemory]:
        return await self.search_memories(
            MemorySearchOptions(query=' '.join(tags), user_id=user_id, tags=list(tags), limit=limit,
                                min_strength=min_strength))

    async def get_memories_by_source(self, user_id: str, source_id: str) -> List[ScoredMemory]:
        """Live memories extracted from one source item (mail, event, chat)."""
        memories = await self._all_memories(user_id)
        now = utc_now()
        return [score_memory(m, now) for m in memories if m.source_id == source_id]

    async def get_memory(self, user_id: str, memory_id: str) -> Optional[Memory]:
        """Fetch one memory by id (None if missing or soft-deleted)."""
        try:
            memory = await self.memories.get(user_id, memory_id)
        except RepositoryError as e:
            logger.error(f'Failed to get memory {memory_id}: {e}')
            raise MemoryManagementError(f'Memory get failed: {e}')

        if memory is None or memory.is_deleted:
            return None
        return memory

    async def refresh_memory_access(self, user_id: str, memory_id: str, now: Optional[datetime] = None) -> None:
        """Reset a memory's decay clock.

        Raises:
            MemoryManagementError: If the memory does not exist or cannot be updated
        """
        try:
            await self.memories.update_last_accessed(user_id, memory_id, ensure_utc(now or utc_now()))
        except RepositoryError as e:
            logger.error(f'Failed to refresh memory {memory_id}: {e}')
            raise MemoryManagementError(f'Memory refresh failed: {e}')

    async def delete_memory(self, user_id: str, memory_id: str) -> None:
        """Soft delete: the memory stays in the store but is never returned."""
        if not memory_id or not memory_id.strip():
            logger.warning('Empty memory ID provided for deletion')
            return

        try:
            await self.memories.soft_delete(user_id, memory_id)
        except RecordNotFoundError:
            logger.warning(f'No memory found for deletion: {memory_id}')
            return
        except RepositoryError as e:
            logger.error(f'Failed to delete memory {memory_id}: {e}')
            raise MemoryManagementError(f'Memory delete failed: {e}')

        logger.debug(f'Deleted memory: {memory_id}')

    async def hard_delete_memory(self, user_id: str, memory_id: str) -> None:
        """Remove a memory from the store."""
        try:
            await self.memories.hard_delete(user_id, memory_id)
        except RecordNotFoundError:
            logger.warning(f'No memory found for deletion: {memory_id}')
            return
        except RepositoryError as e:
            logger.error(f'Failed to hard delete memory {memory_id}: {e}')
            raise MemoryManagementError(f'Memory delete failed: {e}')

        logger.info(f'Permanently deleted memory: {memory_id}')

    async def _all_memories(self, user_id: str) -> List[Memory]:
        try:
            return await self.memories.list_memories(user_id, ALL_MEMORIES_LIMIT)
        except RepositoryError as e:
            logger.error(f'Failed to list memories for user {user_id}: {e}')
            raise MemoryManagementError(f'Memory listing failed: {e}')

    async def get_memory_stats(self, user_id: str) -> MemoryStats:
        """Counts of a user's live memories per category and source type."""
        memories = await self._all_memories(user_id)

        by_category = dict.fromkeys(MEMORY_CATEGORIES, 0)
        by_source = dict.fromkeys(MEMORY_SOURCES, 0)
        for memory in memories:
            by_category[memory.category] = by_category.get(memory.category, 0) + 1
            by_source[memory.source_type] = by_source.get(memory.source_type, 0) + 1

        return MemoryStats(total=len(memories), by_category=by_category, by_source=by_source)

    async def get_decay_stats(self, user_id: str, now: Optional[datetime] = None) -> DecayStats:
        """Strength distribution of a user's live memories."""
        memories = await self._all_memories(user_id)
        return get_decay_stats(memories, now)
