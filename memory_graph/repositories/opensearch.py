"""
OpenSearch-backed repositories for memories, aliases and merge suggestions.

The client is synchronous, so each call runs in a worker thread. List fields
of a memory are stored as JSON array text and decoded back here.
"""

import asyncio
import hashlib
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..models.core import EntityAlias, Memory, MergeSuggestion
from ..utils.json_utils import decode_string_list, encode_string_list
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchConflictError, OpenSearchError, OpenSearchNotFoundError
from ..utils.timestamp_utils import from_iso, to_iso, utc_now
from .base import (AliasRepository, DuplicateRecordError, MemoryRepository, MergeSuggestionRepository, RecordNotFoundError,
                   suggestion_pair_key, translate_errors)

logger = get_logger(__name__)


def memory_to_document(memory: Memory) -> Dict[str, Any]:
    return {
        'id': memory.id,
        'user_id': memory.user_id,
        'content': memory.content,
        'category': memory.category,
        'source_type': memory.source_type,
        'source_id': memory.source_id,
        'source_date': to_iso(memory.source_date),
        'importance': memory.importance,
        'decay_rate': memory.decay_rate,
        'confidence': memory.confidence,
        'last_accessed': to_iso(memory.last_accessed),
        'expires_at': to_iso(memory.expires_at),
        'related_entities': encode_string_list(memory.related_entities),
        'tags': encode_string_list(memory.tags),
        'created_at': to_iso(memory.created_at),
        'updated_at': to_iso(memory.updated_at),
        'is_deleted': memory.is_deleted
    }


def document_to_memory(document: Dict[str, Any]) -> Memory:
    return Memory(id=document['id'],
                  user_id=document['user_id'],
                  content=document.get('content', ''),
                  category=document['category'],
                  source_type=document['source_type'],
                  source_id=document.get('source_id') or '',
                  source_date=from_iso(document['source_date']),
                  importance=float(document['importance']),
                  decay_rate=float(document['decay_rate']),
                  confidence=float(document['confidence']),
                  last_accessed=from_iso(document.get('last_accessed')),
                  expires_at=from_iso(document.get('expires_at')),
                  related_entities=decode_string_list(document.get('related_entities')),
                  tags=decode_string_list(document.get('tags')),
                  created_at=from_iso(document['created_at']),
                  updated_at=from_iso(document['updated_at']),
                  is_deleted=bool(document.get('is_deleted', False)))


def suggestion_document_id(suggestion: MergeSuggestion) -> str:
    """Deterministic id of a suggestion's unordered, case-insensitive entity pair.

    Using it as the document id lets the store itself reject a second
    suggestion for the same pair.
    """
    user_id, side1, side2 = suggestion_pair_key(suggestion)
    key = '|'.join([user_id, *side1, *side2])
    return hashlib.sha256(key.encode('utf-8')).hexdigest()


class OpenSearchMemoryRepository(MemoryRepository):

    def __init__(self, client: OpenSearchClient):
        self.client = client

    @translate_errors(OpenSearchError)
    async def insert(self, memory: Memory) -> Memory:
        try:
            await asyncio.to_thread(self.client.create_document, memory_to_document(memory), memory.id, 'memory')
        except OpenSearchConflictError as e:
            raise DuplicateRecordError(str(e)) from e
        return memory

    @translate_errors(OpenSearchError)
    async def insert_many(self, memories: Sequence[Memory]) -> List[Memory]:
        documents = {memory.id: memory_to_document(memory) for memory in memories}
        created = await asyncio.to_thread(self.client.bulk_create, documents, 'memory')
        logger.debug(f'Bulk stored {created} memories')
        return list(memories)

    @translate_errors(OpenSearchError)
    async def get(self, user_id: str, memory_id: str) -> Optional[Memory]:
        result = await asyncio.to_thread(self.client.get_document, user_id, memory_id, 'memory')
        return document_to_memory(result['document']) if result else None

    @translate_errors(OpenSearchError)
    async def search(self, user_id: str, query: str, limit: int) -> List[Memory]:
        results = await asyncio.to_thread(self.client.keyword_search, query, user_id, limit, 'memory', {'is_deleted': False})
        return [document_to_memory(r['document']) for r in results]

    @translate_errors(OpenSearchError)
    async def list_memories(self, user_id: str, limit: int, include_deleted: bool = False) -> List[Memory]:
        filters = None if include_deleted else {'is_deleted': False}
        results = await asyncio.to_thread(self.client.filtered_search, user_id, 'memory', filters, limit,
                                          [{'created_at': {'order': 'desc'}}])
        return [document_to_memory(r['document']) for r in results]

    async def _update(self, user_id: str, memory_id: str, fields: Dict[str, Any]) -> None:
        # Ids are global but access is per user
        existing = await asyncio.to_thread(self.client.get_document, user_id, memory_id, 'memory')
        if existing is None:
            raise RecordNotFoundError(f'Memory {memory_id} not found for user {user_id}')
        try:
            await asyncio.to_thread(self.client.update_document, existing['id'], fields, 'memory')
        except OpenSearchNotFoundError as e:
            raise RecordNotFoundError(str(e)) from e

    @translate_errors(OpenSearchError)
    async def update_last_accessed(self, user_id: str, memory_id: str, accessed_at: datetime) -> None:
        await self._update(user_id, memory_id, {'last_accessed': to_iso(accessed_at), 'updated_at': to_iso(accessed_at)})

    @translate_errors(OpenSearchError)
    async def soft_delete(self, user_id: str, memory_id: str) -> None:
        await self._update(user_id, memory_id, {'is_deleted': True, 'updated_at': to_iso(utc_now())})

    @translate_errors(OpenSearchError)
    async def hard_delete(self, user_id: str, memory_id: str) -> None:
        existing = await asyncio.to_thread(self.client.get_document, user_id, memory_id, 'memory')
        if existing is None:
            raise RecordNotFoundError(f'Memory {memory_id} not found for user {user_id}')
        await asyncio.to_thread(self.client.delete_document, existing['id'], 'memory')


class OpenSearchAliasRepository(AliasRepository):

    def __init__(self, client: OpenSearchClient):
        self.client = client

    @translate_errors(OpenSearchError)
    async def list_aliases(self, user_id: str) -> List[EntityAlias]:
        results = await asyncio.to_thread(self.client.filtered_search, user_id, 'alias', None, 1000)
        return [
            EntityAlias(user_id=d['user_id'],
                        entity_type=d['entity_type'],
                        entity_value=d['entity_value'],
                        alias=d['alias'],
                        id=d.get('id'),
                        created_at=from_iso(d.get('created_at'))) for d in (r['document'] for r in results)
        ]

    @translate_errors(OpenSearchError)
    async def add_alias(self, alias: EntityAlias) -> EntityAlias:
        key = '|'.join([alias.user_id, alias.entity_type, alias.entity_value.strip().lower(), alias.alias.strip().lower()])
        alias_id = hashlib.sha256(key.encode('utf-8')).hexdigest()
        created_at = alias.created_at or utc_now()
        document = {
            'id': alias_id,
            'user_id': alias.user_id,
            'entity_type': alias.entity_type,
            'entity_value': alias.entity_value,
            'alias': alias.alias,
            'created_at': to_iso(created_at)
        }
        try:
            await asyncio.to_thread(self.client.create_document, document, alias_id, 'alias')
        except OpenSearchConflictError as e:
            raise DuplicateRecordError(str(e)) from e

        return EntityAlias(user_id=alias.user_id,
                           entity_type=alias.entity_type,
                           entity_value=alias.entity_value,
                           alias=alias.alias,
                           id=alias_id,
                           created_at=created_at)


class OpenSearchMergeSuggestionRepository(MergeSuggestionRepository):

    def __init__(self, client: OpenSearchClient):
        self.client = client

    @staticmethod
    def _to_document(suggestion: MergeSuggestion) -> Dict[str, Any]:
        return {
            'id': suggestion.id,
            'user_id': suggestion.user_id,
            'entity1_type': suggestion.entity1_type,
            'entity1_value': suggestion.entity1_value,
            'entity2_type': suggestion.entity2_type,
            'entity2_value': suggestion.entity2_value,
            'confidence': suggestion.confidence,
            'match_reason': suggestion.match_reason,
            'status': suggestion.status,
            'reviewed_at': to_iso(suggestion.reviewed_at),
            'reviewed_by': suggestion.reviewed_by,
            'created_at': to_iso(suggestion.created_at)
        }

    @staticmethod
    def _from_document(document: Dict[str, Any]) -> MergeSuggestion:
        return MergeSuggestion(user_id=document['user_id'],
                               entity1_type=document['entity1_type'],
                               entity1_value=document['entity1_value'],
                               entity2_type=document['entity2_type'],
                               entity2_value=document['entity2_value'],
                               confidence=float(document['confidence']),
                               match_reason=document.get('match_reason', ''),
                               status=document['status'],
                               id=document['id'],
                               reviewed_at=from_iso(document.get('reviewed_at')),
                               reviewed_by=document.get('reviewed_by'),
                               created_at=from_iso(document.get('created_at')))

    @translate_errors(OpenSearchError)
    async def insert(self, suggestion: MergeSuggestion) -> MergeSuggestion:
        stored = replace(suggestion)
        stored.id = suggestion_document_id(suggestion)
        stored.created_at = stored.created_at or utc_now()
        try:
            await asyncio.to_thread(self.client.create_document, self._to_document(stored), stored.id, 'merge_suggestion')
        except OpenSearchConflictError as e:
            raise DuplicateRecordError(str(e)) from e
        return stored

    @translate_errors(OpenSearchError)
    async def list_suggestions(self, user_id: str, status: Optional[str] = None) -> List[MergeSuggestion]:
        filters = {'status': status} if status else None
        results = await asyncio.to_thread(self.client.filtered_search, user_id, 'merge_suggestion', filters, 1000,
                                          [{'confidence': {'order': 'desc'}}])
        return [self._from_document(r['document']) for r in results]

    @translate_errors(OpenSearchError)
    async def update_status(self, user_id: str, suggestion_id: str, status: str,
                            reviewed_at: Optional[datetime],
                            reviewed_by: Optional[str] = None) -> MergeSuggestion:
        existing = await asyncio.to_thread(self.client.get_document, user_id, suggestion_id, 'merge_suggestion')
        if existing is None:
            raise RecordNotFoundError(f'Merge suggestion {suggestion_id} not found for user {user_id}')

        try:
            await asyncio.to_thread(self.client.update_document, existing['id'], {
                'status': status,
                'reviewed_at': to_iso(reviewed_at),
                'reviewed_by': reviewed_by
            }, 'merge_suggestion')
        except OpenSearchNotFoundError as e:
            raise RecordNotFoundError(str(e)) from e

        suggestion = self._from_document(existing['document'])
        suggestion.status = status
        suggestion.reviewed_at = reviewed_at
        suggestion.reviewed_by = reviewed_by
        return suggestion
