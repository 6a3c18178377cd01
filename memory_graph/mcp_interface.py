"""
MCP Interface Layer using fastmcp for agent orchestration.
"""

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .models.core import CreateMemoryInput, EntityMention, GraphData, MemorySearchOptions, ScoredMemory
from .repositories.in_memory import (InMemoryAliasRepository, InMemoryMemoryRepository, InMemoryMergeSuggestionRepository,
                                     InMemoryRelationshipRepository)
from .services.graph_clusters import GraphDataError, GraphService
from .services.identity_relationships import IdentityRelationshipError, IdentityRelationshipService
from .services.memory_management import MemoryManagementError, MemoryService
from .services.merge_suggestions import MergeSuggestionError, MergeSuggestionService
from .utils.config import AppConfig, config
from .utils.health_check import get_system_info
from .utils.logging_config import get_logger
from .utils.timestamp_utils import from_iso, to_iso

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Memory Graph')


@dataclass
class Services:
    """Service objects wired to one storage backend."""
    memory: MemoryService
    merge_suggestions: MergeSuggestionService
    identity: IdentityRelationshipService
    graph: GraphService


def build_services(app_config: AppConfig) -> Services:
    """Wire the services to the configured storage backend ('aws' or 'memory')."""
    if app_config.storage_backend == 'memory':
        memory_repository = InMemoryMemoryRepository()
        alias_repository = InMemoryAliasRepository()
        suggestion_repository = InMemoryMergeSuggestionRepository()
        relationship_repository = InMemoryRelationshipRepository()
    elif app_config.storage_backend == 'aws':
        from .repositories.neptune import NeptuneRelationshipRepository
        from .repositories.opensearch import (OpenSearchAliasRepository, OpenSearchMemoryRepository,
                                              OpenSearchMergeSuggestionRepository)
        from .utils.neptune_client import NeptuneClient
        from .utils.opensearch_client import INDEX_TYPES, OpenSearchClient

        opensearch = OpenSearchClient(app_config.opensearch)
        for index_type in INDEX_TYPES:
            opensearch.create_index_if_not_exists(index_type)

        memory_repository = OpenSearchMemoryRepository(opensearch)
        alias_repository = OpenSearchAliasRepository(opensearch)
        suggestion_repository = OpenSearchMergeSuggestionRepository(opensearch)
        relationship_repository = NeptuneRelationshipRepository(NeptuneClient(app_config.neptune))
    else:
        raise ValueError(f'Unknown storage backend: {app_config.storage_backend}')

    logger.info(f'Using {app_config.storage_backend} storage backend')
    return Services(memory=MemoryService(memory_repository, app_config.memory),
                    merge_suggestions=MergeSuggestionService(alias_repository, suggestion_repository,
                                                             auto_accept_high_confidence=app_config.entity_resolution.auto_accept_high_confidence),
                    identity=IdentityRelationshipService(relationship_repository),
                    graph=GraphService(relationship_repository, app_config.graph))


_services: Optional[Services] = None


def get_services() -> Services:
    """Services for the running server, built on first use."""
    global _services
    if _services is None:
        _services = build_services(config)
    return _services


def scored_memory_to_dict(scored: ScoredMemory) -> Dict[str, Any]:
    memory = scored.memory
    return {
        'id': memory.id,
        'content': memory.content,
        'category': memory.category,
        'source_type': memory.source_type,
        'source_id': memory.source_id,
        'source_date': to_iso(memory.source_date),
        'importance': memory.importance,
        'confidence': memory.confidence,
        'related_entities': memory.related_entities,
        'tags': memory.tags,
        'strength': round(scored.strength, 4),
        'score': round(scored.score, 4),
        'age_in_days': round(scored.age_in_days, 2),
        'days_since_access': round(scored.days_since_access, 2)
    }


def graph_data_to_dict(graph: GraphData) -> Dict[str, Any]:
    result = {
        'nodes': [asdict(node) for node in graph.nodes],
        'edges': [asdict(edge) for edge in graph.edges],
        'pagination': {
            'total': graph.total,
            'returned': graph.returned,
            'has_more': graph.has_more
        }
    }
    if graph.stats is not None:
        result['stats'] = asdict(graph.stats)
    return result


def _require_user(user_id: str) -> None:
    if not user_id or not user_id.strip():
        raise ValueError('User ID is required')


@mcp.tool()
async def search_memories(user_id: str,
                          query: str,
                          categories: Optional[List[str]] = None,
                          min_strength: Optional[float] = None,
                          min_confidence: Optional[float] = None,
                          min_importance: Optional[float] = None,
                          related_entity: Optional[str] = None,
                          tags: Optional[List[str]] = None,
                          limit: int = 20) -> List[Dict[str, Any]]:
    """Search a user's memories ranked by decay-weighted relevance.

    Args:
        user_id: User ID
        query: Keywords to search for (blank returns the newest memories)
        categories: Only these memory categories
        min_strength: Minimum current strength (0-1)
        min_confidence: Minimum extraction confidence (0-1)
        min_importance: Minimum importance (0-1)
        related_entity: Only memories mentioning this entity
        tags: Only memories with at least one of these tags
        limit: Maximum number of results to return (default: 20)

    Returns:
        List of memories with strength and relevance score
    """
    _require_user(user_id)
    options = MemorySearchOptions(query=query,
                                  user_id=user_id,
                                  categories=categories,
                                  min_strength=min_strength,
                                  min_confidence=min_confidence,
                                  min_importance=min_importance,
                                  related_entity=related_entity,
                                  tags=tags,
                                  limit=limit)
    try:
        results = await get_services().memory.search_memories(options)
    except MemoryManagementError as e:
        logger.error(f'Memory management error in MCP search: {e}')
        raise Exception(f'Memory search failed: {e}')

    logger.debug(f'MCP search returned {len(results)} memories for user {user_id}')
    return [scored_memory_to_dict(scored) for scored in results]


@mcp.tool()
async def save_memory(user_id: str,
                      content: str,
                      category: str,
                      source_type: str = 'manual',
                      source_id: Optional[str] = None,
                      source_date: Optional[str] = None,
                      importance: Optional[float] = None,
                      confidence: Optional[float] = None,
                      related_entities: Optional[List[str]] = None,
                      tags: Optional[List[str]] = None,
                      expires_at: Optional[str] = None) -> Dict[str, Any]:
    """Save a memory for a user.

    Args:
        user_id: User ID
        content: The remembered fact, preference or event
        category: preference, fact, event, decision, sentiment, reminder or relationship
        source_type: email, calendar, chat or manual (default: manual)
        source_id: Id of the source item
        source_date: ISO-8601 date the memory was observed (default: now)
        importance: 0-1 (default depends on the category)
        confidence: 0-1 (default: 0.8)
        related_entities: Entity names the memory mentions
        tags: Free-form tags
        expires_at: ISO-8601 hard expiration date

    Returns:
        The stored memory's id, category and decay rate
    """
    _require_user(user_id)
    memory_input = CreateMemoryInput(user_id=user_id,
                                     content=content,
                                     category=category,
                                     source_type=source_type,
                                     source_id=source_id,
                                     source_date=from_iso(source_date),
                                     importance=importance,
                                     confidence=confidence,
                                     related_entities=related_entities,
                                     tags=tags,
                                     expires_at=from_iso(expires_at))
    try:
        memory = await get_services().memory.save_memory(memory_input)
    except MemoryManagementError as e:
        logger.error(f'Memory management error in MCP save: {e}')
        raise Exception(f'Memory save failed: {e}')

    return {'id': memory.id, 'category': memory.category, 'importance': memory.importance, 'decay_rate': memory.decay_rate}


@mcp.tool()
async def suggest_entity_merges(user_id: str,
                                entities: List[Dict[str, Any]],
                                auto_accept: Optional[bool] = None) -> Dict[str, int]:
    """Find likely duplicate entities and record merge suggestions for review.

    Args:
        user_id: User ID
        entities: Extracted entity records ({type, value, ...})
        auto_accept: Accept matches with confidence >= 0.95 (default from configuration)

    Returns:
        Counts of created and auto-accepted suggestions
    """
    _require_user(user_id)
    mentions = [EntityMention.from_dict(entity) for entity in entities]
    try:
        counts = await get_services().merge_suggestions.run(mentions, user_id, auto_accept)
    except MergeSuggestionError as e:
        logger.error(f'Merge suggestion error in MCP: {e}')
        raise Exception(f'Merge suggestion failed: {e}')

    return asdict(counts)


@mcp.tool()
async def get_merge_stats(user_id: str) -> Dict[str, Any]:
    """Get counts of a user's merge suggestions by review outcome.

    Args:
        user_id: User ID

    Returns:
        Total, pending, auto-accepted, manually accepted and rejected counts,
        with the share of suggestions accepted automatically
    """
    _require_user(user_id)
    try:
        stats = await get_services().merge_suggestions.get_merge_stats(user_id)
    except MergeSuggestionError as e:
        logger.error(f'Merge stats error in MCP: {e}')
        raise Exception(f'Failed to get merge stats: {e}')

    return asdict(stats)


@mcp.tool()
async def create_identity_relationships(user_id: str, entities: List[Dict[str, Any]]) -> Dict[str, int]:
    """Link the user's own identity mentions with SAME_AS relationships.

    Args:
        user_id: User ID
        entities: Extracted entity records; those with isIdentity set are linked

    Returns:
        Number of relationships created
    """
    _require_user(user_id)
    try:
        created = await get_services().identity.process_identity_relationships(entities, user_id)
    except IdentityRelationshipError as e:
        logger.error(f'Identity relationship error in MCP: {e}')
        raise Exception(f'Identity relationship creation failed: {e}')

    return {'created': created}


@mcp.tool()
async def get_graph_data(user_id: str,
                         entity_types: Optional[List[str]] = None,
                         relationship_types: Optional[List[str]] = None,
                         min_confidence: Optional[float] = None,
                         limit: Optional[int] = None,
                         center_entity: Optional[str] = None,
                         depth: Optional[int] = None,
                         include_stats: bool = True) -> Dict[str, Any]:
    """Get a user's relationship graph for visualization.

    Args:
        user_id: User ID
        entity_types: Node types to include
        relationship_types: Relationship types to include
        min_confidence: Minimum edge confidence (default: 0.5)
        limit: Maximum number of nodes (default: 100, max: 500)
        center_entity: Node id ("type:value") to centre the graph on
        depth: Hops from the centre entity (1-3, default: 2)
        include_stats: Include graph statistics

    Returns:
        Nodes, edges, optional stats and pagination
    """
    _require_user(user_id)
    try:
        graph = await get_services().graph.get_graph_data(user_id,
                                                          entity_types=entity_types,
                                                          relationship_types=relationship_types,
                                                          min_confidence=min_confidence,
                                                          limit=limit,
                                                          center_entity=center_entity,
                                                          depth=depth,
                                                          include_stats=include_stats)
    except GraphDataError as e:
        logger.error(f'Graph data error in MCP: {e}')
        raise Exception(f'Graph data failed: {e}')

    return graph_data_to_dict(graph)


@mcp.tool()
async def get_system_status() -> Dict[str, Any]:
    """Get service configuration and the health of the storage backend.

    Returns:
        Service name, configuration summary and per-component health
    """
    return await asyncio.to_thread(get_system_info, config)


if __name__ == '__main__':
    mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
