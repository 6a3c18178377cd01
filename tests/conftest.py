"""Shared fixtures for memory graph tests."""

import pytest

from memory_graph.repositories.in_memory import (InMemoryAliasRepository, InMemoryMemoryRepository, InMemoryMergeSuggestionRepository,
                                                 InMemoryRelationshipRepository)
from memory_graph.utils.config import MemoryConfig


@pytest.fixture
def memory_settings() -> MemoryConfig:
    """Memory settings independent of the environment."""
    return MemoryConfig(default_confidence=0.8, refresh_top_k=5, default_search_limit=20, candidate_limit=100, recent_limit=50)


@pytest.fixture
def memory_repository() -> InMemoryMemoryRepository:
    return InMemoryMemoryRepository()


@pytest.fixture
def alias_repository() -> InMemoryAliasRepository:
    return InMemoryAliasRepository()


@pytest.fixture
def suggestion_repository() -> InMemoryMergeSuggestionRepository:
    return InMemoryMergeSuggestionRepository()


@pytest.fixture
def relationship_repository() -> InMemoryRelationshipRepository:
    return InMemoryRelationshipRepository()
