"""
Storage ports for memories, aliases, merge suggestions and relationships.

Services depend only on these interfaces; concrete stores live in the sibling
adapter modules. Every call is scoped by ``user_id`` and records of one user
are never visible to another.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from functools import wraps
from typing import List, Optional, Sequence

from ..models.core import EntityAlias, Memory, MergeSuggestion, Relationship


class RepositoryError(Exception):
    """Custom exception for storage failures."""
    pass


class DuplicateRecordError(RepositoryError):
    """Raised when a store rejects a record that violates a uniqueness rule."""
    pass


class RecordNotFoundError(RepositoryError):
    """Raised when a record addressed by id does not exist for the user."""
    pass


def translate_errors(*error_types):
    """Decorator re-raising store client errors as :class:`RepositoryError`.

    Repository errors raised inside the adapter pass through unchanged.
    """

    def decorator(func):

        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except RepositoryError:
                raise
            except error_types as e:
                raise RepositoryError(f'{func.__name__} failed: {e}') from e

        return wrapper

    return decorator


class MemoryRepository(ABC):
    """Persistence of memory records."""

    @abstractmethod
    async def insert(self, memory: Memory) -> Memory:
        """Store a new memory and return it as stored."""

    @abstractmethod
    async def insert_many(self, memories: Sequence[Memory]) -> List[Memory]:
        """Store several memories of one user and return them as stored."""

    @abstractmethod
    async def get(self, user_id: str, memory_id: str) -> Optional[Memory]:
        """Fetch a memory by id, including soft-deleted ones."""

    @abstractmethod
    async def search(self, user_id: str, query: str, limit: int) -> List[Memory]:
        """Keyword search over memory content, tags and related entities."""

    @abstractmethod
    async def list_memories(self, user_id: str, limit: int, include_deleted: bool = False) -> List[Memory]:
        """List a user's memories, newest first."""

    @abstractmethod
    async def update_last_accessed(self, user_id: str, memory_id: str, accessed_at: datetime) -> None:
        """Persist a new last-accessed timestamp."""

    @abstractmethod
    async def soft_delete(self, user_id: str, memory_id: str) -> None:
        """Flag a memory as deleted."""

    @abstractmethod
    async def hard_delete(self, user_id: str, memory_id: str) -> None:
        """Physically remove a memory."""


class AliasRepository(ABC):
    """The user's alias table."""

    @abstractmethod
    async def list_aliases(self, user_id: str) -> List[EntityAlias]:
        """All aliases recorded for a user."""

    @abstractmethod
    async def add_alias(self, alias: EntityAlias) -> EntityAlias:
        """Record an alias; raises DuplicateRecordError if it already exists."""


class MergeSuggestionRepository(ABC):
    """Persistence of merge suggestions.

    The (entity1, entity2) pair is unique per user, compared without regard to
    order or case; inserting a second record for a pair raises
    :class:`DuplicateRecordError`.
    """

    @abstractmethod
    async def insert(self, suggestion: MergeSuggestion) -> MergeSuggestion:
        """Store a new suggestion and return it with its id."""

    @abstractmethod
    async def list_suggestions(self, user_id: str, status: Optional[str] = None) -> List[MergeSuggestion]:
        """List suggestions, highest confidence first."""

    @abstractmethod
    async def update_status(self, user_id: str, suggestion_id: str, status: str,
                            reviewed_at: Optional[datetime],
                            reviewed_by: Optional[str] = None) -> MergeSuggestion:
        """Set a suggestion's review status."""


class RelationshipRepository(ABC):
    """Persistence of relationship edges between entities."""

    @abstractmethod
    async def save_relationships(self, user_id: str, relationships: Sequence[Relationship]) -> int:
        """Store edges, skipping ones already stored for the same unordered
        pair and type. Returns the number of edges written."""

    @abstractmethod
    async def list_relationships(self, user_id: str, limit: int) -> List[Relationship]:
        """All edges of a user's graph, up to ``limit``."""


def suggestion_pair_key(suggestion: MergeSuggestion) -> tuple:
    """Order- and case-insensitive identity of a suggestion's entity pair."""
    side1 = (suggestion.entity1_type, suggestion.entity1_value.strip().lower())
    side2 = (suggestion.entity2_type, suggestion.entity2_value.strip().lower())
    return (suggestion.user_id,) + tuple(sorted([side1, side2]))


def relationship_key(relationship: Relationship) -> tuple:
    """Order- and case-insensitive identity of an edge (same pair, same type)."""
    side1 = (relationship.from_entity_type, relationship.from_entity_value.strip().lower())
    side2 = (relationship.to_entity_type, relationship.to_entity_value.strip().lower())
    return (relationship.user_id, relationship.relationship_type) + tuple(sorted([side1, side2]))
