"""
Core data models for the memory graph system.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

# Memory categories and sources
MEMORY_CATEGORIES = ('preference', 'fact', 'event', 'decision', 'sentiment', 'reminder', 'relationship')
MEMORY_SOURCES = ('email', 'calendar', 'chat', 'manual')

# Decay rate per category, in days^-1 (read-only)
DECAY_RATES: Mapping[str, float] = MappingProxyType({
    'preference': 0.01,
    'fact': 0.02,
    'relationship': 0.02,
    'decision': 0.03,
    'event': 0.05,
    'sentiment': 0.10,
    'reminder': 0.20,
})

# Importance used when the creator does not supply one (read-only)
DEFAULT_IMPORTANCE: Mapping[str, float] = MappingProxyType({
    'preference': 0.8,
    'fact': 0.7,
    'relationship': 0.7,
    'decision': 0.6,
    'event': 0.5,
    'sentiment': 0.4,
    'reminder': 0.6,
})

# Entity mentions
ENTITY_TYPES = ('person', 'company', 'project', 'tool', 'topic', 'location', 'action_item', 'date')
ENTITY_SOURCES = ('metadata', 'subject', 'body')

# Merge suggestion review states
SUGGESTION_PENDING = 'pending'
SUGGESTION_ACCEPTED = 'accepted'
SUGGESTION_REJECTED = 'rejected'
SUGGESTION_STATUSES = (SUGGESTION_PENDING, SUGGESTION_ACCEPTED, SUGGESTION_REJECTED)

# Who reviewed a suggestion
REVIEWED_BY_SYSTEM = 'system_auto'
REVIEWED_BY_USER = 'user'

# Relationship edges
SAME_AS = 'SAME_AS'
RELATIONSHIP_TYPES = (
    'WORKS_WITH',
    'REPORTS_TO',
    'WORKS_FOR',
    'LEADS',
    'WORKS_ON',
    'EXPERT_IN',
    'LOCATED_IN',
    'PARTNERS_WITH',
    'COMPETES_WITH',
    'OWNS',
    'RELATED_TO',
    'DEPENDS_ON',
    'PART_OF',
    'SUBTOPIC_OF',
    'ASSOCIATED_WITH',
    'FAMILY_OF',
    'MARRIED_TO',
    'SIBLING_OF',
    SAME_AS,
)
RELATIONSHIP_ACTIVE = 'active'


def _parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def node_id(entity_type: str, entity_value: str) -> str:
    """Graph node id for an entity (``type:value``)."""
    return f'{entity_type}:{entity_value}'


@dataclass
class Memory:
    """A remembered fact, preference or event belonging to one user.

    Strength is never stored on the record; it is recomputed from the decay
    fields whenever the memory is read.
    """
    id: str
    user_id: str  # Owner; every store call is partitioned by it
    content: str
    category: str  # One of MEMORY_CATEGORIES
    source_type: str  # One of MEMORY_SOURCES
    source_date: datetime  # When the memory was observed
    importance: float  # 0-1, slows decay by up to half
    decay_rate: float  # days^-1, from DECAY_RATES
    confidence: float  # 0-1, extraction confidence
    created_at: datetime
    updated_at: datetime
    source_id: str = ''
    last_accessed: Optional[datetime] = None  # Reading the memory resets its decay clock
    expires_at: Optional[datetime] = None  # Hard expiration
    related_entities: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    is_deleted: bool = False


@dataclass
class CreateMemoryInput:
    """Input for creating a new memory."""
    user_id: str
    content: str
    category: str
    source_type: str
    source_id: Optional[str] = None
    source_date: Optional[datetime] = None
    importance: Optional[float] = None  # Defaults to DEFAULT_IMPORTANCE[category]
    confidence: Optional[float] = None  # Defaults to the configured default confidence
    related_entities: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    expires_at: Optional[datetime] = None


@dataclass
class ScoredMemory:
    """A memory with its decay-weighted strength computed at read time."""
    memory: Memory
    strength: float
    age_in_days: float
    days_since_access: float
    score: float  # strength * 0.5 + confidence * 0.3 + importance * 0.2


@dataclass
class MemorySearchOptions:
    """Filters for decay-weighted memory retrieval."""
    query: str
    user_id: str
    categories: Optional[List[str]] = None
    min_strength: Optional[float] = None
    min_confidence: Optional[float] = None
    min_importance: Optional[float] = None
    related_entity: Optional[str] = None
    tags: Optional[List[str]] = None
    limit: Optional[int] = None
    source_type: Optional[str] = None
    include_expired: bool = False


@dataclass
class DecayStats:
    """Decay statistics for a collection of memories."""
    total: int
    avg_strength: float
    strong_memories: int  # strength >= 0.7
    fading_memories: int  # 0.3 <= strength < 0.7
    weak_memories: int  # strength < 0.3
    avg_half_life: float  # days, memories that never decay excluded


@dataclass
class MemoryStats:
    """Counts of a user's live memories."""
    total: int
    by_category: Dict[str, int]
    by_source: Dict[str, int]


@dataclass
class EntityMention:
    """A named mention extracted from a message, mail or calendar event."""
    type: str  # One of ENTITY_TYPES
    value: str
    normalized: str = ''
    confidence: float = 1.0
    source: str = 'body'  # One of ENTITY_SOURCES
    context: str = ''
    is_identity: bool = False  # Known alias of the acting user
    match_confidence: Optional[float] = None

    @property
    def node_id(self) -> str:
        return node_id(self.type, self.value)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EntityMention':
        """Build a mention from an extraction record (camelCase keys accepted)."""
        value = str(data.get('value', '')).strip()
        is_identity = data.get('is_identity', data.get('isIdentity', False))
        match_confidence = data.get('match_confidence', data.get('matchConfidence'))
        return cls(type=str(data.get('type', '')).strip().lower(),
                   value=value,
                   normalized=str(data.get('normalized') or value.lower()),
                   confidence=float(data.get('confidence', 1.0)),
                   source=str(data.get('source', 'body')),
                   context=str(data.get('context', '')),
                   is_identity=_parse_flag(is_identity),
                   match_confidence=float(match_confidence) if match_confidence is not None else None)


@dataclass
class EntityAlias:
    """A known alternate name for an entity, recorded per user."""
    user_id: str
    entity_type: str
    entity_value: str  # Canonical name
    alias: str
    id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class MatchResult:
    """Result of comparing two entity mentions."""
    entity1: EntityMention
    entity2: EntityMention
    confidence: float
    match_reason: str


@dataclass
class MergeSuggestion:
    """A persisted candidate merge awaiting (or past) review."""
    user_id: str
    entity1_type: str
    entity1_value: str
    entity2_type: str
    entity2_value: str
    confidence: float
    match_reason: str
    status: str = SUGGESTION_PENDING
    id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None  # REVIEWED_BY_SYSTEM for auto-accepted suggestions
    created_at: Optional[datetime] = None


@dataclass
class MergeStats:
    """Review outcomes of a user's merge suggestions."""
    total: int
    pending: int
    auto_accepted: int
    manually_accepted: int
    rejected: int
    auto_accept_rate: float  # auto_accepted / total, 0 when there are none


@dataclass
class Relationship:
    """A typed edge between two entities in a user's graph."""
    user_id: str
    from_entity_type: str
    from_entity_value: str
    to_entity_type: str
    to_entity_value: str
    relationship_type: str
    confidence: float
    evidence: str = ''
    source_id: str = ''
    inferred_at: Optional[datetime] = None
    status: str = RELATIONSHIP_ACTIVE
    id: Optional[str] = None

    @property
    def source(self) -> str:
        return node_id(self.from_entity_type, self.from_entity_value)

    @property
    def target(self) -> str:
        return node_id(self.to_entity_type, self.to_entity_value)


@dataclass
class GraphNode:
    """A node of the graph view."""
    id: str
    type: str
    value: str
    normalized: str
    connection_count: int = 0
    is_identity: bool = False  # Involved in a SAME_AS edge
    cluster: Optional[str] = None


@dataclass
class GraphEdge:
    """An edge of the graph view."""
    id: str
    source: str
    target: str
    type: str
    confidence: float
    evidence: str = ''
    is_identity: bool = False


@dataclass
class GraphStats:
    """Summary statistics of a graph view."""
    total_nodes: int
    total_edges: int
    nodes_by_type: Dict[str, int]
    edges_by_type: Dict[str, int]
    avg_confidence: float
    identity_relationships: int
    clusters: int


@dataclass
class GraphData:
    """Nodes, edges, clusters and pagination for graph visualization."""
    nodes: List[GraphNode]
    edges: List[GraphEdge]
    total: int
    has_more: bool
    stats: Optional[GraphStats] = None

    @property
    def returned(self) -> int:
        return len(self.nodes)
