"""
Configuration management for storage services and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_prefix: str
    index_sync_seconds: float


@dataclass
class MemoryConfig:
    """Configuration for memory storage and decay-weighted retrieval."""
    default_confidence: float
    refresh_top_k: int
    default_search_limit: int
    candidate_limit: int
    recent_limit: int


@dataclass
class EntityResolutionConfig:
    """Configuration for entity matching and merge suggestions."""
    auto_accept_high_confidence: bool
    nicknames_path: Optional[str]


@dataclass
class GraphConfig:
    """Configuration for the relationship graph view."""
    default_min_confidence: float
    default_node_limit: int
    max_node_limit: int
    default_depth: int
    relationship_fetch_limit: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    storage_backend: str  # aws or memory
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    memory: MemoryConfig
    entity_resolution: EntityResolutionConfig
    graph: GraphConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'))

    # Document store configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_prefix=os.getenv('OPENSEARCH_INDEX_PREFIX', 'memory_graph'),
                                         index_sync_seconds=float(os.getenv('OPENSEARCH_INDEX_SYNC_SECONDS', '15')))

    # Memory configuration
    memory_config = MemoryConfig(default_confidence=float(os.getenv('MEMORY_DEFAULT_CONFIDENCE', '0.8')),
                                 refresh_top_k=int(os.getenv('MEMORY_REFRESH_TOP_K', '5')),
                                 default_search_limit=int(os.getenv('MEMORY_SEARCH_LIMIT', '20')),
                                 candidate_limit=int(os.getenv('MEMORY_CANDIDATE_LIMIT', '100')),
                                 recent_limit=int(os.getenv('MEMORY_RECENT_LIMIT', '50')))

    # Entity resolution configuration
    entity_resolution_config = EntityResolutionConfig(
        auto_accept_high_confidence=_env_bool('ENTITY_AUTO_ACCEPT', 'false'),
        nicknames_path=os.getenv('NICKNAMES_PATH') or None)

    # Graph view configuration
    graph_config = GraphConfig(default_min_confidence=float(os.getenv('GRAPH_MIN_CONFIDENCE', '0.5')),
                               default_node_limit=int(os.getenv('GRAPH_NODE_LIMIT', '100')),
                               max_node_limit=int(os.getenv('GRAPH_MAX_NODE_LIMIT', '500')),
                               default_depth=int(os.getenv('GRAPH_DEFAULT_DEPTH', '2')),
                               relationship_fetch_limit=int(os.getenv('GRAPH_RELATIONSHIP_LIMIT', '5000')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     storage_backend=os.getenv('STORAGE_BACKEND', 'aws').strip().lower(),
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     memory=memory_config,
                     entity_resolution=entity_resolution_config,
                     graph=graph_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
