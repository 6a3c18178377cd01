"""
Amazon Neptune graph database client with Gremlin Python driver and AWS SigV4 authentication.

Entities are vertices labelled ``Entity`` and relationships are edges labelled
``Relationship``. Every element carries a ``user_id`` property and every query
filters on it.
"""

from functools import wraps
from typing import Any, Dict, List, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal

from ..models.core import Relationship
from .config import NeptuneConfig
from .logging_config import get_logger
from .timestamp_utils import to_iso, to_seconds_str

logger = get_logger(__name__)

ENTITY_LABEL = 'Entity'
RELATIONSHIP_LABEL = 'Relationship'


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations once after reconnecting on a closed transport."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


def entity_vertex_id(user_id: str, entity_type: str, entity_value: str) -> str:
    """Vertex id of an entity within one user's graph."""
    return f'{user_id}:{entity_type}:{entity_value}'


def _single(data: Dict[str, Any], key: str, default: Any = None) -> Any:
    # value_map returns vertex properties as lists and edge properties as scalars
    value = data.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
        """
        self.config = config
        self.connection = None
        self.g = None
        self._connect()

        logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = Session().region_name or self.config.region or 'us-east-1'

        # Sign the WebSocket handshake
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()

    @retry_on_connection_error
    def upsert_entity_vertex(self, user_id: str, entity_type: str, entity_value: str, created_at: Optional[str] = None):
        """
        Get an entity vertex, creating it if needed.

        Args:
            user_id: User ID for isolation
            entity_type: Type of entity
            entity_value: Entity value as mentioned
            created_at: Creation timestamp

        Returns:
            The vertex
        """
        vertex_id = entity_vertex_id(user_id, entity_type, entity_value)

        existing = self.g.V().has(ENTITY_LABEL, 'id', vertex_id).has('user_id', user_id).to_list()
        if existing:
            return existing[0]

        vertex = self.g.addV(ENTITY_LABEL).property('id', vertex_id)\
            .property('user_id', user_id)\
            .property('type', entity_type)\
            .property('value', entity_value)\
            .property('normalized', entity_value.lower())\
            .property('created_at', created_at or to_seconds_str())\
            .next()

        logger.debug(f'Created entity vertex: {vertex_id}')
        return vertex

    @retry_on_connection_error
    def create_relationship_edge(self, relationship: Relationship) -> str:
        """
        Create a relationship edge between two entity vertices (created if missing).

        Args:
            relationship: Edge to store

        Returns:
            The edge id
        """
        source = self.upsert_entity_vertex(relationship.user_id, relationship.from_entity_type, relationship.from_entity_value)
        target = self.upsert_entity_vertex(relationship.user_id, relationship.to_entity_type, relationship.to_entity_value)

        edge_id = relationship.id or f'{relationship.user_id}:{relationship.source}:{relationship.relationship_type}:{relationship.target}'

        edge = self.g.V(source).addE(RELATIONSHIP_LABEL).to(target)\
            .property('id', edge_id)\
            .property('user_id', relationship.user_id)\
            .property('relationship_type', relationship.relationship_type)\
            .property('from_entity_type', relationship.from_entity_type)\
            .property('from_entity_value', relationship.from_entity_value)\
            .property('to_entity_type', relationship.to_entity_type)\
            .property('to_entity_value', relationship.to_entity_value)\
            .property('confidence', relationship.confidence)\
            .property('evidence', relationship.evidence)\
            .property('source_id', relationship.source_id)\
            .property('status', relationship.status)

        if relationship.inferred_at:
            edge = edge.property('inferred_at', to_iso(relationship.inferred_at))

        edge.next()
        logger.debug(f'Created {relationship.relationship_type} edge: {edge_id}')
        return edge_id

    @retry_on_connection_error
    def get_relationships(self, user_id: str, limit: int = 5000) -> List[Dict[str, Any]]:
        """
        Get the property maps of a user's relationship edges.

        Args:
            user_id: User ID to filter by
            limit: Maximum number of edges

        Returns:
            List of edge property dictionaries
        """
        edge_data = self.g.E().has_label(RELATIONSHIP_LABEL).has('user_id', user_id).limit(limit).value_map().to_list()

        edges = []
        for data in edge_data:
            edges.append({
                'id': _single(data, 'id'),
                'user_id': _single(data, 'user_id', user_id),
                'relationship_type': _single(data, 'relationship_type'),
                'from_entity_type': _single(data, 'from_entity_type'),
                'from_entity_value': _single(data, 'from_entity_value'),
                'to_entity_type': _single(data, 'to_entity_type'),
                'to_entity_value': _single(data, 'to_entity_value'),
                'confidence': float(_single(data, 'confidence', 0.0)),
                'evidence': _single(data, 'evidence', ''),
                'source_id': _single(data, 'source_id', ''),
                'status': _single(data, 'status', 'active'),
                'inferred_at': _single(data, 'inferred_at')
            })

        logger.debug(f'Found {len(edges)} relationship edges for user {user_id}')
        return edges

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy
        """
        self.g.V().limit(1).count().next()
        return True
