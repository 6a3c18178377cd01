"""
OpenSearch client wrapper for memory, alias and merge suggestion documents.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import ConflictError, NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

INDEX_TYPES = ('memory', 'alias', 'merge_suggestion')

_KEYWORD = {'type': 'keyword'}
_TEXT = {'type': 'text'}
_FLOAT = {'type': 'float'}
_DATE = {'type': 'date'}
_BOOLEAN = {'type': 'boolean'}

INDEX_MAPPINGS = {
    'memory': {
        'id': _KEYWORD,
        'user_id': _KEYWORD,
        'content': _TEXT,
        'category': _KEYWORD,
        'source_type': _KEYWORD,
        'source_id': _KEYWORD,
        'source_date': _DATE,
        'importance': _FLOAT,
        'decay_rate': _FLOAT,
        'confidence': _FLOAT,
        'last_accessed': _DATE,
        'expires_at': _DATE,
        'related_entities': _TEXT,  # JSON array text
        'tags': _TEXT,  # JSON array text
        'created_at': _DATE,
        'updated_at': _DATE,
        'is_deleted': _BOOLEAN
    },
    'alias': {
        'id': _KEYWORD,
        'user_id': _KEYWORD,
        'entity_type': _KEYWORD,
        'entity_value': _KEYWORD,
        'alias': _KEYWORD,
        'created_at': _DATE
    },
    'merge_suggestion': {
        'id': _KEYWORD,
        'user_id': _KEYWORD,
        'entity1_type': _KEYWORD,
        'entity1_value': _KEYWORD,
        'entity2_type': _KEYWORD,
        'entity2_value': _KEYWORD,
        'confidence': _FLOAT,
        'match_reason': _TEXT,
        'status': _KEYWORD,
        'reviewed_at': _DATE,
        'reviewed_by': _KEYWORD,
        'created_at': _DATE
    }
}

KEYWORD_SEARCH_FIELDS = {
    'memory': ['content', 'tags', 'related_entities'],
    'alias': ['entity_value', 'alias'],
    'merge_suggestion': ['entity1_value', 'entity2_value', 'match_reason']
}


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchConflictError(OpenSearchError):
    """Raised when a document with the same id already exists."""
    pass


class OpenSearchNotFoundError(OpenSearchError):
    """Raised when a document addressed by id does not exist."""
    pass


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
        """
        self.config = config

        # Get AWS credentials and create auth
        credentials = boto3.Session().get_credentials()
        auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)

        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def index_name(self, index_type: str) -> str:
        """Full index name for a document type."""
        if index_type not in INDEX_TYPES:
            raise OpenSearchError(f'Unknown index type: {index_type}')
        return f'{self.config.index_prefix}_{index_type}'

    def create_index_if_not_exists(self, index_type: str = 'memory') -> str:
        """
        Create the index for a document type if it doesn't exist.

        Args:
            index_type: Type of index (memory, alias or merge_suggestion)

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_name(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            index_body = {'mappings': {'properties': INDEX_MAPPINGS[index_type]}}
            response = self.client.indices.create(index=index_name, body=index_body)
            logger.info(f'Created index {index_name}')
            if response.get('acknowledged', False):
                if self.config.index_sync_seconds > 0:
                    logger.info(f'Waiting {self.config.index_sync_seconds}s for index {index_name} sync-up...')
                    time.sleep(self.config.index_sync_seconds)
                return 'created'
            else:
                return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')

    def create_document(self, document: Dict[str, Any], doc_id: str, index_type: str = 'memory') -> None:
        """
        Create a document, failing if one with the same id exists.

        Args:
            document: Document to store
            doc_id: Document id
            index_type: Type of index

        Raises:
            OpenSearchConflictError: If the id is already taken
            OpenSearchError: If the request fails
        """
        index_name = self.index_name(index_type)

        try:
            self.client.create(index=index_name, id=doc_id, body=document)
            logger.debug(f'Created document {doc_id} in {index_name}')
        except ConflictError as e:
            logger.debug(f'Document {doc_id} already exists in {index_name}')
            raise OpenSearchConflictError(f'Document {doc_id} already exists: {e}')
        except OpenSearchException as e:
            logger.error(f'Error creating document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to create document: {e}')

    def bulk_create(self, documents: Dict[str, Dict[str, Any]], index_type: str = 'memory') -> int:
        """
        Create several documents in one request.

        Args:
            documents: Mapping of document id to document
            index_type: Type of index

        Returns:
            Number of documents created

        Raises:
            OpenSearchError: If the request fails or any document is rejected
        """
        if not documents:
            return 0

        index_name = self.index_name(index_type)
        body = []
        for doc_id, document in documents.items():
            body.append({'create': {'_index': index_name, '_id': doc_id}})
            body.append(document)

        try:
            response = self.client.bulk(body=body)
        except OpenSearchException as e:
            logger.error(f'Error in bulk create on {index_name}: {e}')
            raise OpenSearchError(f'Bulk create failed: {e}')

        if response.get('errors'):
            failed = [item['create'] for item in response.get('items', []) if item.get('create', {}).get('error')]
            logger.error(f'Bulk create rejected {len(failed)} documents in {index_name}')
            raise OpenSearchError(f'Bulk create rejected {len(failed)} documents: {failed[:3]}')

        logger.debug(f'Bulk created {len(documents)} documents in {index_name}')
        return len(documents)

    def get_document(self, user_id: str, doc_id: str, index_type: str = 'memory') -> Optional[Dict[str, Any]]:
        """
        Get a specific document by user_id and document id.

        Args:
            user_id: User ID to filter results
            doc_id: Document ID to retrieve
            index_type: Type of index

        Returns:
            Document if found, None otherwise
        """
        index_name = self.index_name(index_type)

        try:
            search_body = {
                'size': 1,
                'query': {
                    'bool': {
                        'filter': [{
                            'term': {
                                'user_id': user_id
                            }
                        }, {
                            'term': {
                                'id': doc_id
                            }
                        }]
                    }
                }
            }

            response = self.client.search(index=index_name, body=search_body)

            if response['hits']['total']['value'] > 0:
                hit = response['hits']['hits'][0]
                return {'id': hit['_id'], 'score': hit['_score'], 'document': hit['_source']}

            return None

        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id} for user {user_id}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')

    def update_document(self, doc_id: str, fields: Dict[str, Any], index_type: str = 'memory') -> None:
        """
        Partially update a document.

        Args:
            doc_id: Document ID to update
            fields: Fields to overwrite
            index_type: Type of index

        Raises:
            OpenSearchNotFoundError: If the document does not exist
            OpenSearchError: If the request fails
        """
        index_name = self.index_name(index_type)

        try:
            self.client.update(index=index_name, id=doc_id, body={'doc': fields})
            logger.debug(f'Updated document {doc_id} in {index_name}')
        except NotFoundError as e:
            logger.warning(f'Document {doc_id} not found for update')
            raise OpenSearchNotFoundError(f'Document {doc_id} not found: {e}')
        except OpenSearchException as e:
            logger.error(f'Error updating document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to update document: {e}')

    def delete_document(self, doc_id: str, index_type: str = 'memory') -> bool:
        """
        Delete a document from the index.

        Args:
            doc_id: Document ID to delete
            index_type: Type of index

        Returns:
            True if deletion was successful, False if the document was not found
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.delete(index=index_name, id=doc_id)

            success = response.get('result') == 'deleted'
            if success:
                logger.debug(f'Deleted document {doc_id} from {index_name}')
            else:
                logger.warning(f'Document {doc_id} not found for deletion')

            return success

        except NotFoundError:
            logger.warning(f'Document {doc_id} not found for deletion')
            return False
        except OpenSearchException as e:
            logger.error(f'Error deleting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to delete document: {e}')

    def keyword_search(self,
                       query_text: str,
                       user_id: str,
                       top_k: int = 20,
                       index_type: str = 'memory',
                       filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Perform keyword-based text search.

        Args:
            query_text: Text query for keyword search
            user_id: User ID to filter results
            top_k: Number of results to return
            index_type: Type of index
            filters: Extra exact-match filters (field -> value)

        Returns:
            List of search results with scores and documents
        """
        index_name = self.index_name(index_type)

        try:
            search_body = {
                'size': top_k,
                'query': {
                    'bool': {
                        'must': [{
                            'multi_match': {
                                'query': query_text,
                                'fields': KEYWORD_SEARCH_FIELDS[index_type]
                            }
                        }],
                        'filter': self._term_filters(user_id, filters)
                    }
                }
            }

            response = self.client.search(index=index_name, body=search_body)
            results = self._hits(response)

            logger.debug(f'Keyword search returned {len(results)} results for user {user_id}')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing keyword search: {e}')
            raise OpenSearchError(f'Keyword search failed: {e}')

    def filtered_search(self,
                        user_id: str,
                        index_type: str = 'memory',
                        filters: Optional[Dict[str, Any]] = None,
                        top_k: int = 100,
                        sort: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """Fetch a user's documents matching exact-value filters.

        Args:
            user_id: User ID to filter results
            index_type: Type of index
            filters: Exact-match filters (field -> value)
            top_k: Number of results to return
            sort: OpenSearch sort clauses

        Returns:
            List of search results with scores and documents
        """
        index_name = self.index_name(index_type)

        try:
            search_body = {'size': top_k, 'query': {'bool': {'filter': self._term_filters(user_id, filters)}}}
            if sort:
                search_body['sort'] = sort

            response = self.client.search(index=index_name, body=search_body)
            results = self._hits(response)

            logger.debug(f'Filtered search on {index_name} returned {len(results)} results for user {user_id}')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing filtered search: {e}')
            raise OpenSearchError(f'Filtered search failed: {e}')

    @staticmethod
    def _term_filters(user_id: str, filters: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        clauses = [{'term': {'user_id': user_id}}]
        for field, value in (filters or {}).items():
            clauses.append({'term': {field: value}})
        return clauses

    @staticmethod
    def _hits(response: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [{'id': hit['_id'], 'score': hit.get('_score'), 'document': hit['_source']} for hit in response['hits']['hits']]

    def missing_indexes(self) -> List[str]:
        """
        Index types whose index does not exist yet.

        Returns:
            List of missing index types (empty when the store is ready)

        Raises:
            OpenSearchError: If the cluster cannot be reached
        """
        try:
            return [index_type for index_type in INDEX_TYPES if not self.client.indices.exists(index=self.index_name(index_type))]

        except OpenSearchException as e:
            logger.error(f'OpenSearch health check failed: {e}')
            raise OpenSearchError(f'Failed to check indexes: {e}')
