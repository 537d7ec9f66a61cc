"""
OpenSearch client wrapper for memory documents, vector similarity and keyword search.

Each record kind lives in its own index named '<prefix>_<index_type>'. Every
document carries an 'instance_id' keyword field, and every search is filtered
on it.
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

INDEX_TYPES = ('event', 'entity', 'decision', 'config', 'document', 'chunk')


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def term(field: str, value: Any) -> Dict[str, Any]:
    return {'term': {field: value}}


def terms(field: str, values: List[Any]) -> Dict[str, Any]:
    return {'terms': {field: list(values)}}


def date_range(field: str, lt: Optional[str] = None, lte: Optional[str] = None, gt: Optional[str] = None,
               gte: Optional[str] = None) -> Dict[str, Any]:
    bounds = {key: value for key, value in (('lt', lt), ('lte', lte), ('gt', gt), ('gte', gte)) if value is not None}
    return {'range': {field: bounds}}


def exists(field: str) -> Dict[str, Any]:
    return {'exists': {'field': field}}


def missing(field: str) -> Dict[str, Any]:
    return {'bool': {'must_not': [exists(field)]}}


def any_of(*clauses: Dict[str, Any]) -> Dict[str, Any]:
    return {'bool': {'should': list(clauses), 'minimum_should_match': 1}}


def not_expired(now_iso: str) -> Dict[str, Any]:
    """Filter for rows with no expiry or an expiry after now."""
    return any_of(missing('expires_at'), date_range('expires_at', gt=now_iso))


def _vector_field(dimension: int) -> Dict[str, Any]:
    return {
        'type': 'knn_vector',
        'dimension': dimension,
        'method': {
            'name': 'hnsw',
            'space_type': 'cosinesimil',
            'engine': 'lucene'
        }
    }


def _index_body(index_type: str, dimension: int) -> Dict[str, Any]:
    """Build mappings for an index type."""
    keyword = {'type': 'keyword'}
    text = {'type': 'text'}
    date = {'type': 'date'}
    properties = {'id': keyword, 'instance_id': keyword, 'created_at': date}

    if index_type == 'event':
        properties.update({
            'session_id': keyword,
            'event_type': keyword,
            'channel': keyword,
            'sender_id': keyword,
            'content': text,
            'summary': text,
            'importance': {'type': 'float'},
            'metadata': {'type': 'object', 'enabled': False},
            'embedding': _vector_field(dimension),
            'consolidated_at': date,
            'expires_at': date,
        })
    elif index_type == 'entity':
        properties.update({
            'type': keyword,
            'name': keyword,
            'aliases': keyword,
            'summary': text,
            'importance': {'type': 'float'},
            'interaction_count': {'type': 'integer'},
            'last_seen': date,
            'metadata': {'type': 'object', 'enabled': False},
            'embedding': _vector_field(dimension),
            'updated_at': date,
        })
    elif index_type == 'decision':
        properties.update({
            'session_id': keyword,
            'channel': keyword,
            'sender_id': keyword,
            'decision': text,
            'reasoning': text,
            'confidence': {'type': 'float'},
            'entities_involved': keyword,
            'documents_used': keyword,
            'memories_used': keyword,
            'model_used': keyword,
            'tokens_used': {'type': 'integer'},
            'context_snapshot': {'type': 'object', 'enabled': False},
            'outcome': text,
            'outcome_at': date,
            'embedding': _vector_field(dimension),
            'updated_at': date,
        })
    elif index_type == 'config':
        properties.update({
            'tier': keyword,
            'api_key': keyword,
            'digest_content': {'type': 'text', 'index': False},
            'last_digest_at': date,
            'digest_network_enabled': {'type': 'boolean'},
            'last_mined_at': date,
            'last_consolidated_at': date,
            'updated_at': date,
        })
    elif index_type == 'document':
        properties.update({
            'filename': keyword,
            'status': keyword,
            'size_bytes': {'type': 'long'},
            'content': {'type': 'text', 'index': False},
        })
    elif index_type == 'chunk':
        properties.update({
            'document_id': keyword,
            'filename': keyword,
            'chunk_index': {'type': 'integer'},
            'content': text,
            'embedding': _vector_field(dimension),
        })
    else:
        raise OpenSearchError(f'Unknown index type: {index_type}')

    settings = {'index': {'knn': True}}
    return {'mappings': {'properties': properties}, 'settings': settings}


def similarity_from_score(score: float) -> float:
    """Convert a lucene cosinesimil score, (1 + cos) / 2, back to cosine similarity."""
    if score is None:
        return -1.0
    return 2.0 * score - 1.0


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built opensearchpy client (skips AWS authentication setup)
        """
        self.config = config

        if client is not None:
            self.client = client
        else:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
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
        return f'{self.config.index_prefix}_{index_type}'

    def create_index_if_not_exists(self, index_type: str) -> str:
        """
        Create index if it doesn't exist.

        Args:
            index_type: One of INDEX_TYPES

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_name(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=_index_body(index_type, self.config.dimension))
            if response.get('acknowledged', False):
                logger.info(f'Created index {index_name}')
                return 'created'
            return 'failed'

        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')

    def create_indexes(self) -> None:
        """Create every index the engine uses, waiting briefly after new ones."""
        created = [index_type for index_type in INDEX_TYPES if self.create_index_if_not_exists(index_type) == 'created']
        if created:
            logger.info(f'Waiting 5s for index sync-up: {created}')
            time.sleep(5)

    def index_document(self, document: Dict[str, Any], doc_id: str, index_type: str, create_only: bool = False) -> bool:
        """
        Index a document under a fixed id.

        Args:
            document: Document to index
            doc_id: Document id
            index_type: One of INDEX_TYPES
            create_only: Fail instead of overwriting when the id already exists

        Returns:
            True if written, False if create_only and the id was taken
        """
        index_name = self.index_name(index_type)

        try:
            kwargs = {'op_type': 'create'} if create_only else {}
            response = self.client.index(index=index_name, body=document, id=doc_id, refresh=True, **kwargs)
            logger.debug(f'Indexed document {doc_id} in {index_name}')
            return response.get('result') in ['created', 'updated']

        except ConflictError:
            logger.debug(f'Document {doc_id} already exists in {index_name}')
            return False
        except OpenSearchException as e:
            logger.error(f'Error indexing document: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')

    def get_document(self, doc_id: str, index_type: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a document source by id.

        Returns:
            Document source if found, None otherwise
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.get(index=index_name, id=doc_id)
            return response['_source'] if response.get('found') else None

        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')

    def update_document(self,
                        doc_id: str,
                        index_type: str,
                        fields: Optional[Dict[str, Any]] = None,
                        increments: Optional[Dict[str, int]] = None) -> bool:
        """
        Partially update a document in a single scripted request.

        Args:
            doc_id: Document id
            index_type: One of INDEX_TYPES
            fields: Fields to overwrite
            increments: Numeric fields to increase by the given amount

        Returns:
            True if the document was updated, False if it does not exist
        """
        index_name = self.index_name(index_type)
        fields = fields or {}
        increments = increments or {}

        statements = [f'ctx._source.{name} = params.set_{name}' for name in fields]
        statements += [
            f'ctx._source.{name} = (ctx._source.{name} == null ? 0 : ctx._source.{name}) + params.inc_{name}'
            for name in increments
        ]
        params = {f'set_{name}': value for name, value in fields.items()}
        params.update({f'inc_{name}': value for name, value in increments.items()})
        body = {'script': {'source': '; '.join(statements), 'lang': 'painless', 'params': params}}

        try:
            response = self.client.update(index=index_name, id=doc_id, body=body, refresh=True, retry_on_conflict=3)
            return response.get('result') in ['updated', 'noop']

        except NotFoundError:
            logger.warning(f'Document {doc_id} not found for update in {index_name}')
            return False
        except OpenSearchException as e:
            logger.error(f'Error updating document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to update document: {e}')

    def update_documents(self, doc_ids: List[str], index_type: str, fields: Dict[str, Any]) -> int:
        """
        Set the same fields on a set of documents in one update-by-query request.

        Version conflicts abort the request instead of skipping documents.

        Returns:
            Number of documents updated
        """
        if not doc_ids:
            return 0

        index_name = self.index_name(index_type)
        statements = [f'ctx._source.{name} = params.set_{name}' for name in fields]
        params = {f'set_{name}': value for name, value in fields.items()}
        body = {
            'query': {
                'ids': {
                    'values': list(doc_ids)
                }
            },
            'script': {
                'source': '; '.join(statements),
                'lang': 'painless',
                'params': params
            }
        }

        try:
            response = self.client.update_by_query(index=index_name, body=body, refresh=True, conflicts='abort')
            return int(response.get('updated', 0))

        except OpenSearchException as e:
            logger.error(f'Error updating {len(doc_ids)} documents in {index_name}: {e}')
            raise OpenSearchError(f'Failed to update documents: {e}')

    def search_documents(self,
                         index_type: str,
                         filters: List[Dict[str, Any]],
                         sort: Optional[List[Dict[str, Any]]] = None,
                         size: int = 20,
                         offset: int = 0) -> List[Dict[str, Any]]:
        """
        Return document sources matching all filters.

        Args:
            index_type: One of INDEX_TYPES
            filters: Filter clauses (see term, date_range, missing, any_of)
            sort: Sort clauses, e.g. [{'created_at': {'order': 'desc'}}]
            size: Maximum number of documents
            offset: Number of matching documents to skip

        Returns:
            List of document sources without embeddings
        """
        index_name = self.index_name(index_type)
        search_body = {
            'size': size,
            'from': offset,
            'query': {
                'bool': {
                    'filter': filters
                }
            },
            '_source': {
                'excludes': ['embedding']
            }
        }
        if sort:
            search_body['sort'] = sort

        try:
            response = self.client.search(index=index_name, body=search_body)
            return [hit['_source'] for hit in response['hits']['hits']]

        except OpenSearchException as e:
            logger.error(f'Error searching {index_name}: {e}')
            raise OpenSearchError(f'Document search failed: {e}')

    def count_documents(self, index_type: str, filters: List[Dict[str, Any]]) -> int:
        index_name = self.index_name(index_type)

        try:
            response = self.client.count(index=index_name, body={'query': {'bool': {'filter': filters}}})
            return int(response.get('count', 0))

        except OpenSearchException as e:
            logger.error(f'Error counting documents in {index_name}: {e}')
            raise OpenSearchError(f'Document count failed: {e}')

    def delete_by_query(self, index_type: str, filters: List[Dict[str, Any]]) -> int:
        """
        Delete all documents matching the filters.

        Returns:
            Number of documents deleted
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.delete_by_query(index=index_name,
                                                   body={'query': {
                                                       'bool': {
                                                           'filter': filters
                                                       }
                                                   }},
                                                   refresh=True,
                                                   conflicts='proceed')
            deleted = int(response.get('deleted', 0))
            if deleted:
                logger.debug(f'Deleted {deleted} documents from {index_name}')
            return deleted

        except OpenSearchException as e:
            logger.error(f'Error deleting documents from {index_name}: {e}')
            raise OpenSearchError(f'Delete by query failed: {e}')

    def vector_search(self,
                      query_vector: List[float],
                      instance_id: str,
                      top_k: int,
                      index_type: str,
                      filters: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """
        Perform vector similarity search within one instance.

        Args:
            query_vector: Query vector for similarity search
            instance_id: Instance ID to filter results
            top_k: Number of results to return
            index_type: One of INDEX_TYPES
            filters: Extra filter clauses

        Returns:
            Results ordered by descending similarity, each with 'id', 'score',
            'similarity' (cosine) and 'document'
        """
        index_name = self.index_name(index_type)

        # Filtered inside knn: the k nearest are chosen among this instance's vectors only
        search_body = {
            'size': top_k,
            'query': {
                'knn': {
                    'embedding': {
                        'vector': query_vector,
                        'k': top_k,
                        'filter': {
                            'bool': {
                                'filter': [term('instance_id', instance_id)] + (filters or [])
                            }
                        }
                    }
                }
            },
            '_source': {
                'excludes': ['embedding']
            }
        }

        try:
            response = self.client.search(index=index_name, body=search_body)

            results = []
            for hit in response['hits']['hits']:
                results.append({
                    'id': hit['_id'],
                    'score': hit['_score'],
                    'similarity': similarity_from_score(hit['_score']),
                    'document': hit['_source']
                })

            logger.debug(f'Vector search returned {len(results)} results from {index_name} for instance {instance_id}')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')

    def keyword_search(self,
                       query_text: str,
                       instance_id: str,
                       fields: List[str],
                       top_k: int,
                       index_type: str,
                       filters: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """Perform BM25 keyword search within one instance.

        Args:
            query_text: Text query
            instance_id: Instance ID to filter results
            fields: Text fields to match against
            top_k: Number of results to return
            index_type: One of INDEX_TYPES
            filters: Extra filter clauses

        Returns:
            Results ordered by descending relevance, each with 'id', 'score' and 'document'
        """
        index_name = self.index_name(index_type)

        search_body = {
            'size': top_k,
            'query': {
                'bool': {
                    'must': [{
                        'multi_match': {
                            'query': query_text,
                            'fields': fields
                        }
                    }],
                    'filter': [term('instance_id', instance_id)] + (filters or [])
                }
            },
            '_source': {
                'excludes': ['embedding']
            }
        }

        try:
            response = self.client.search(index=index_name, body=search_body)

            results = []
            for hit in response['hits']['hits']:
                results.append({'id': hit['_id'], 'score': hit['_score'], 'document': hit['_source']})

            logger.debug(f'Keyword search returned {len(results)} results from {index_name} for instance {instance_id}')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing keyword search: {e}')
            raise OpenSearchError(f'Keyword search failed: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name('config'))
            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
