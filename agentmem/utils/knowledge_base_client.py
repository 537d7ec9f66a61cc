"""
Read-only access to the knowledge-base document store.

Documents and their chunks are written by a separate ingestion service into
the '<prefix>_document' and '<prefix>_chunk' indexes. This module only reads.
"""

from typing import List, Optional

from ..models.core import DOCUMENT_READY, DocumentChunk, KnowledgeDocument
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient, term
from .timestamp_utils import from_iso

logger = get_logger(__name__)

MAX_DOCUMENTS = 1000


class KnowledgeBaseClient:
    """Ranked chunk retrieval and document listing for one instance at a time."""

    def __init__(self, opensearch: OpenSearchClient):
        self.opensearch = opensearch

    def fetch_document_chunks(self,
                              instance_id: str,
                              query: str,
                              query_vector: Optional[List[float]] = None,
                              top_k: int = 5) -> List[DocumentChunk]:
        """
        Rank chunks by vector similarity, or by keyword relevance when no vector is given.

        Args:
            instance_id: Owning instance
            query: Natural-language query (used for keyword ranking)
            query_vector: Query embedding, if available
            top_k: Maximum number of chunks

        Returns:
            Chunks ordered by descending relevance
        """
        if query_vector:
            results = self.opensearch.vector_search(query_vector, instance_id, top_k, index_type='chunk')
        else:
            results = self.opensearch.keyword_search(query, instance_id, ['content'], top_k, index_type='chunk')

        chunks = []
        for result in results:
            doc = result['document']
            chunks.append(
                DocumentChunk(content=doc.get('content', ''),
                              similarity=float(result.get('similarity', result.get('score', 0.0))),
                              document_id=doc.get('document_id', ''),
                              filename=doc.get('filename', ''),
                              chunk_index=int(doc.get('chunk_index', 0))))
        return chunks

    def list_documents(self, instance_id: str, ready_only: bool = False) -> List[KnowledgeDocument]:
        """
        List an instance's documents, newest first.

        Args:
            instance_id: Owning instance
            ready_only: Only documents whose ingestion has finished

        Returns:
            Documents, with content populated
        """
        filters = [term('instance_id', instance_id)]
        if ready_only:
            filters.append(term('status', DOCUMENT_READY))

        docs = self.opensearch.search_documents('document',
                                                filters,
                                                sort=[{
                                                    'created_at': {
                                                        'order': 'desc'
                                                    }
                                                }],
                                                size=MAX_DOCUMENTS)
        return [
            KnowledgeDocument(id=doc.get('id', ''),
                              filename=doc.get('filename', ''),
                              status=doc.get('status', ''),
                              size_bytes=int(doc.get('size_bytes') or 0),
                              content=doc.get('content'),
                              created_at=from_iso(doc.get('created_at'))) for doc in docs
        ]

    def count_documents(self, instance_id: str) -> int:
        return self.opensearch.count_documents('document', [term('instance_id', instance_id)])

    def total_documents_mb(self, instance_id: str) -> float:
        total_bytes = sum(doc.size_bytes for doc in self.list_documents(instance_id))
        return round(total_bytes / (1024 * 1024), 2)
