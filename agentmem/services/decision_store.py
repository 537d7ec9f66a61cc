"""
Decision audit store: agent decisions with reasoning chains.

Decisions are immutable once recorded, except for the outcome, which is set
later (and may be overwritten).
"""

import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..models.core import Decision, DecisionCreate
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.enrichment import EnrichmentQueue
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, term
from ..utils.timestamp_utils import from_iso, to_iso, utc_now

logger = get_logger(__name__)

INDEX_TYPE = 'decision'
DEFAULT_CONFIDENCE = 0.7


def decision_from_document(doc: Dict, similarity: Optional[float] = None) -> Decision:
    return Decision(id=doc.get('id', ''),
                    instance_id=doc.get('instance_id', ''),
                    session_id=doc.get('session_id'),
                    channel=doc.get('channel'),
                    sender_id=doc.get('sender_id'),
                    decision=doc.get('decision', ''),
                    reasoning=list(doc.get('reasoning') or []),
                    confidence=float(doc.get('confidence', DEFAULT_CONFIDENCE)),
                    entities_involved=list(doc.get('entities_involved') or []),
                    documents_used=list(doc.get('documents_used') or []),
                    memories_used=list(doc.get('memories_used') or []),
                    model_used=doc.get('model_used'),
                    tokens_used=doc.get('tokens_used'),
                    context_snapshot=doc.get('context_snapshot'),
                    outcome=doc.get('outcome'),
                    outcome_at=from_iso(doc.get('outcome_at')),
                    created_at=from_iso(doc.get('created_at')),
                    updated_at=from_iso(doc.get('updated_at')),
                    similarity=similarity)


class DecisionStore:
    """Records and reads decisions in OpenSearch."""

    def __init__(self,
                 opensearch: OpenSearchClient,
                 embed: BedrockEmbed,
                 enrichment: EnrichmentQueue,
                 clock: Callable[[], datetime] = utc_now):
        self.opensearch = opensearch
        self.embed = embed
        self.enrichment = enrichment
        self.clock = clock

    def record(self, data: DecisionCreate) -> str:
        """Persist a decision, then attach an embedding of its text best-effort.

        Returns:
            The new decision id
        """
        decision_id = str(uuid.uuid4())
        now = to_iso(self.clock())

        document = {
            'id': decision_id,
            'instance_id': data.instance_id,
            'session_id': data.session_id,
            'channel': data.channel,
            'sender_id': data.sender_id,
            'decision': data.decision,
            'reasoning': list(data.reasoning),
            'confidence': data.confidence if data.confidence is not None else DEFAULT_CONFIDENCE,
            'entities_involved': list(data.entities_involved or []),
            'documents_used': list(data.documents_used or []),
            'memories_used': list(data.memories_used or []),
            'model_used': data.model_used,
            'tokens_used': data.tokens_used,
            'context_snapshot': data.context_snapshot,
            'created_at': now,
            'updated_at': now,
        }
        self.opensearch.index_document(document, decision_id, INDEX_TYPE)
        logger.debug(f'Recorded decision {decision_id} for instance {data.instance_id}')

        text = ' '.join([data.decision] + list(data.reasoning))
        self.enrichment.submit(f'embed-decision-{decision_id}', self._attach_embedding, decision_id, text)
        return decision_id

    def _attach_embedding(self, decision_id: str, text: str) -> None:
        embedding = self.embed.embed(text)
        if embedding:
            self.opensearch.update_document(decision_id, INDEX_TYPE, fields={'embedding': embedding})

    def get(self, instance_id: str, decision_id: str) -> Optional[Decision]:
        doc = self.opensearch.get_document(decision_id, INDEX_TYPE)
        if not doc or doc.get('instance_id') != instance_id:
            return None
        return decision_from_document(doc)

    def list(self, instance_id: str, limit: int = 50, offset: int = 0) -> List[Decision]:
        """Newest decisions first."""
        docs = self.opensearch.search_documents(INDEX_TYPE, [term('instance_id', instance_id)],
                                                sort=[{
                                                    'created_at': {
                                                        'order': 'desc'
                                                    }
                                                }],
                                                size=limit,
                                                offset=offset)
        return [decision_from_document(doc) for doc in docs]

    def record_outcome(self, decision_id: str, outcome: str) -> bool:
        """Set the outcome and its timestamp together. A repeat call overwrites both.

        Returns:
            False if the decision does not exist
        """
        now = to_iso(self.clock())
        return self.opensearch.update_document(decision_id,
                                               INDEX_TYPE,
                                               fields={
                                                   'outcome': outcome,
                                                   'outcome_at': now,
                                                   'updated_at': now
                                               })

    def count(self, instance_id: str) -> int:
        return self.opensearch.count_documents(INDEX_TYPE, [term('instance_id', instance_id)])

    def search_by_vector(self, instance_id: str, query_vector: List[float], limit: int = 5) -> List[Decision]:
        results = self.opensearch.vector_search(query_vector, instance_id, limit, INDEX_TYPE)
        return [decision_from_document(r['document'], similarity=r['similarity']) for r in results]
