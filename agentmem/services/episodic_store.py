"""
Episodic event store: append-only raw interaction events with expiry.
"""

import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..models.core import MemoryEvent
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import config
from ..utils.enrichment import EnrichmentQueue
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, any_of, date_range, exists, missing, not_expired, term
from ..utils.timestamp_utils import days_ago, from_iso, to_iso, utc_now
from .tier_policy import expiry_for

logger = get_logger(__name__)

INDEX_TYPE = 'event'


def event_from_document(doc: Dict, similarity: Optional[float] = None) -> MemoryEvent:
    return MemoryEvent(id=doc.get('id'),
                       instance_id=doc.get('instance_id', ''),
                       session_id=doc.get('session_id'),
                       event_type=doc.get('event_type', 'CONVERSATION'),
                       channel=doc.get('channel'),
                       sender_id=doc.get('sender_id'),
                       content=doc.get('content', ''),
                       summary=doc.get('summary'),
                       importance=float(doc.get('importance', 0.5)),
                       metadata=doc.get('metadata'),
                       consolidated_at=from_iso(doc.get('consolidated_at')),
                       expires_at=from_iso(doc.get('expires_at')),
                       created_at=from_iso(doc.get('created_at')),
                       similarity=similarity)


class EpisodicStore:
    """Stores MemoryEvents in OpenSearch. Events are never updated except to mark them consolidated."""

    def __init__(self,
                 opensearch: OpenSearchClient,
                 embed: BedrockEmbed,
                 enrichment: EnrichmentQueue,
                 clock: Callable[[], datetime] = utc_now):
        self.opensearch = opensearch
        self.embed = embed
        self.enrichment = enrichment
        self.clock = clock

    def append(self, event: MemoryEvent, tier: str) -> str:
        """Persist an event; its embedding is attached afterwards on a best-effort basis.

        Args:
            event: Event to store; id, created_at and expires_at are assigned here
            tier: Owning instance's tier, which fixes the expiry

        Returns:
            The new event id
        """
        now = self.clock()
        event.id = str(uuid.uuid4())
        event.created_at = now
        event.expires_at = expiry_for(tier, now)

        document = {
            'id': event.id,
            'instance_id': event.instance_id,
            'session_id': event.session_id,
            'event_type': event.event_type,
            'channel': event.channel,
            'sender_id': event.sender_id,
            'content': event.content,
            'summary': event.summary,
            'importance': event.importance,
            'metadata': event.metadata,
            'created_at': to_iso(now),
        }
        # Absent rather than null so that missing() filters match
        if event.expires_at is not None:
            document['expires_at'] = to_iso(event.expires_at)

        self.opensearch.index_document(document, event.id, INDEX_TYPE)
        logger.debug(f'Stored event {event.id} for instance {event.instance_id}')

        self.enrichment.submit(f'embed-event-{event.id}', self._attach_embedding, event.id, event.summary or event.content)
        return event.id

    def _attach_embedding(self, event_id: str, text: str) -> None:
        embedding = self.embed.embed(text)
        if embedding:
            self.opensearch.update_document(event_id, INDEX_TYPE, fields={'embedding': embedding})

    def list_recent(self, instance_id: str, limit: int = 50, since: Optional[datetime] = None) -> List[MemoryEvent]:
        """Newest events first, excluding expired ones."""
        filters = [term('instance_id', instance_id), not_expired(to_iso(self.clock()))]
        if since is not None:
            filters.append(date_range('created_at', gte=to_iso(since)))

        docs = self.opensearch.search_documents(INDEX_TYPE, filters, sort=[{'created_at': {'order': 'desc'}}], size=limit)
        return [event_from_document(doc) for doc in docs]

    def list_unconsolidated(self,
                            instance_id: str,
                            older_than_days: int = 7,
                            after: Optional[MemoryEvent] = None,
                            size: Optional[int] = None) -> List[MemoryEvent]:
        """Unconsolidated, unexpired events with a sender, created before the dwell cutoff, oldest first.

        Args:
            instance_id: Instance to read
            older_than_days: Dwell window
            after: Last event of the previous page; the page starts strictly after it
            size: Page size, config.memory.unconsolidated_batch_size by default

        Returns:
            One page of events ordered by (created_at, id)
        """
        now = self.clock()
        filters = [
            term('instance_id', instance_id),
            exists('sender_id'),
            missing('consolidated_at'),
            date_range('created_at', lt=to_iso(days_ago(now, older_than_days))),
            not_expired(to_iso(now)),
        ]
        if after is not None:
            created = to_iso(after.created_at)
            filters.append(
                any_of(date_range('created_at', gt=created),
                       {'bool': {
                           'filter': [term('created_at', created), {'range': {'id': {'gt': after.id}}}]
                       }}))

        docs = self.opensearch.search_documents(INDEX_TYPE,
                                                filters,
                                                sort=[{
                                                    'created_at': {
                                                        'order': 'asc'
                                                    }
                                                }, {
                                                    'id': {
                                                        'order': 'asc'
                                                    }
                                                }],
                                                size=size or config.memory.unconsolidated_batch_size)
        return [event_from_document(doc) for doc in docs]

    def mark_consolidated(self, ids: List[str]) -> int:
        """Stamp consolidated_at on a set of events in a single request."""
        if not ids:
            return 0
        return self.opensearch.update_documents(ids, INDEX_TYPE, {'consolidated_at': to_iso(self.clock())})

    def purge_expired(self) -> int:
        """Delete events that expired before this sweep started, across all instances.

        Events appended during the sweep expire after its start time, so they
        are never matched.
        """
        sweep_started = to_iso(self.clock())
        deleted = self.opensearch.delete_by_query(INDEX_TYPE, [date_range('expires_at', lt=sweep_started)])
        if deleted:
            logger.info(f'Purged {deleted} expired events')
        return deleted

    def count(self, instance_id: str, since: Optional[datetime] = None) -> int:
        filters = [term('instance_id', instance_id)]
        if since is not None:
            filters.append(date_range('created_at', gte=to_iso(since)))
        return self.opensearch.count_documents(INDEX_TYPE, filters)

    def search_by_vector(self, instance_id: str, query_vector: List[float], limit: int = 10) -> List[MemoryEvent]:
        results = self.opensearch.vector_search(query_vector,
                                                instance_id,
                                                limit,
                                                INDEX_TYPE,
                                                filters=[not_expired(to_iso(self.clock()))])
        return [event_from_document(r['document'], similarity=r['similarity']) for r in results]

    def search_by_text(self, instance_id: str, query: str, limit: int = 10) -> List[MemoryEvent]:
        results = self.opensearch.keyword_search(query,
                                                 instance_id, ['content', 'summary'],
                                                 limit,
                                                 INDEX_TYPE,
                                                 filters=[not_expired(to_iso(self.clock()))])
        return [event_from_document(r['document'], similarity=r['score']) for r in results]
