"""
Consolidation engine: folds aged episodic events into long-lived entity profiles.

One pass per instance:
1. purge expired events (all instances)
2. page through unconsolidated events with a sender older than the dwell window
3. bucket them by sender
4. skip buckets with too little evidence, leaving them for a later pass
5. synthesize a profile per remaining bucket and upsert it as an entity
6. mark the whole bucket consolidated, profile or not
"""

from collections import OrderedDict
from typing import Dict, List, Optional

from ..models.core import ConsolidationResult, MemoryEvent
from ..utils.config import MemoryEngineConfig, config
from ..utils.logging_config import get_logger
from .config_store import ConfigStore
from .entity_store import EntityStore
from .episodic_store import EpisodicStore
from .extraction import ExtractionService

logger = get_logger(__name__)

UNKNOWN_SENDER = '__unknown__'
MAX_BACKLOG_PAGES = 50


class ConsolidationEngine:
    """Runs consolidation passes for single instances."""

    def __init__(self,
                 episodic: EpisodicStore,
                 entities: EntityStore,
                 extraction: ExtractionService,
                 configs: ConfigStore,
                 settings: Optional[MemoryEngineConfig] = None):
        self.episodic = episodic
        self.entities = entities
        self.extraction = extraction
        self.configs = configs
        self.settings = settings or config.memory

    @staticmethod
    def group_by_sender(events: List[MemoryEvent]) -> Dict[str, List[MemoryEvent]]:
        """Bucket events by sender, keeping their order; sender-less events go under UNKNOWN_SENDER."""
        buckets: Dict[str, List[MemoryEvent]] = OrderedDict()
        for event in events:
            buckets.setdefault(event.sender_id or UNKNOWN_SENDER, []).append(event)
        return buckets

    def run(self, instance_id: str) -> ConsolidationResult:
        """Run one consolidation pass for an instance.

        Returns:
            Counts of consolidated events, updated entities and purged events
        """
        result = ConsolidationResult()
        self.configs.get_or_create(instance_id)
        result.expired = self.episodic.purge_expired()

        events = self._load_backlog(instance_id)
        if not events:
            logger.debug(f'No events to consolidate for instance {instance_id}')
            self.configs.mark_consolidated(instance_id)
            return result

        for sender_id, bucket in self.group_by_sender(events).items():
            if sender_id == UNKNOWN_SENDER:
                continue
            if len(bucket) < self.settings.min_events_per_sender:
                logger.debug(f'Sender {sender_id} has {len(bucket)} events, waiting for more evidence')
                continue

            if self._profile_sender(instance_id, sender_id, bucket):
                result.entities_updated += 1

            self.episodic.mark_consolidated([event.id for event in bucket])
            result.consolidated += len(bucket)

        self.configs.mark_consolidated(instance_id)
        logger.info(f'Consolidated instance {instance_id}: {result}')
        return result

    def _load_backlog(self, instance_id: str) -> List[MemoryEvent]:
        """Page through the whole unconsolidated backlog, so buckets skipped for now cannot hide newer events."""
        page_size = self.settings.unconsolidated_batch_size
        events: List[MemoryEvent] = []
        cursor = None
        for _ in range(MAX_BACKLOG_PAGES):
            page = self.episodic.list_unconsolidated(instance_id,
                                                     self.settings.consolidation_dwell_days,
                                                     after=cursor,
                                                     size=page_size)
            events.extend(page)
            if len(page) < page_size:
                return events
            cursor = page[-1]

        logger.warning(f'Unconsolidated backlog for instance {instance_id} exceeds {len(events)} events, '
                       f'the rest waits for the next pass')
        return events

    def _profile_sender(self, instance_id: str, sender_id: str, bucket: List[MemoryEvent]) -> bool:
        """Synthesize and store a profile for one sender; True if an entity was upserted."""
        recent = bucket[-self.settings.max_profile_events:]
        profile = self.extraction.consolidate_profile(sender_id, recent)
        if profile is None or not profile.name:
            logger.debug(f'No usable profile for sender {sender_id}')
            return False

        aliases = [sender_id] + [alias for alias in profile.aliases if alias != sender_id]
        self.entities.upsert(instance_id,
                             profile.type,
                             profile.name,
                             aliases=aliases,
                             summary=profile.summary,
                             metadata=profile.metadata,
                             importance=profile.importance)
        return True
