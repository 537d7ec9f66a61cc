"""
Log mining pipeline: raw agent transcripts -> events, decisions and entities.
"""

from typing import Optional

from ..models.core import DecisionCreate, ExtractedEntity, ExtractedEvent, MemoryEvent, MiningResult
from ..utils.config import MemoryEngineConfig, config
from ..utils.instance_client import InstanceClient
from ..utils.logging_config import get_logger
from .config_store import ConfigStore
from .decision_store import DecisionStore
from .entity_store import EntityStore
from .episodic_store import EpisodicStore
from .extraction import ExtractionService
from .importance import score_importance

logger = get_logger(__name__)


class LogMiner:
    """Runs log mining passes for single instances."""

    def __init__(self,
                 instances: InstanceClient,
                 extraction: ExtractionService,
                 episodic: EpisodicStore,
                 decisions: DecisionStore,
                 entities: EntityStore,
                 configs: ConfigStore,
                 settings: Optional[MemoryEngineConfig] = None):
        self.instances = instances
        self.extraction = extraction
        self.episodic = episodic
        self.decisions = decisions
        self.entities = entities
        self.configs = configs
        self.settings = settings or config.memory

    def run(self, instance_id: str) -> MiningResult:
        """Mine the instance's recent logs once.

        Returns:
            Counts of stored events, upserted entities and recorded decisions
        """
        result = MiningResult()
        memory_config = self.configs.get_or_create(instance_id)

        logs = self.instances.fetch_instance_logs(instance_id)
        if len(logs.strip()) < self.settings.min_log_length:
            logger.debug(f'Not enough log content to mine for instance {instance_id}')
            return result

        for extracted in self.extraction.extract_events(logs):
            self._store_event(instance_id, memory_config.tier, extracted, result)

        self.configs.mark_mined(instance_id)
        if result.events_extracted:
            logger.info(f'Mined instance {instance_id}: {result}')
        return result

    def _store_event(self, instance_id: str, tier: str, extracted: ExtractedEvent, result: MiningResult) -> None:
        importance = extracted.importance if extracted.importance is not None else score_importance(extracted.content)

        self.episodic.append(
            MemoryEvent(instance_id=instance_id,
                        event_type=extracted.event_type,
                        content=extracted.content,
                        summary=extracted.summary or None,
                        session_id=extracted.session_id,
                        channel=extracted.channel,
                        sender_id=extracted.sender_id,
                        importance=importance), tier)
        result.events_extracted += 1

        if extracted.decision and extracted.reasoning:
            self.decisions.record(
                DecisionCreate(instance_id=instance_id,
                               decision=extracted.decision,
                               reasoning=extracted.reasoning,
                               session_id=extracted.session_id,
                               channel=extracted.channel,
                               sender_id=extracted.sender_id,
                               confidence=importance))
            result.decisions_recorded += 1

        for mention in self.extraction.extract_entities(extracted.content):
            self._store_entity(instance_id, mention)
            result.entities_found += 1

    def _store_entity(self, instance_id: str, mention: ExtractedEntity) -> None:
        entity = self.entities.upsert(instance_id,
                                      mention.type,
                                      mention.name,
                                      aliases=mention.aliases,
                                      summary=mention.context or None)

        for relationship in mention.relationships:
            other = self.entities.find_by_name(instance_id, relationship.entity)
            if other is None or other.id == entity.id:
                continue
            self.entities.add_relationship(entity, other, relationship.type)
