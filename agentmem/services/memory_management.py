"""
Memory management facade: the ingest, read, search, digest and admin surface of the memory engine.

Callers are expected to be authorized already (see authorization.py). Every
operation is scoped to one instance; records belonging to another instance
are reported exactly like records that do not exist.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.core import (ENTITY_TYPES, EVENT_TYPES, BatchReport, ConsolidationResult, DecisionCreate, Entity,
                           InstanceInfo, MemoryConfig, MemoryEvent, MemoryStats, MiningResult, SearchResults)
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import MemoryEngineConfig, config
from ..utils.enrichment import EnrichmentQueue
from ..utils.instance_client import InstanceClient
from ..utils.knowledge_base_client import KnowledgeBaseClient
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import start_of_month, utc_now
from .config_store import ConfigStore
from .consolidation import ConsolidationEngine
from .decision_store import DecisionStore
from .digest_builder import DigestBuilder
from .entity_store import DEFAULT_RELATIONSHIP_CONFIDENCE, EntityStore
from .episodic_store import EpisodicStore
from .extraction import ExtractionService
from .log_mining import LogMiner
from .retrieval import HybridRetriever
from .scheduler import BatchJobRunner
from .tier_policy import limits_for

logger = get_logger(__name__)

MAX_DECISION_PAGE = 200
MAX_ENTITY_PAGE = 200
NOT_FOUND_MESSAGE = 'Not found'


class MemoryManagementError(Exception):
    """Custom exception for memory management errors."""
    pass


class MemoryValidationError(MemoryManagementError):
    """Raised when a request is malformed."""
    pass


class MemoryQuotaError(MemoryManagementError):
    """Raised when a write would exceed the instance's tier quota."""

    def __init__(self, message: str, limit: float, used: float):
        super().__init__(message)
        self.limit = limit
        self.used = used


class MemoryNotFoundError(MemoryManagementError):
    """Raised for unknown records and for records owned by another instance."""

    def __init__(self, message: str = NOT_FOUND_MESSAGE):
        super().__init__(message)


class MemoryAuthorizationError(MemoryManagementError):
    """Raised when no authorizer grants access to an instance."""
    pass


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MemoryValidationError(f'{field_name} must be a non-empty string')
    return value.strip()


def _require_unit_interval(value: Any, field_name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        raise MemoryValidationError(f'{field_name} must be a number between 0 and 1')
    return float(value)


def _optional_str_list(value: Any, field_name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise MemoryValidationError(f'{field_name} must be a list of strings')
    return value


class MemoryManagementService:
    """Unified service for memory ingest, retrieval, digest and maintenance jobs."""

    def __init__(self,
                 opensearch: Optional[OpenSearchClient] = None,
                 neptune: Optional[NeptuneClient] = None,
                 embed: Optional[BedrockEmbed] = None,
                 llm: Optional[BedrockLLM] = None,
                 extraction: Optional[ExtractionService] = None,
                 instances: Optional[InstanceClient] = None,
                 knowledge_base: Optional[KnowledgeBaseClient] = None,
                 enrichment: Optional[EnrichmentQueue] = None,
                 settings: Optional[MemoryEngineConfig] = None,
                 clock: Callable[[], datetime] = utc_now,
                 create_indexes: bool = True):
        """Initialize the memory management service.

        Any collaborator left out is built from the global configuration.
        """
        self.settings = settings or config.memory
        self.clock = clock
        self.opensearch = opensearch or OpenSearchClient(config.opensearch)
        self.neptune = neptune or NeptuneClient(config.neptune)
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.extraction = extraction or ExtractionService(llm or BedrockLLM(config.bedrock_llm))
        self.instances = instances or InstanceClient(config.host_app)
        self.knowledge_base = knowledge_base or KnowledgeBaseClient(self.opensearch)
        self.enrichment = enrichment or EnrichmentQueue(synchronous=self.settings.sync_enrichment)

        self.configs = ConfigStore(self.opensearch, clock)
        self.episodic = EpisodicStore(self.opensearch, self.embed, self.enrichment, clock)
        self.entities = EntityStore(self.opensearch, self.neptune, self.embed, self.enrichment, clock)
        self.decisions = DecisionStore(self.opensearch, self.embed, self.enrichment, clock)

        self.retriever = HybridRetriever(self.episodic, self.entities, self.decisions, self.knowledge_base, self.embed)
        self.digest_builder = DigestBuilder(self.episodic,
                                            self.entities,
                                            self.decisions,
                                            self.knowledge_base,
                                            self.configs,
                                            settings=self.settings,
                                            clock=clock)
        self.consolidation = ConsolidationEngine(self.episodic, self.entities, self.extraction, self.configs,
                                                 self.settings)
        self.miner = LogMiner(self.instances, self.extraction, self.episodic, self.decisions, self.entities,
                              self.configs, self.settings)
        self.runner = BatchJobRunner(self.settings)

        if create_indexes:
            try:
                self.opensearch.create_indexes()
            except OpenSearchError as e:
                logger.warning(f'Failed to create OpenSearch indexes: {e}')

        logger.info('Initialized MemoryManagementService')

    def shutdown(self) -> None:
        """Flush pending enrichment and release connections."""
        self.enrichment.shutdown()
        self.neptune.close()

    # Ingest

    def create_event(self,
                     instance_id: str,
                     event_type: str,
                     content: str,
                     session_id: Optional[str] = None,
                     channel: Optional[str] = None,
                     sender_id: Optional[str] = None,
                     summary: Optional[str] = None,
                     importance: Optional[float] = None,
                     metadata: Optional[Dict[str, Any]] = None) -> str:
        """Store an episodic event.

        Raises:
            MemoryValidationError: On an unknown event type, empty content or out-of-range importance
            MemoryQuotaError: If the instance has used its monthly event allowance
        """
        if event_type not in EVENT_TYPES:
            raise MemoryValidationError(f'event_type must be one of {", ".join(EVENT_TYPES)}')
        content = _require_text(content, 'content')
        importance = _require_unit_interval(importance, 'importance')
        if metadata is not None and not isinstance(metadata, dict):
            raise MemoryValidationError('metadata must be an object')

        memory_config = self.configs.get_or_create(instance_id)
        used = self.episodic.count(instance_id, since=start_of_month(self.clock()))
        if used >= memory_config.max_events_per_month:
            raise MemoryQuotaError(f'Monthly event limit reached ({memory_config.max_events_per_month})',
                                   limit=memory_config.max_events_per_month,
                                   used=used)

        event = MemoryEvent(instance_id=instance_id,
                            event_type=event_type,
                            content=content,
                            session_id=session_id,
                            channel=channel,
                            sender_id=sender_id,
                            summary=summary,
                            importance=importance if importance is not None else 0.5,
                            metadata=metadata)
        return self.episodic.append(event, memory_config.tier)

    def record_decision(self,
                        instance_id: str,
                        decision: str,
                        reasoning: List[str],
                        confidence: Optional[float] = None,
                        session_id: Optional[str] = None,
                        channel: Optional[str] = None,
                        sender_id: Optional[str] = None,
                        entities_involved: Optional[List[str]] = None,
                        documents_used: Optional[List[str]] = None,
                        memories_used: Optional[List[str]] = None,
                        model_used: Optional[str] = None,
                        tokens_used: Optional[int] = None,
                        context_snapshot: Optional[Dict[str, Any]] = None) -> str:
        """Record a decision and its reasoning chain.

        Raises:
            MemoryValidationError: If decision is empty, reasoning is not a list of strings
                or confidence is outside [0, 1]
        """
        decision = _require_text(decision, 'decision')
        if not isinstance(reasoning, list) or not all(isinstance(step, str) for step in reasoning):
            raise MemoryValidationError('reasoning must be a list of strings')
        confidence = _require_unit_interval(confidence, 'confidence')
        if tokens_used is not None and (isinstance(tokens_used, bool) or not isinstance(tokens_used, int)
                                        or tokens_used < 0):
            raise MemoryValidationError('tokens_used must be a non-negative integer')

        self.configs.get_or_create(instance_id)
        return self.decisions.record(
            DecisionCreate(instance_id=instance_id,
                           decision=decision,
                           reasoning=reasoning,
                           confidence=confidence,
                           session_id=session_id,
                           channel=channel,
                           sender_id=sender_id,
                           entities_involved=_optional_str_list(entities_involved, 'entities_involved'),
                           documents_used=_optional_str_list(documents_used, 'documents_used'),
                           memories_used=_optional_str_list(memories_used, 'memories_used'),
                           model_used=model_used,
                           tokens_used=tokens_used,
                           context_snapshot=context_snapshot))

    def record_decision_outcome(self, instance_id: str, decision_id: str, outcome: str) -> None:
        """Set or overwrite a decision's outcome.

        Raises:
            MemoryNotFoundError: If the decision does not exist in this instance
        """
        outcome = _require_text(outcome, 'outcome')
        if self.decisions.get(instance_id, decision_id) is None:
            raise MemoryNotFoundError()
        if not self.decisions.record_outcome(decision_id, outcome):
            raise MemoryNotFoundError()

    def upsert_entity(self,
                      instance_id: str,
                      entity_type: str,
                      name: str,
                      aliases: Optional[List[str]] = None,
                      summary: Optional[str] = None,
                      metadata: Optional[Dict[str, Any]] = None,
                      importance: Optional[float] = None) -> Entity:
        """Create an entity or merge into the existing entity of the same name.

        Raises:
            MemoryValidationError: On an unknown type, empty name or malformed fields
            MemoryQuotaError: If creating a new entity would exceed the tier's entity cap
        """
        if entity_type not in ENTITY_TYPES:
            raise MemoryValidationError(f'type must be one of {", ".join(ENTITY_TYPES)}')
        name = _require_text(name, 'name')
        aliases = _optional_str_list(aliases, 'aliases')
        importance = _require_unit_interval(importance, 'importance')
        if metadata is not None and not isinstance(metadata, dict):
            raise MemoryValidationError('metadata must be an object')

        memory_config = self.configs.get_or_create(instance_id)
        if memory_config.max_entities is not None and self.entities.find_by_name(instance_id, name) is None:
            used = self.entities.count(instance_id)
            if used >= memory_config.max_entities:
                raise MemoryQuotaError(f'Entity limit reached ({memory_config.max_entities})',
                                       limit=memory_config.max_entities,
                                       used=used)

        return self.entities.upsert(instance_id,
                                    entity_type,
                                    name,
                                    aliases=aliases,
                                    summary=summary,
                                    metadata=metadata,
                                    importance=importance)

    def add_relationship(self,
                         instance_id: str,
                         entity_a_id: str,
                         entity_b_id: str,
                         relationship_type: str,
                         confidence: float = DEFAULT_RELATIONSHIP_CONFIDENCE,
                         notes: Optional[str] = None) -> str:
        """Create or update the relationship edge A -> B.

        Returns:
            The relationship id

        Raises:
            MemoryNotFoundError: If either entity does not exist in this instance
        """
        relationship_type = _require_text(relationship_type, 'relationship_type')
        confidence = _require_unit_interval(confidence, 'confidence')
        if entity_a_id == entity_b_id:
            raise MemoryValidationError('An entity cannot be related to itself')

        entity_a = self.entities.get(instance_id, entity_a_id)
        entity_b = self.entities.get(instance_id, entity_b_id)
        if entity_a is None or entity_b is None:
            raise MemoryNotFoundError()

        return self.entities.add_relationship(entity_a, entity_b, relationship_type, confidence, notes)

    # Reads

    def list_decisions(self, instance_id: str, limit: int = 50, offset: int = 0):
        limit = min(max(int(limit), 1), MAX_DECISION_PAGE)
        return self.decisions.list(instance_id, limit, max(int(offset), 0))

    def list_entities(self, instance_id: str, entity_type: Optional[str] = None, limit: int = 100, offset: int = 0):
        if entity_type is not None and entity_type not in ENTITY_TYPES:
            raise MemoryValidationError(f'type must be one of {", ".join(ENTITY_TYPES)}')
        limit = min(max(int(limit), 1), MAX_ENTITY_PAGE)
        return self.entities.list(instance_id, entity_type, limit, max(int(offset), 0))

    def get_entity(self, instance_id: str, entity_id: str) -> Entity:
        """Entity with its relationships in both directions.

        Raises:
            MemoryNotFoundError: If the entity does not exist in this instance
        """
        entity = self.entities.get(instance_id, entity_id)
        if entity is None:
            raise MemoryNotFoundError()
        return entity

    def get_config(self, instance_id: str) -> MemoryConfig:
        return self.configs.get_or_create(instance_id)

    def get_stats(self, instance_id: str) -> MemoryStats:
        memory_config = self.configs.get_or_create(instance_id)
        return MemoryStats(tier=memory_config.tier,
                           total_events=self.episodic.count(instance_id),
                           total_entities=self.entities.count(instance_id),
                           total_decisions=self.decisions.count(instance_id),
                           total_documents=self.knowledge_base.count_documents(instance_id),
                           documents_used_mb=self.knowledge_base.total_documents_mb(instance_id),
                           events_this_month=self.episodic.count(instance_id, since=start_of_month(self.clock())),
                           limits=limits_for(memory_config.tier),
                           api_key=memory_config.api_key)

    def check_document_quota(self, instance_id: str, incoming_bytes: int) -> None:
        """Check that a new document of the given size fits the tier's storage cap.

        Raises:
            MemoryQuotaError: If the upload would exceed the cap
        """
        if isinstance(incoming_bytes, bool) or not isinstance(incoming_bytes, int) or incoming_bytes < 0:
            raise MemoryValidationError('incoming_bytes must be a non-negative integer')

        memory_config = self.configs.get_or_create(instance_id)
        used_mb = self.knowledge_base.total_documents_mb(instance_id)
        incoming_mb = incoming_bytes / (1024 * 1024)
        if used_mb + incoming_mb > memory_config.max_documents_mb:
            raise MemoryQuotaError(f'Storage limit reached ({memory_config.max_documents_mb} MB)',
                                   limit=memory_config.max_documents_mb,
                                   used=used_mb)

    # Search and digest

    def search(self,
               instance_id: str,
               query: str,
               include_events: bool = True,
               include_entities: bool = True,
               include_decisions: bool = True,
               include_documents: bool = True) -> SearchResults:
        query = _require_text(query, 'query')
        return self.retriever.search(instance_id, query, include_events, include_entities, include_decisions,
                                     include_documents)

    def get_digest(self, instance_id: str, network_enabled: bool = False, refresh: bool = False) -> Optional[str]:
        """Cached digest if it is fresh enough and was built for the same network flag, otherwise a new one.

        Returns:
            Digest text, or None when the instance has nothing to digest
        """
        if not refresh:
            memory_config = self.configs.get(instance_id)
            if (memory_config and memory_config.digest_content and memory_config.last_digest_at
                    and memory_config.digest_network_enabled == network_enabled):
                age = (self.clock() - memory_config.last_digest_at).total_seconds()
                if age < self.settings.digest_ttl_seconds:
                    logger.debug(f'Serving cached digest for instance {instance_id} ({int(age)}s old)')
                    return memory_config.digest_content

        return self.digest_builder.build(instance_id, network_enabled)

    # Administration

    def rotate_api_key(self, instance_id: str) -> str:
        return self.configs.rotate_api_key(instance_id)

    def set_tier(self, instance_id: str, tier: str) -> MemoryConfig:
        try:
            limits_for(tier)
        except ValueError as e:
            raise MemoryValidationError(str(e))
        return self.configs.set_tier(instance_id, tier)

    def run_consolidation(self, instance_id: str) -> ConsolidationResult:
        return self.runner.run_one(instance_id, self.consolidation.run)

    def run_mining(self, instance_id: str) -> MiningResult:
        return self.runner.run_one(instance_id, self.miner.run)

    def _eligible_instances(self, instances: Optional[List[InstanceInfo]]) -> List[InstanceInfo]:
        return instances if instances is not None else self.instances.list_instances()

    def run_consolidation_for_all(self, instances: Optional[List[InstanceInfo]] = None) -> BatchReport:
        """One consolidation pass per eligible instance."""
        return self.runner.run('consolidation', self._eligible_instances(instances), self.consolidation.run)

    def run_mining_for_all(self, instances: Optional[List[InstanceInfo]] = None) -> BatchReport:
        """One mining pass per eligible instance."""
        return self.runner.run('mining', self._eligible_instances(instances), self.miner.run)
