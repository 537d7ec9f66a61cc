"""
Core data models for the agent memory engine.

Every record belongs to exactly one instance (a tenant's deployed agent
runtime) and is never read or written across instances.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

EVENT_TYPES = ('CONVERSATION', 'DECISION', 'TASK_COMPLETED', 'FEEDBACK', 'ERROR')
ENTITY_TYPES = ('PERSON', 'ORGANIZATION', 'TOPIC', 'PRODUCT', 'LOCATION', 'OTHER')
DOCUMENT_READY = 'READY'


@dataclass
class MemoryEvent:
    """An episodic event: one recorded interaction or occurrence."""
    instance_id: str
    event_type: str  # One of EVENT_TYPES
    content: str
    session_id: Optional[str] = None
    channel: Optional[str] = None
    sender_id: Optional[str] = None
    summary: Optional[str] = None
    importance: float = 0.5
    metadata: Optional[Dict[str, Any]] = None
    id: Optional[str] = None
    embedding: Optional[List[float]] = None
    consolidated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None  # Fixed at write time from the tier
    created_at: Optional[datetime] = None
    similarity: Optional[float] = None  # Set on search results only


@dataclass
class RelatedEntity:
    """One relationship edge as seen from a given entity."""
    id: str
    entity_id: str
    entity_name: str
    entity_type: str
    relationship_type: str  # 'inverse:<type>' when traversed from entity B
    confidence: float
    notes: Optional[str] = None


@dataclass
class Entity:
    """A consolidated, named subject the agent has learned about."""
    id: str
    instance_id: str
    type: str  # One of ENTITY_TYPES
    name: str  # Merge key, unique per instance
    aliases: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    importance: float = 0.5
    interaction_count: int = 1
    last_seen: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    embedding: Optional[List[float]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    relationships: Optional[List[RelatedEntity]] = None  # Populated by EntityStore.get only
    similarity: Optional[float] = None


@dataclass
class DecisionCreate:
    """Payload for recording a new decision."""
    instance_id: str
    decision: str
    reasoning: List[str]
    session_id: Optional[str] = None
    channel: Optional[str] = None
    sender_id: Optional[str] = None
    confidence: Optional[float] = None
    entities_involved: List[str] = field(default_factory=list)
    documents_used: List[str] = field(default_factory=list)
    memories_used: List[str] = field(default_factory=list)
    model_used: Optional[str] = None
    tokens_used: Optional[int] = None
    context_snapshot: Optional[Dict[str, Any]] = None


@dataclass
class Decision:
    """A recorded agent decision with its reasoning chain and eventual outcome."""
    id: str
    instance_id: str
    decision: str
    reasoning: List[str]
    confidence: float
    session_id: Optional[str] = None
    channel: Optional[str] = None
    sender_id: Optional[str] = None
    entities_involved: List[str] = field(default_factory=list)
    documents_used: List[str] = field(default_factory=list)
    memories_used: List[str] = field(default_factory=list)
    model_used: Optional[str] = None
    tokens_used: Optional[int] = None
    context_snapshot: Optional[Dict[str, Any]] = None
    outcome: Optional[str] = None
    outcome_at: Optional[datetime] = None
    embedding: Optional[List[float]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    similarity: Optional[float] = None


@dataclass
class TierLimits:
    retention_days: Optional[int]  # None means events never expire
    max_entities: Optional[int]  # None means unlimited
    max_documents_mb: int
    max_events_per_month: int


@dataclass
class MemoryConfig:
    """Per-instance memory configuration row."""
    instance_id: str
    tier: str
    retention_days: Optional[int]
    max_entities: Optional[int]
    max_documents_mb: int
    max_events_per_month: int
    api_key: str
    digest_content: Optional[str] = None
    last_digest_at: Optional[datetime] = None
    digest_network_enabled: bool = False  # Flag the cached digest was built with
    last_mined_at: Optional[datetime] = None
    last_consolidated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MemoryStats:
    tier: str
    total_events: int
    total_entities: int
    total_decisions: int
    total_documents: int
    documents_used_mb: float
    events_this_month: int
    limits: TierLimits
    api_key: str


@dataclass
class DocumentChunk:
    """A ranked knowledge-base chunk returned by the document store."""
    content: str
    similarity: float
    document_id: str
    filename: str
    chunk_index: int


@dataclass
class KnowledgeDocument:
    id: str
    filename: str
    status: str
    size_bytes: int = 0
    content: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class ExtractedRelationship:
    entity: str
    type: str


@dataclass
class ExtractedEntity:
    name: str
    type: str
    aliases: List[str] = field(default_factory=list)
    context: str = ''
    relationships: List[ExtractedRelationship] = field(default_factory=list)


@dataclass
class ExtractedEvent:
    event_type: str
    content: str
    summary: str = ''
    session_id: Optional[str] = None
    channel: Optional[str] = None
    sender_id: Optional[str] = None
    importance: Optional[float] = None  # None when the extractor gave no estimate
    decision: Optional[str] = None
    reasoning: List[str] = field(default_factory=list)


@dataclass
class ConsolidatedProfile:
    name: Optional[str]
    type: str
    aliases: List[str] = field(default_factory=list)
    summary: str = ''
    importance: float = 0.5
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchResults:
    events: List[MemoryEvent] = field(default_factory=list)
    entities: List[Entity] = field(default_factory=list)
    decisions: List[Decision] = field(default_factory=list)
    documents: List[DocumentChunk] = field(default_factory=list)


@dataclass
class ConsolidationResult:
    consolidated: int = 0
    entities_updated: int = 0
    expired: int = 0


@dataclass
class MiningResult:
    events_extracted: int = 0
    entities_found: int = 0
    decisions_recorded: int = 0


@dataclass
class InstanceInfo:
    """An agent instance as reported by the host application."""
    instance_id: str
    status: str
    memory_enabled: bool
    network_enabled: bool = False

    @property
    def eligible(self) -> bool:
        return self.memory_enabled and self.status == 'RUNNING'


@dataclass
class BatchReport:
    """Aggregate outcome of one batch job run across instances."""
    job: str
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    results: Dict[str, Any] = field(default_factory=dict)  # instance_id -> job result
    errors: Dict[str, str] = field(default_factory=dict)  # instance_id -> error message
