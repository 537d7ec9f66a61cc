"""
Digest builder: renders a compact memory block for injection into the agent's system prompt.
"""

from datetime import datetime
from typing import Callable, List, Optional

from ..models.core import Decision, Entity, KnowledgeDocument
from ..utils.config import HostAppConfig, MemoryEngineConfig, config
from ..utils.knowledge_base_client import KnowledgeBaseClient
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .config_store import ConfigStore
from .decision_store import DecisionStore
from .entity_store import EntityStore
from .episodic_store import EpisodicStore

logger = get_logger(__name__)

DIGEST_HEADER = '[AGENT MEMORY]'
DIGEST_FOOTER = '[/AGENT MEMORY]'

TOP_ENTITIES = 10
SHOWN_ENTITIES = 8
RECENT_DECISIONS = 5
ENTITY_SUMMARY_CHARS = 120
DECISION_CHARS = 140
REASON_CHARS = 80


class DigestBuilder:
    """Builds and caches the per-instance memory digest."""

    def __init__(self,
                 episodic: EpisodicStore,
                 entities: EntityStore,
                 decisions: DecisionStore,
                 knowledge_base: KnowledgeBaseClient,
                 configs: ConfigStore,
                 settings: Optional[MemoryEngineConfig] = None,
                 host_app: Optional[HostAppConfig] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.episodic = episodic
        self.entities = entities
        self.decisions = decisions
        self.knowledge_base = knowledge_base
        self.configs = configs
        self.settings = settings or config.memory
        self.host_app = host_app or config.host_app
        self.clock = clock

    def build(self, instance_id: str, network_enabled: bool = False) -> Optional[str]:
        """
        Build the digest for an instance and cache it on the config row.

        Args:
            instance_id: Instance to build for
            network_enabled: Whether the agent can make outbound HTTP calls

        Returns:
            The digest text, or None when there is nothing to report or the build failed
        """
        try:
            top_entities = self.entities.list_top(instance_id, TOP_ENTITIES)
            recent_decisions = self.decisions.list(instance_id, RECENT_DECISIONS, 0)
            ready_docs = self.knowledge_base.list_documents(instance_id, ready_only=True)
            all_docs = self.knowledge_base.list_documents(instance_id)
            total_events = self.episodic.count(instance_id)

            if not top_entities and not recent_decisions and not all_docs:
                logger.debug(f'Nothing to digest for instance {instance_id}')
                return None

            memory_config = self.configs.get_or_create(instance_id)

            lines = [DIGEST_HEADER]
            lines.extend(self._entity_lines(top_entities))
            lines.extend(self._decision_lines(recent_decisions))
            lines.extend(self._document_lines(ready_docs, all_docs))

            if total_events > 0:
                lines.append(f'\nMEMORY: {total_events} total interactions stored.')

            if network_enabled and memory_config.api_key:
                lines.extend(self._decision_logging_lines(instance_id, memory_config.api_key))

            lines.append(DIGEST_FOOTER)
            digest = '\n'.join(lines)

            self.configs.save_digest(instance_id, digest, network_enabled)
            logger.debug(f'Built digest of {len(digest)} characters for instance {instance_id}')
            return digest
        except Exception as e:
            logger.error(f'Digest build failed for instance {instance_id}: {e}')
            return None

    def _entity_lines(self, entities: List[Entity]) -> List[str]:
        if not entities:
            return []

        now = self.clock()
        lines = [f'\nKNOWN CONTACTS & ENTITIES ({len(entities)}):']
        for entity in entities[:SHOWN_ENTITIES]:
            summary = (entity.summary or '')[:ENTITY_SUMMARY_CHARS]
            last_seen = f'Last seen {(now - entity.last_seen).days}d ago.' if entity.last_seen else ''
            detail = ' '.join(part for part in (summary, last_seen) if part)
            lines.append(f'- {entity.name} ({entity.type}): {detail}' if detail else f'- {entity.name} ({entity.type})')
        return lines

    @staticmethod
    def _decision_lines(decisions: List[Decision]) -> List[str]:
        if not decisions:
            return []

        lines = ['\nRECENT DECISIONS:']
        for decision in decisions[:RECENT_DECISIONS]:
            date = decision.created_at.date().isoformat() if decision.created_at else 'unknown'
            line = f'- {date}: {decision.decision[:DECISION_CHARS]}'
            if decision.reasoning and decision.reasoning[0]:
                line += f' - "{decision.reasoning[0][:REASON_CHARS]}"'
            lines.append(line)
        return lines

    def _document_lines(self, ready_docs: List[KnowledgeDocument], all_docs: List[KnowledgeDocument]) -> List[str]:
        """Inline ready document content greedily, newest first, within the character budget."""
        if not all_docs:
            return []

        budget = self.settings.digest_char_budget
        lines = [f'\nKNOWLEDGE BASE ({len(all_docs)} docs):']
        included = set()

        for doc in ready_docs:
            if budget <= 0:
                break
            content = doc.content or ''
            if not content.strip():
                lines.append(f'\n--- {doc.filename} (empty) ---')
                included.add(doc.id)
                continue

            snippet = content[:budget]
            lines.append(f'\n--- {doc.filename} ---')
            lines.append(snippet)
            if len(content) > budget:
                lines.append(f'[...truncated, {len(content) - budget} chars remaining]')
            else:
                included.add(doc.id)
            budget -= len(snippet)

        pending = [doc.filename for doc in all_docs if doc.id not in included]
        if pending:
            lines.append(f'\nPending: {", ".join(pending)}')
        return lines

    def _decision_logging_lines(self, instance_id: str, api_key: str) -> List[str]:
        return [
            '\nDECISION LOGGING:',
            'When you make a notable recommendation or decision, silently log it AFTER sending your reply '
            'by making this HTTP call:',
            f'POST {self.host_app.app_url}/api/memory/{instance_id}/decisions',
            f'Headers: Authorization: Bearer {api_key} | Content-Type: application/json',
            'Body: {"decision":"<one sentence>","reasoning":["<why 1>","<why 2>"],"confidence":0.8,'
            '"channel":"<channel name>","senderId":"<user id>"}',
            'Only log meaningful decisions. Skip greetings and casual replies.',
        ]
