"""
Per-instance memory configuration: tier, quotas, API key, cached digest and job timestamps.
"""

import hmac
import secrets
from datetime import datetime
from typing import Callable, Dict, Optional

from ..models.core import MemoryConfig
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from ..utils.timestamp_utils import from_iso, to_iso, utc_now
from .tier_policy import limits_for

logger = get_logger(__name__)

INDEX_TYPE = 'config'


def generate_api_key() -> str:
    return secrets.token_hex(32)


def config_from_document(doc: Dict) -> MemoryConfig:
    return MemoryConfig(instance_id=doc['instance_id'],
                        tier=doc.get('tier', 'STANDARD'),
                        retention_days=doc.get('retention_days'),
                        max_entities=doc.get('max_entities'),
                        max_documents_mb=int(doc.get('max_documents_mb', 0)),
                        max_events_per_month=int(doc.get('max_events_per_month', 0)),
                        api_key=doc.get('api_key', ''),
                        digest_content=doc.get('digest_content'),
                        last_digest_at=from_iso(doc.get('last_digest_at')),
                        digest_network_enabled=bool(doc.get('digest_network_enabled', False)),
                        last_mined_at=from_iso(doc.get('last_mined_at')),
                        last_consolidated_at=from_iso(doc.get('last_consolidated_at')),
                        created_at=from_iso(doc.get('created_at')),
                        updated_at=from_iso(doc.get('updated_at')))


class ConfigStore:
    """One MemoryConfig document per instance, keyed by instance id."""

    def __init__(self, opensearch: OpenSearchClient, clock: Callable[[], datetime] = utc_now):
        self.opensearch = opensearch
        self.clock = clock

    def get(self, instance_id: str) -> Optional[MemoryConfig]:
        doc = self.opensearch.get_document(instance_id, INDEX_TYPE)
        return config_from_document(doc) if doc else None

    def get_or_create(self, instance_id: str, tier: Optional[str] = None) -> MemoryConfig:
        """Return the instance's config, creating it with tier defaults on first access."""
        existing = self.get(instance_id)
        if existing is not None:
            return existing

        tier = tier or config.memory.default_tier
        limits = limits_for(tier)
        now = to_iso(self.clock())
        document = {
            'id': instance_id,
            'instance_id': instance_id,
            'tier': tier,
            'retention_days': limits.retention_days,
            'max_entities': limits.max_entities,
            'max_documents_mb': limits.max_documents_mb,
            'max_events_per_month': limits.max_events_per_month,
            'api_key': generate_api_key(),
            'created_at': now,
            'updated_at': now,
        }
        if self.opensearch.index_document(document, instance_id, INDEX_TYPE, create_only=True):
            logger.info(f'Created memory config for instance {instance_id} on tier {tier}')
            return config_from_document(document)

        # Another caller created it first
        return self.get(instance_id)

    def set_tier(self, instance_id: str, tier: str) -> MemoryConfig:
        """Move an instance to another tier. Existing events keep their expiry."""
        self.get_or_create(instance_id, tier)
        limits = limits_for(tier)
        self.opensearch.update_document(instance_id,
                                        INDEX_TYPE,
                                        fields={
                                            'tier': tier,
                                            'retention_days': limits.retention_days,
                                            'max_entities': limits.max_entities,
                                            'max_documents_mb': limits.max_documents_mb,
                                            'max_events_per_month': limits.max_events_per_month,
                                            'updated_at': to_iso(self.clock()),
                                        })
        return self.get(instance_id)

    def rotate_api_key(self, instance_id: str) -> str:
        """Replace the API key. The previous key stops verifying immediately.

        The cached digest embeds the key, so it is dropped in the same update.
        """
        self.get_or_create(instance_id)
        new_key = generate_api_key()
        self.opensearch.update_document(instance_id,
                                        INDEX_TYPE,
                                        fields={
                                            'api_key': new_key,
                                            'digest_content': None,
                                            'last_digest_at': None,
                                            'updated_at': to_iso(self.clock())
                                        })
        logger.info(f'Rotated memory API key for instance {instance_id}')
        return new_key

    def verify_api_key(self, instance_id: str, api_key: str) -> bool:
        if not api_key:
            return False
        memory_config = self.get(instance_id)
        if memory_config is None or not memory_config.api_key:
            return False
        return hmac.compare_digest(memory_config.api_key, api_key)

    def save_digest(self, instance_id: str, digest: str, network_enabled: bool = False) -> None:
        now = to_iso(self.clock())
        self.opensearch.update_document(instance_id,
                                        INDEX_TYPE,
                                        fields={
                                            'digest_content': digest,
                                            'last_digest_at': now,
                                            'digest_network_enabled': network_enabled,
                                            'updated_at': now
                                        })

    def mark_mined(self, instance_id: str) -> None:
        self.opensearch.update_document(instance_id, INDEX_TYPE, fields={'last_mined_at': to_iso(self.clock())})

    def mark_consolidated(self, instance_id: str) -> None:
        self.opensearch.update_document(instance_id, INDEX_TYPE, fields={'last_consolidated_at': to_iso(self.clock())})
