import pytest

from agentmem.services.config_store import ConfigStore
from agentmem.services.decision_store import DecisionStore
from agentmem.services.entity_store import EntityStore
from agentmem.services.episodic_store import EpisodicStore
from agentmem.services.memory_management import MemoryManagementService
from agentmem.utils.config import HostAppConfig, MemoryEngineConfig, OpenSearchConfig
from agentmem.utils.enrichment import EnrichmentQueue
from agentmem.utils.knowledge_base_client import KnowledgeBaseClient
from agentmem.utils.opensearch_client import OpenSearchClient
from agentmem.utils.timestamp_utils import to_iso
from tests.fakes import FakeClock, FakeEmbed, FakeExtraction, FakeInstanceClient, FakeNeptuneClient, FakeOpenSearch

INDEX_PREFIX = 'test_memory'


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return MemoryEngineConfig(default_tier='STANDARD',
                              consolidation_dwell_days=7,
                              min_events_per_sender=3,
                              max_profile_events=20,
                              unconsolidated_batch_size=200,
                              min_log_length=100,
                              digest_char_budget=12000,
                              digest_ttl_seconds=3600,
                              batch_time_limit_seconds=300,
                              batch_workers=1,
                              sync_enrichment=True)


@pytest.fixture
def host_app():
    return HostAppConfig(app_url='https://app.example.com', internal_secret='secret', log_fetch_timeout=15)


@pytest.fixture
def raw_opensearch():
    return FakeOpenSearch()


@pytest.fixture
def opensearch(raw_opensearch):
    config = OpenSearchConfig(endpoint='localhost',
                              port=9200,
                              region='us-east-1',
                              index_prefix=INDEX_PREFIX,
                              dimension=64,
                              service='es')
    return OpenSearchClient(config, client=raw_opensearch)


@pytest.fixture
def neptune():
    return FakeNeptuneClient()


@pytest.fixture
def embed():
    return FakeEmbed()


@pytest.fixture
def enrichment():
    return EnrichmentQueue(synchronous=True)


@pytest.fixture
def episodic(opensearch, embed, enrichment, clock):
    return EpisodicStore(opensearch, embed, enrichment, clock)


@pytest.fixture
def entities(opensearch, neptune, embed, enrichment, clock):
    return EntityStore(opensearch, neptune, embed, enrichment, clock)


@pytest.fixture
def decisions(opensearch, embed, enrichment, clock):
    return DecisionStore(opensearch, embed, enrichment, clock)


@pytest.fixture
def configs(opensearch, clock):
    return ConfigStore(opensearch, clock)


@pytest.fixture
def knowledge_base(opensearch):
    return KnowledgeBaseClient(opensearch)


@pytest.fixture
def extraction():
    return FakeExtraction()


@pytest.fixture
def instances():
    return FakeInstanceClient()


@pytest.fixture
def service(opensearch, neptune, embed, extraction, instances, enrichment, settings, clock):
    return MemoryManagementService(opensearch=opensearch,
                                   neptune=neptune,
                                   embed=embed,
                                   extraction=extraction,
                                   instances=instances,
                                   enrichment=enrichment,
                                   settings=settings,
                                   clock=clock,
                                   create_indexes=False)


@pytest.fixture
def add_document(raw_opensearch, clock, embed):
    """Write a knowledge-base document, and one chunk per paragraph, the way the ingestion service does."""
    counter = {'n': 0}

    def _add(instance_id, filename, content, status='READY', size_bytes=None):
        counter['n'] += 1
        doc_id = f'doc-{counter["n"]}'
        raw_opensearch.index(index=f'{INDEX_PREFIX}_document',
                             id=doc_id,
                             body={
                                 'id': doc_id,
                                 'instance_id': instance_id,
                                 'filename': filename,
                                 'status': status,
                                 'size_bytes': len(content.encode('utf-8')) if size_bytes is None else size_bytes,
                                 'content': content,
                                 'created_at': to_iso(clock()),
                             })
        if status == 'READY':
            for index, paragraph in enumerate(part for part in content.split('\n\n') if part.strip()):
                chunk_id = f'{doc_id}-{index}'
                raw_opensearch.index(index=f'{INDEX_PREFIX}_chunk',
                                     id=chunk_id,
                                     body={
                                         'id': chunk_id,
                                         'instance_id': instance_id,
                                         'document_id': doc_id,
                                         'filename': filename,
                                         'chunk_index': index,
                                         'content': paragraph,
                                         'embedding': embed.vector(paragraph),
                                         'created_at': to_iso(clock()),
                                     })
        clock.advance(seconds=1)
        return doc_id

    return _add
