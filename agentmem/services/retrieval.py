"""
Hybrid retrieval across events, entities, decisions and knowledge-base documents.

With a query embedding every source is ranked by cosine similarity. Without
one, events and documents fall back to keyword relevance, and entities and
decisions return nothing.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from ..models.core import SearchResults
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.knowledge_base_client import KnowledgeBaseClient
from ..utils.logging_config import get_logger
from .decision_store import DecisionStore
from .entity_store import EntityStore
from .episodic_store import EpisodicStore

logger = get_logger(__name__)

EVENT_LIMIT = 10
ENTITY_LIMIT = 5
DECISION_LIMIT = 5
DOCUMENT_LIMIT = 5


class HybridRetriever:
    """Unified ranked search for one instance."""

    def __init__(self, episodic: EpisodicStore, entities: EntityStore, decisions: DecisionStore,
                 knowledge_base: KnowledgeBaseClient, embed: BedrockEmbed):
        self.episodic = episodic
        self.entities = entities
        self.decisions = decisions
        self.knowledge_base = knowledge_base
        self.embed = embed

    def _search_events(self, instance_id: str, query: str, vector: Optional[List[float]]):
        if vector:
            return self.episodic.search_by_vector(instance_id, vector, EVENT_LIMIT)
        return self.episodic.search_by_text(instance_id, query, EVENT_LIMIT)

    def _search_entities(self, instance_id: str, query: str, vector: Optional[List[float]]):
        if not vector:
            return []
        return self.entities.search_by_vector(instance_id, vector, ENTITY_LIMIT)

    def _search_decisions(self, instance_id: str, query: str, vector: Optional[List[float]]):
        if not vector:
            return []
        return self.decisions.search_by_vector(instance_id, vector, DECISION_LIMIT)

    def _search_documents(self, instance_id: str, query: str, vector: Optional[List[float]]):
        return self.knowledge_base.fetch_document_chunks(instance_id, query, query_vector=vector, top_k=DOCUMENT_LIMIT)

    @staticmethod
    def _guarded(name: str, func: Callable, *args) -> list:
        try:
            return func(*args)
        except Exception as e:
            logger.warning(f'Search source {name} failed: {e}')
            return []

    def search(self,
               instance_id: str,
               query: str,
               include_events: bool = True,
               include_entities: bool = True,
               include_decisions: bool = True,
               include_documents: bool = True) -> SearchResults:
        """Query the enabled sources concurrently.

        A failing source contributes an empty list; the search itself does not fail.
        """
        vector = self.embed.embed(query, query=True)
        if vector is None:
            logger.debug(f'No query embedding for instance {instance_id}, using lexical fallback')

        sources = {
            'events': (include_events, self._search_events),
            'entities': (include_entities, self._search_entities),
            'decisions': (include_decisions, self._search_decisions),
            'documents': (include_documents, self._search_documents),
        }

        results = SearchResults()
        with ThreadPoolExecutor(max_workers=len(sources), thread_name_prefix='search') as executor:
            futures = {
                name: executor.submit(self._guarded, name, func, instance_id, query, vector)
                for name, (enabled, func) in sources.items() if enabled
            }
            for name, future in futures.items():
                setattr(results, name, future.result())

        logger.debug(f'Search for instance {instance_id} returned {len(results.events)} events, '
                     f'{len(results.entities)} entities, {len(results.decisions)} decisions, '
                     f'{len(results.documents)} documents')
        return results
