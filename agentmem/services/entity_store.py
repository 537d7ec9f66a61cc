"""
Entity (semantic) store: consolidated entity profiles plus the relationship graph.

Profiles live in OpenSearch under an id derived from (instance_id, name), so
a second profile with the same name cannot exist. Relationship edges live in
Neptune.
"""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.core import ENTITY_TYPES, Entity, RelatedEntity
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.enrichment import EnrichmentQueue
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient
from ..utils.opensearch_client import OpenSearchClient, term, terms
from ..utils.timestamp_utils import from_iso, to_iso, utc_now

logger = get_logger(__name__)

INDEX_TYPE = 'entity'
INVERSE_PREFIX = 'inverse:'
DEFAULT_RELATIONSHIP_CONFIDENCE = 0.8

_ENTITY_NAMESPACE = uuid.UUID('5b3f0c1e-8a4d-4f6b-9c2e-7d1a0e9f4b21')


def entity_id_for(instance_id: str, name: str) -> str:
    """Stable entity id for the (instance, name) merge key."""
    return str(uuid.uuid5(_ENTITY_NAMESPACE, f'{instance_id}\x1f{name}'))


def entity_from_document(doc: Dict, similarity: Optional[float] = None) -> Entity:
    return Entity(id=doc.get('id', ''),
                  instance_id=doc.get('instance_id', ''),
                  type=doc.get('type', 'OTHER'),
                  name=doc.get('name', ''),
                  aliases=list(doc.get('aliases') or []),
                  summary=doc.get('summary'),
                  importance=float(doc.get('importance', 0.5)),
                  interaction_count=int(doc.get('interaction_count', 1)),
                  last_seen=from_iso(doc.get('last_seen')),
                  metadata=doc.get('metadata'),
                  created_at=from_iso(doc.get('created_at')),
                  updated_at=from_iso(doc.get('updated_at')),
                  similarity=similarity)


def normalize_entity_type(entity_type: Optional[str]) -> str:
    value = (entity_type or '').strip().upper()
    return value if value in ENTITY_TYPES else 'OTHER'


class EntityStore:
    """Upsert-by-name entity profiles and their relationships, scoped per instance."""

    def __init__(self,
                 opensearch: OpenSearchClient,
                 neptune: NeptuneClient,
                 embed: BedrockEmbed,
                 enrichment: EnrichmentQueue,
                 clock: Callable[[], datetime] = utc_now):
        self.opensearch = opensearch
        self.neptune = neptune
        self.embed = embed
        self.enrichment = enrichment
        self.clock = clock

    def upsert(self,
               instance_id: str,
               entity_type: str,
               name: str,
               aliases: Optional[List[str]] = None,
               summary: Optional[str] = None,
               metadata: Optional[Dict[str, Any]] = None,
               importance: Optional[float] = None) -> Entity:
        """Create the entity or merge an observation into the existing one.

        Each call counts as one interaction. On merge, summary, aliases and
        metadata are only replaced by non-empty values, and the type set at
        creation is kept.

        Returns:
            The entity as stored after this call
        """
        name = name.strip()
        entity_id = entity_id_for(instance_id, name)
        now = to_iso(self.clock())
        aliases = [alias for alias in dict.fromkeys(aliases or []) if alias]

        created = False
        if self.opensearch.get_document(entity_id, INDEX_TYPE) is None:
            document = {
                'id': entity_id,
                'instance_id': instance_id,
                'type': normalize_entity_type(entity_type),
                'name': name,
                'aliases': aliases,
                'summary': summary or None,
                'importance': importance if importance is not None else 0.5,
                'interaction_count': 1,
                'last_seen': now,
                'metadata': metadata or None,
                'created_at': now,
                'updated_at': now,
            }
            # Loses to a concurrent creator by falling through to the merge path
            created = self.opensearch.index_document(document, entity_id, INDEX_TYPE, create_only=True)

        if created:
            logger.debug(f"Created entity '{name}' ({entity_id}) for instance {instance_id}")
        else:
            fields = {'last_seen': now, 'updated_at': now}
            if summary:
                fields['summary'] = summary
            if aliases:
                fields['aliases'] = aliases
            if metadata:
                fields['metadata'] = metadata
            if importance is not None:
                fields['importance'] = importance
            self.opensearch.update_document(entity_id, INDEX_TYPE, fields=fields, increments={'interaction_count': 1})
            logger.debug(f"Merged observation into entity '{name}' ({entity_id})")

        entity = entity_from_document(self.opensearch.get_document(entity_id, INDEX_TYPE))
        text = ' '.join([entity.name] + entity.aliases + [entity.summary or '']).strip()
        self.enrichment.submit(f'embed-entity-{entity_id}', self._attach_embedding, entity_id, text)
        return entity

    def _attach_embedding(self, entity_id: str, text: str) -> None:
        embedding = self.embed.embed(text)
        if embedding:
            self.opensearch.update_document(entity_id, INDEX_TYPE, fields={'embedding': embedding})

    def find_by_name(self, instance_id: str, name: str) -> Optional[Entity]:
        doc = self.opensearch.get_document(entity_id_for(instance_id, name.strip()), INDEX_TYPE)
        return entity_from_document(doc) if doc else None

    def get(self, instance_id: str, entity_id: str) -> Optional[Entity]:
        """Fetch an entity with its relationships resolved in both directions.

        Returns:
            The entity, or None when it does not exist or belongs to another instance
        """
        doc = self.opensearch.get_document(entity_id, INDEX_TYPE)
        if not doc or doc.get('instance_id') != instance_id:
            return None

        entity = entity_from_document(doc)
        edges = self.neptune.get_relationships(instance_id, entity_id)

        others = {}
        other_ids = list({edge['other_id'] for edge in edges})
        if other_ids:
            related_docs = self.opensearch.search_documents(INDEX_TYPE, [term('instance_id', instance_id),
                                                                         terms('id', other_ids)],
                                                            size=len(other_ids))
            others = {related['id']: related for related in related_docs}

        entity.relationships = []
        for edge in edges:
            other = others.get(edge['other_id'])
            if other is None:
                logger.debug(f"Skipping relationship {edge['id']} to missing entity {edge['other_id']}")
                continue
            relationship_type = edge['relationship_type']
            if edge['direction'] == 'in':
                relationship_type = f'{INVERSE_PREFIX}{relationship_type}'
            entity.relationships.append(
                RelatedEntity(id=edge['id'],
                              entity_id=other['id'],
                              entity_name=other.get('name', ''),
                              entity_type=other.get('type', 'OTHER'),
                              relationship_type=relationship_type,
                              confidence=edge['confidence'],
                              notes=edge.get('notes')))
        return entity

    def add_relationship(self,
                         entity_a: Entity,
                         entity_b: Entity,
                         relationship_type: str,
                         confidence: float = DEFAULT_RELATIONSHIP_CONFIDENCE,
                         notes: Optional[str] = None) -> str:
        """Upsert the edge (A, B, type); re-adding updates confidence and notes.

        Returns:
            Edge id
        """
        if entity_a.instance_id != entity_b.instance_id:
            raise ValueError('Relationships cannot cross instances')

        instance_id = entity_a.instance_id
        self.neptune.upsert_entity_vertex(entity_a.id, instance_id, entity_a.name, entity_a.type)
        self.neptune.upsert_entity_vertex(entity_b.id, instance_id, entity_b.name, entity_b.type)
        return self.neptune.upsert_relationship_edge(instance_id, entity_a.id, entity_b.id, relationship_type, confidence,
                                                     notes)

    def list_top(self, instance_id: str, limit: int = 10) -> List[Entity]:
        """Most engaged, then most recently seen, entities first."""
        return self.list(instance_id, limit=limit)

    def list(self, instance_id: str, entity_type: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[Entity]:
        filters = [term('instance_id', instance_id)]
        if entity_type:
            filters.append(term('type', normalize_entity_type(entity_type)))

        docs = self.opensearch.search_documents(INDEX_TYPE,
                                                filters,
                                                sort=[{
                                                    'interaction_count': {
                                                        'order': 'desc'
                                                    }
                                                }, {
                                                    'last_seen': {
                                                        'order': 'desc'
                                                    }
                                                }],
                                                size=limit,
                                                offset=offset)
        return [entity_from_document(doc) for doc in docs]

    def count(self, instance_id: str) -> int:
        return self.opensearch.count_documents(INDEX_TYPE, [term('instance_id', instance_id)])

    def search_by_vector(self, instance_id: str, query_vector: List[float], limit: int = 5) -> List[Entity]:
        results = self.opensearch.vector_search(query_vector, instance_id, limit, INDEX_TYPE)
        return [entity_from_document(r['document'], similarity=r['similarity']) for r in results]
