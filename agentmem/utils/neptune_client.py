"""
Amazon Neptune graph client for the entity relationship graph, using the
Gremlin Python driver with AWS SigV4 authentication.

Entities are 'Entity' vertices and relationships are directed 'Relationship'
edges from entity A to entity B. Only the forward edge is stored. Readers
traverse the in-edges to see the reverse direction.
"""

import uuid
from functools import wraps
from typing import Any, Dict, List, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __

from .config import NeptuneConfig
from .logging_config import get_logger
from .timestamp_utils import to_iso, utc_now

logger = get_logger(__name__)


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations on connection errors."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


def _value(data: Dict[Any, Any], key: str, default: Any = None) -> Any:
    """Unwrap a value_map entry, which Gremlin returns as a single-element list for vertex properties."""
    value = data.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
        """
        self.config = config
        self.connection = None
        self.g = None
        self._connect()

        logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = Session().region_name or self.config.region or 'us-east-1'

        # Create signed request for WebSocket connection
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()

    @retry_on_connection_error
    def upsert_entity_vertex(self, entity_id: str, instance_id: str, name: str, entity_type: str) -> bool:
        """
        Create an entity vertex unless one with this id already exists.

        Args:
            entity_id: Entity identifier (same id as the entity document)
            instance_id: Owning instance
            name: Entity name
            entity_type: Entity type

        Returns:
            True once the vertex exists
        """
        existing = self.g.V().has('Entity', 'id', entity_id).has('instance_id', instance_id).to_list()
        if existing:
            logger.debug(f'Entity vertex already exists: {entity_id}')
            return True

        self.g.addV('Entity').property('id', entity_id)\
            .property('instance_id', instance_id)\
            .property('name', name)\
            .property('type', entity_type)\
            .property('created_at', to_iso(utc_now()))\
            .next()

        logger.debug(f'Created entity vertex: {entity_id}')
        return True

    @retry_on_connection_error
    def upsert_relationship_edge(self,
                                 instance_id: str,
                                 entity_a_id: str,
                                 entity_b_id: str,
                                 relationship_type: str,
                                 confidence: float,
                                 notes: Optional[str] = None) -> str:
        """
        Create or update the edge keyed by (entity A, entity B, relationship type).

        Re-adding an existing edge overwrites its confidence and notes.

        Returns:
            Edge id
        """
        existing = self.g.V().has('Entity', 'id', entity_a_id).has('instance_id', instance_id)\
            .outE('Relationship').has('relationship_type', relationship_type)\
            .where(__.inV().has('id', entity_b_id))\
            .values('id').to_list()

        now = to_iso(utc_now())
        if existing:
            edge_id = existing[0]
            self.g.E().has('Relationship', 'id', edge_id)\
                .property('confidence', confidence)\
                .property('notes', notes or '')\
                .property('updated_at', now)\
                .iterate()
            logger.debug(f'Updated relationship edge: {edge_id}')
            return edge_id

        edge_id = str(uuid.uuid4())
        entity_b = self.g.V().has('Entity', 'id', entity_b_id).has('instance_id', instance_id).next()
        self.g.V().has('Entity', 'id', entity_a_id).has('instance_id', instance_id)\
            .addE('Relationship').to(entity_b)\
            .property('id', edge_id)\
            .property('instance_id', instance_id)\
            .property('relationship_type', relationship_type)\
            .property('confidence', confidence)\
            .property('notes', notes or '')\
            .property('created_at', now)\
            .property('updated_at', now)\
            .next()

        logger.debug(f'Created relationship edge: {edge_id}')
        return edge_id

    @retry_on_connection_error
    def get_relationships(self, instance_id: str, entity_id: str) -> List[Dict[str, Any]]:
        """
        Get every relationship edge touching an entity, in both directions.

        Returns:
            Dicts with 'id', 'direction' ('out' when the entity is A, 'in' when
            it is B), 'other_id', 'relationship_type', 'confidence' and 'notes'
        """
        relationships = []
        for direction in ('out', 'in'):
            start = self.g.V().has('Entity', 'id', entity_id).has('instance_id', instance_id)
            if direction == 'out':
                edges = start.outE('Relationship').has('instance_id', instance_id)
                other = __.inV().values('id')
            else:
                edges = start.inE('Relationship').has('instance_id', instance_id)
                other = __.outV().values('id')

            rows = edges.project('edge', 'other_id').by(__.value_map()).by(other).to_list()
            for row in rows:
                edge = row['edge']
                notes = _value(edge, 'notes')
                relationships.append({
                    'id': _value(edge, 'id'),
                    'direction': direction,
                    'other_id': row['other_id'],
                    'relationship_type': _value(edge, 'relationship_type', ''),
                    'confidence': float(_value(edge, 'confidence', 0.0)),
                    'notes': notes or None,
                })

        logger.debug(f'Found {len(relationships)} relationships for entity {entity_id}')
        return relationships

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy, False otherwise
        """
        self.g.V().limit(1).count().next()
        return True
