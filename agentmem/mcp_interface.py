"""
MCP Interface Layer using fastmcp, exposing agent memory to agent runtimes.

Every tool takes the instance id and the instance's memory API key, which is
checked the same way as a bearer token on the HTTP API.
"""
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from .services.authorization import BearerKeyAuthorizer, CompositeAuthorizer, Credentials
from .services.memory_management import MemoryManagementError, MemoryManagementService
from .utils.config import config
from .utils.logging_config import get_logger
from .utils.timestamp_utils import to_iso

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Agent Memory')

_memory_service: Optional[MemoryManagementService] = None
_authorizer: Optional[CompositeAuthorizer] = None


def get_memory_service() -> MemoryManagementService:
    global _memory_service, _authorizer
    if _memory_service is None:
        _memory_service = MemoryManagementService()
        _authorizer = CompositeAuthorizer([BearerKeyAuthorizer(_memory_service.configs)])
    return _memory_service


def set_memory_service(service: MemoryManagementService) -> None:
    """Install a pre-built service (tests, embedding in another server)."""
    global _memory_service, _authorizer
    _memory_service = service
    _authorizer = CompositeAuthorizer([BearerKeyAuthorizer(service.configs)])


def _authorized_service(instance_id: str, api_key: str) -> MemoryManagementService:
    service = get_memory_service()
    _authorizer.require(instance_id, Credentials(authorization=f'Bearer {api_key}'))
    return service


def _serialize(value: Any) -> Any:
    """Plain JSON-friendly structures; embeddings are dropped."""
    if is_dataclass(value):
        value = asdict(value)
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items() if key != 'embedding'}
    if isinstance(value, list):
        return [_serialize(item) for item in value]
    if isinstance(value, datetime):
        return to_iso(value)
    return value


def _tool_error(action: str, e: MemoryManagementError) -> ToolError:
    logger.error(f'Memory management error in MCP {action}: {e}')
    return ToolError(f'{action} failed: {e}')


@mcp.tool()
def create_memory_event(instance_id: str,
                        api_key: str,
                        event_type: str,
                        content: str,
                        session_id: Optional[str] = None,
                        channel: Optional[str] = None,
                        sender_id: Optional[str] = None,
                        summary: Optional[str] = None,
                        importance: Optional[float] = None) -> str:
    """Store an episodic event.

    Args:
        instance_id: Agent instance ID
        api_key: Instance memory API key
        event_type: CONVERSATION, DECISION, TASK_COMPLETED, FEEDBACK or ERROR
        content: Event content
        session_id: Conversation session, if known
        channel: Messaging channel, if known
        sender_id: Sender, if known
        summary: Short summary
        importance: Importance between 0 and 1

    Returns:
        The event id
    """
    try:
        service = _authorized_service(instance_id, api_key)
        return service.create_event(instance_id, event_type, content, session_id, channel, sender_id, summary,
                                    importance)
    except MemoryManagementError as e:
        raise _tool_error('Event creation', e)


@mcp.tool()
def record_decision(instance_id: str,
                    api_key: str,
                    decision: str,
                    reasoning: List[str],
                    confidence: Optional[float] = None,
                    channel: Optional[str] = None,
                    sender_id: Optional[str] = None,
                    session_id: Optional[str] = None) -> str:
    """Record a notable decision or recommendation with its reasoning steps.

    Returns:
        The decision id
    """
    try:
        service = _authorized_service(instance_id, api_key)
        return service.record_decision(instance_id,
                                       decision,
                                       reasoning,
                                       confidence=confidence,
                                       channel=channel,
                                       sender_id=sender_id,
                                       session_id=session_id)
    except MemoryManagementError as e:
        raise _tool_error('Decision recording', e)


@mcp.tool()
def record_decision_outcome(instance_id: str, api_key: str, decision_id: str, outcome: str) -> bool:
    """Attach the observed outcome to an earlier decision."""
    try:
        service = _authorized_service(instance_id, api_key)
        service.record_decision_outcome(instance_id, decision_id, outcome)
        return True
    except MemoryManagementError as e:
        raise _tool_error('Outcome recording', e)


@mcp.tool()
def upsert_entity(instance_id: str,
                  api_key: str,
                  entity_type: str,
                  name: str,
                  aliases: Optional[List[str]] = None,
                  summary: Optional[str] = None) -> Dict[str, Any]:
    """Create an entity or merge an observation into the entity of the same name."""
    try:
        service = _authorized_service(instance_id, api_key)
        return _serialize(service.upsert_entity(instance_id, entity_type, name, aliases=aliases, summary=summary))
    except MemoryManagementError as e:
        raise _tool_error('Entity upsert', e)


@mcp.tool()
def add_entity_relationship(instance_id: str,
                            api_key: str,
                            entity_a_id: str,
                            entity_b_id: str,
                            relationship_type: str,
                            confidence: float = 0.8,
                            notes: Optional[str] = None) -> str:
    """Relate entity A to entity B, e.g. relationship_type='works_at'.

    Returns:
        The relationship id
    """
    try:
        service = _authorized_service(instance_id, api_key)
        return service.add_relationship(instance_id, entity_a_id, entity_b_id, relationship_type, confidence, notes)
    except MemoryManagementError as e:
        raise _tool_error('Relationship creation', e)


@mcp.tool()
def get_entity(instance_id: str, api_key: str, entity_id: str) -> Dict[str, Any]:
    """Fetch an entity with its relationships in both directions."""
    try:
        service = _authorized_service(instance_id, api_key)
        return _serialize(service.get_entity(instance_id, entity_id))
    except MemoryManagementError as e:
        raise _tool_error('Entity lookup', e)


@mcp.tool()
def list_entities(instance_id: str,
                  api_key: str,
                  entity_type: Optional[str] = None,
                  limit: int = 50,
                  offset: int = 0) -> List[Dict[str, Any]]:
    """List entities, most engaged first, optionally filtered by type."""
    try:
        service = _authorized_service(instance_id, api_key)
        return _serialize(service.list_entities(instance_id, entity_type, limit, offset))
    except MemoryManagementError as e:
        raise _tool_error('Entity listing', e)


@mcp.tool()
def list_decisions(instance_id: str, api_key: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
    """List decisions, newest first."""
    try:
        service = _authorized_service(instance_id, api_key)
        return _serialize(service.list_decisions(instance_id, limit, offset))
    except MemoryManagementError as e:
        raise _tool_error('Decision listing', e)


@mcp.tool()
def search_memory(instance_id: str,
                  api_key: str,
                  query: str,
                  include_events: bool = True,
                  include_entities: bool = True,
                  include_decisions: bool = True,
                  include_documents: bool = True) -> Dict[str, Any]:
    """Search events, entities, decisions and knowledge-base documents.

    Args:
        instance_id: Agent instance ID
        api_key: Instance memory API key
        query: Natural language query

    Returns:
        Ranked results per source
    """
    try:
        service = _authorized_service(instance_id, api_key)
        results = service.search(instance_id, query, include_events, include_entities, include_decisions,
                                 include_documents)
        logger.debug(f'MCP search returned {len(results.events)} events for instance {instance_id}')
        return _serialize(results)
    except MemoryManagementError as e:
        raise _tool_error('Memory search', e)


@mcp.tool()
def get_memory_digest(instance_id: str, api_key: str, network_enabled: bool = False) -> str:
    """Compact memory summary suitable for a system prompt. Empty when there is nothing to report."""
    try:
        service = _authorized_service(instance_id, api_key)
        return service.get_digest(instance_id, network_enabled) or ''
    except MemoryManagementError as e:
        raise _tool_error('Digest', e)


@mcp.tool()
def get_memory_stats(instance_id: str, api_key: str) -> Dict[str, Any]:
    """Usage counts and tier limits for an instance."""
    try:
        service = _authorized_service(instance_id, api_key)
        return _serialize(service.get_stats(instance_id))
    except MemoryManagementError as e:
        raise _tool_error('Stats', e)


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
