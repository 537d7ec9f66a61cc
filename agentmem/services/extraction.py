"""
Extraction service: turns transcripts and event histories into structured facts using Bedrock LLMs.

Every public method is best-effort. LLM failures and unparseable responses
are logged and produce an empty result.
"""

from typing import Any, Dict, List, Optional

from ..models.core import (ENTITY_TYPES, EVENT_TYPES, ConsolidatedProfile, ExtractedEntity, ExtractedEvent,
                           ExtractedRelationship, MemoryEvent)
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.json_utils import extract_json
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_ENTITY_TEXT = 4000
MAX_LOG_TEXT = 6000
MAX_EVENT_SNIPPET = 300


class ExtractionError(Exception):
    """Custom exception for extraction errors."""
    pass


ENTITY_SYSTEM_PROMPT = """
You are an expert entity extraction system. Extract notable entities from the conversation.
Only include clearly relevant people, organizations, products, locations or important topics.

Return a JSON array with this exact format:
```json
[
  {
    "name": "entity name",
    "type": "PERSON|ORGANIZATION|TOPIC|PRODUCT|LOCATION|OTHER",
    "aliases": ["other names used for the entity"],
    "context": "brief description of the entity",
    "relationships": [{"entity": "name of another extracted entity", "type": "relationship, e.g. works_at"}]
  }
]
```

Only extract entities that are explicitly mentioned. Do not infer or assume entities.
Return empty array [] if no notable entities found."""

EVENT_SYSTEM_PROMPT = """
You analyze AI agent logs. Extract meaningful conversation events only and ignore infrastructure or system logs.

Return a JSON array with this exact format:
```json
[
  {
    "eventType": "CONVERSATION|DECISION|TASK_COMPLETED|FEEDBACK|ERROR",
    "sessionId": "session ID if visible or null",
    "channel": "whatsapp|telegram|discord|slack|other or null",
    "senderId": "sender ID or number if visible or null",
    "content": "full conversation content",
    "summary": "2-sentence summary",
    "importance": 0.5,
    "decision": "the recommendation made, if a notable one was made, else null",
    "reasoning": ["reasoning step 1", "reasoning step 2"]
  }
]
```

importance is between 0.1 and 1.0. reasoning is null when there is no decision.
Return empty array [] if no meaningful conversation events found."""

PROFILE_SYSTEM_PROMPT = """
You build a consolidated profile of a user or contact from their conversation history.

Return a JSON object with this exact format:
```json
{
  "name": "full name if known, else null",
  "type": "PERSON|ORGANIZATION",
  "aliases": ["alternate names or IDs"],
  "summary": "3-4 sentence profile: who they are, what they want, communication style",
  "importance": 0.5,
  "metadata": {
    "language": "preferred language if detected or null",
    "role": "their job or role if mentioned or null",
    "topics": ["main topics they discuss"]
  }
}
```"""


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ('null', 'none'):
        return None
    return text


def _clean_importance(value: Any) -> Optional[float]:
    try:
        importance = float(value)
    except (TypeError, ValueError):
        return None
    return min(max(importance, 0.0), 1.0)


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [text for text in (_clean_str(item) for item in value) if text]


def _primitive_metadata(value: Any) -> Dict[str, Any]:
    """Keep the metadata bag to primitive values and lists of primitives."""
    if not isinstance(value, dict):
        return {}
    primitives = (str, int, float, bool)
    metadata = {}
    for key, item in value.items():
        if item is None or isinstance(item, primitives):
            metadata[str(key)] = item
        elif isinstance(item, list):
            metadata[str(key)] = [element for element in item if isinstance(element, primitives)]
    return metadata


class ExtractionService:
    """Extract entities, events and consolidated profiles using Bedrock LLMs."""

    def __init__(self, llm: Optional[BedrockLLM] = None):
        """Initialize the extraction service."""
        self.llm = llm or BedrockLLM(config.bedrock_llm)

        logger.info('Initialized ExtractionService')

    def _invoke_json(self, system_prompt: str, user_text: str, expect: str) -> Any:
        """Call the LLM with a JSON prefill and parse its answer.

        Raises:
            ExtractionError: If the LLM fails or the answer is not JSON of the expected shape
        """
        llm_messages = [{
            'role': 'user',
            'content': [{
                'text': user_text
            }]
        }, {
            'role': 'assistant',
            'content': [{
                'text': '```json'
            }]
        }]

        try:
            response, _ = self.llm.generate_response(messages=llm_messages, system_prompt=system_prompt, stop_sequences=['```'])
        except BedrockLLMError as e:
            raise ExtractionError(f'LLM call failed: {e}')

        parsed = extract_json(response, expect=expect)
        if parsed is None:
            raise ExtractionError(f'Expected a JSON {expect} in LLM response')
        return parsed

    def extract_entities(self, text: str) -> List[ExtractedEntity]:
        """Extract entity mentions, with relationships between them, from free text."""
        if not text or not text.strip():
            return []

        try:
            data = self._invoke_json(ENTITY_SYSTEM_PROMPT, f'Extract entities from the conversation:\n{text[:MAX_ENTITY_TEXT]}',
                                     'array')
        except ExtractionError as e:
            logger.error(f'Entity extraction failed: {e}')
            return []

        entities = []
        for item in data:
            if not isinstance(item, dict):
                continue
            name = _clean_str(item.get('name'))
            if not name:
                continue

            entity_type = (_clean_str(item.get('type')) or 'OTHER').upper()
            relationships = []
            for rel in item.get('relationships') or []:
                if not isinstance(rel, dict):
                    continue
                other = _clean_str(rel.get('entity'))
                rel_type = _clean_str(rel.get('type'))
                if other and rel_type:
                    relationships.append(ExtractedRelationship(entity=other, type=rel_type))

            entities.append(
                ExtractedEntity(name=name,
                                type=entity_type if entity_type in ENTITY_TYPES else 'OTHER',
                                aliases=_str_list(item.get('aliases')),
                                context=_clean_str(item.get('context')) or '',
                                relationships=relationships))

        logger.debug(f'Extracted {len(entities)} entities')
        return entities

    def extract_events(self, log_text: str) -> List[ExtractedEvent]:
        """Extract conversation events, with any decisions made, from raw agent logs."""
        if not log_text or not log_text.strip():
            return []

        try:
            data = self._invoke_json(EVENT_SYSTEM_PROMPT, f'Logs:\n{log_text[:MAX_LOG_TEXT]}', 'array')
        except ExtractionError as e:
            logger.error(f'Event extraction failed: {e}')
            return []

        events = []
        for item in data:
            if not isinstance(item, dict):
                continue
            content = _clean_str(item.get('content'))
            if not content:
                continue

            event_type = (_clean_str(item.get('eventType')) or 'CONVERSATION').upper()
            events.append(
                ExtractedEvent(event_type=event_type if event_type in EVENT_TYPES else 'CONVERSATION',
                               content=content,
                               summary=_clean_str(item.get('summary')) or '',
                               session_id=_clean_str(item.get('sessionId')),
                               channel=_clean_str(item.get('channel')),
                               sender_id=_clean_str(item.get('senderId')),
                               importance=_clean_importance(item.get('importance')),
                               decision=_clean_str(item.get('decision')),
                               reasoning=_str_list(item.get('reasoning'))))

        logger.debug(f'Extracted {len(events)} events from {len(log_text)} characters of logs')
        return events

    def consolidate_profile(self, sender_id: str, events: List[MemoryEvent]) -> Optional[ConsolidatedProfile]:
        """Synthesize one profile for a sender from their events, given oldest first.

        Returns:
            The profile, or None when nothing usable came back
        """
        if not events:
            return None

        start_date = events[0].created_at.date().isoformat() if events[0].created_at else 'unknown'
        end_date = events[-1].created_at.date().isoformat() if events[-1].created_at else 'unknown'
        event_text = '\n---\n'.join(event.summary or event.content[:MAX_EVENT_SNIPPET] for event in events)
        user_text = f'Sender ID: {sender_id}\nDate range: {start_date} to {end_date}\nEvents:\n{event_text}'

        try:
            data = self._invoke_json(PROFILE_SYSTEM_PROMPT, user_text, 'object')
        except ExtractionError as e:
            logger.error(f'Profile consolidation failed for sender {sender_id}: {e}')
            return None

        profile_type = (_clean_str(data.get('type')) or 'PERSON').upper()
        importance = _clean_importance(data.get('importance'))
        return ConsolidatedProfile(name=_clean_str(data.get('name')),
                                   type=profile_type if profile_type in ENTITY_TYPES else 'PERSON',
                                   aliases=_str_list(data.get('aliases')),
                                   summary=_clean_str(data.get('summary')) or '',
                                   importance=importance if importance is not None else 0.5,
                                   metadata=_primitive_metadata(data.get('metadata')))
