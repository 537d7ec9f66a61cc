"""
JSON utilities for cleaning LLM responses.
"""

import json
import re
from typing import Any, Optional


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def extract_json(response: str, expect: str = 'array') -> Optional[Any]:
    """Pull the first JSON array or object out of an LLM response.

    Models sometimes wrap the payload in prose, so the outermost bracketed
    span is located before parsing.

    Args:
        response: Raw LLM response
        expect: 'array' or 'object'

    Returns:
        Parsed value, or None when nothing parseable of the expected shape is found
    """
    cleaned = clean_json_response(response or '')
    pattern = r'\[[\s\S]*\]' if expect == 'array' else r'\{[\s\S]*\}'
    match = re.search(pattern, cleaned)
    if not match:
        return None

    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None

    if expect == 'array' and not isinstance(value, list):
        return None
    if expect == 'object' and not isinstance(value, dict):
        return None
    return value
