"""
Amazon Bedrock embeddings for events, entities, decisions and search queries.

Titan and Cohere models are supported. Stored records are embedded on a
best-effort basis: a missing vector only removes the record from vector
search, it never fails the write.
"""

import json
import random
import time
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Longer inputs are cut before the call; the head of a record carries its meaning
MAX_INPUT_CHARS = 20000
COHERE_DIMENSION = 1024


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


def _titan_request(text: str, dimension: int, input_type: str) -> Dict[str, Any]:
    return {'inputText': text, 'dimensions': dimension}


def _titan_vector(response: Dict[str, Any]) -> Optional[List[float]]:
    return response.get('embedding')


def _cohere_request(text: str, dimension: int, input_type: str) -> Dict[str, Any]:
    if dimension != COHERE_DIMENSION:
        raise BedrockEmbedError(f'Cohere models only support {COHERE_DIMENSION} dimensions, got {dimension}')
    return {'input_type': input_type, 'texts': [text]}


def _cohere_vector(response: Dict[str, Any]) -> Optional[List[float]]:
    embeddings = response.get('embeddings') or []
    return embeddings[0] if embeddings else None


MODEL_FAMILIES: Dict[str, tuple] = {
    'titan': (_titan_request, _titan_vector),
    'cohere': (_cohere_request, _cohere_vector),
}


class BedrockEmbed:
    """Bedrock embedding client with jittered retries."""

    def __init__(self, config: BedrockEmbedConfig):
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension
        self.enabled = config.enabled

        self._request: Optional[Callable] = None
        self._vector: Optional[Callable] = None
        for family, (request, vector) in MODEL_FAMILIES.items():
            if family in self.model_id.lower():
                self._request, self._vector = request, vector
                break

        self.bedrock = boto3.client(service_name='bedrock-runtime',
                                    region_name=config.region,
                                    config=BotoConfig(connect_timeout=config.timeout_seconds,
                                                      read_timeout=config.timeout_seconds,
                                                      retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id} (enabled={self.enabled})')

    def _invoke(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Invoke the model, retrying throttling and transport errors.

        Raises:
            BedrockEmbedError: If every attempt fails
        """
        body = json.dumps(payload)
        attempts = self.config.retry_attempts

        for attempt in range(attempts):
            try:
                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')
                return json.loads(response.get('body').read())

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{attempts} failed: {e}')
                if attempt == attempts - 1:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {attempts} attempts: {e}')
                time.sleep(self.config.retry_delay * (2**attempt) + random.uniform(0, 1))

            except ValueError as e:
                raise BedrockEmbedError(f'Bedrock Embed returned invalid JSON: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {attempts} attempts')

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not self.enabled:
            raise BedrockEmbedError('Embedding is disabled')
        if not text or not text.strip():
            raise BedrockEmbedError(f'Empty text provided for {input_type} embedding')
        if self._request is None:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

        response = self._invoke(self._request(text[:MAX_INPUT_CHARS], self.dimension, input_type))
        vector = self._vector(response)
        if not vector:
            raise BedrockEmbedError('Bedrock Embed returned no embedding')
        if len(vector) != self.dimension:
            raise BedrockEmbedError(f'Expected {self.dimension} dimensions, got {len(vector)}')
        return vector

    def embed_document(self, text: str) -> List[float]:
        """
        Embed text that will be stored and searched against.

        Raises:
            BedrockEmbedError: If embedding is disabled, the text is empty, or generation fails
        """
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        """
        Embed a search query.

        Raises:
            BedrockEmbedError: If embedding is disabled, the text is empty, or generation fails
        """
        return self._embed(text, 'search_query')

    def embed(self, text: str, query: bool = False) -> Optional[List[float]]:
        """
        Best-effort embedding.

        Args:
            text: Text to embed
            query: Embed as a search query rather than a stored record

        Returns:
            Embedding vector, or None when disabled, given empty text, or failing
        """
        if not self.enabled or not text or not text.strip():
            return None
        try:
            return self.embed_query(text) if query else self.embed_document(text)
        except BedrockEmbedError as e:
            logger.warning(f'Embedding unavailable: {e}')
            return None

    def health_check(self) -> bool:
        if not self.enabled:
            return True
        try:
            return len(self.embed_document('health check')) == self.dimension
        except BedrockEmbedError as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
