"""
Amazon Bedrock Converse client used for extraction and profile synthesis.
"""

import random
import time
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Request errors that will fail the same way on every attempt
NON_RETRYABLE_CODES = ('ValidationException', 'AccessDeniedException', 'ResourceNotFoundException')


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


def _error_code(e: Exception) -> str:
    if isinstance(e, ClientError):
        return e.response.get('Error', {}).get('Code', '')
    return ''


class BedrockLLM:
    """Bedrock Converse wrapper with bounded timeouts and jittered retries."""

    def __init__(self, config: BedrockLLMConfig):
        self.config = config
        self.model_id = config.model_id

        self.bedrock_runtime = boto3.client('bedrock-runtime',
                                            region_name=config.region,
                                            config=BotoConfig(connect_timeout=config.timeout_seconds,
                                                              read_timeout=config.timeout_seconds,
                                                              retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def _converse(self, messages: List[Dict[str, Any]], system_prompt: str,
                  inference: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        response = self.bedrock_runtime.converse(modelId=self.model_id,
                                                 messages=messages,
                                                 system=[{'text': system_prompt}],
                                                 inferenceConfig=inference)

        blocks = response.get('output', {}).get('message', {}).get('content', [])
        text = ''.join(block.get('text', '') for block in blocks)
        return text, {**response.get('usage', {}), **response.get('metrics', {})}

    def _backoff(self, attempt: int) -> None:
        time.sleep(self.config.retry_delay * (2**attempt) + random.uniform(0, 1))

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Run one Converse call, retrying throttling and transport failures.

        Args:
            messages: Conversation in Converse format; a trailing assistant message acts as a prefill
            system_prompt: System instructions
            max_tokens: Output cap, config default if None
            temperature: Sampling temperature, config default if None
            stop_sequences: Sequences that end generation

        Returns:
            Tuple of (response_text, usage and latency metrics)

        Raises:
            BedrockLLMError: On a non-retryable error or when every attempt fails
        """
        inference = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': temperature if temperature is not None else self.config.temperature,
            'stopSequences': stop_sequences or [],
        }
        attempts = self.config.retry_attempts

        for attempt in range(attempts):
            try:
                text, metrics = self._converse(messages, system_prompt, inference)
                logger.debug(f'Bedrock LLM returned {len(text)} chars on attempt {attempt + 1}')
                return text, metrics

            except (ClientError, BotoCoreError) as e:
                code = _error_code(e)
                if code in NON_RETRYABLE_CODES:
                    logger.error(f'Bedrock LLM rejected the request ({code}): {e}')
                    raise BedrockLLMError(f'Bedrock LLM request rejected: {e}')

                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{attempts} failed: {e}')
                if attempt == attempts - 1:
                    raise BedrockLLMError(f'Bedrock LLM failed after {attempts} attempts: {e}')
                self._backoff(attempt)

        raise BedrockLLMError(f'Bedrock LLM failed after {attempts} attempts')

    def health_check(self) -> bool:
        try:
            text, _ = self.generate_response(messages=[{'role': 'user', 'content': [{'text': 'ping'}]}],
                                             system_prompt="Reply with the single word 'OK'.",
                                             max_tokens=5,
                                             temperature=0.0)
            return bool(text.strip())
        except BedrockLLMError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
