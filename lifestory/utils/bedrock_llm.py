"""
Amazon Bedrock LLM client wrapper used by the narrative-extraction and
media-analysis collaborators.
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

# Bedrock Converse image formats keyed by mime type
IMAGE_FORMATS = {
    'image/png': 'png',
    'image/jpeg': 'jpeg',
    'image/jpg': 'jpeg',
    'image/gif': 'gif',
    'image/webp': 'webp',
}

DOCUMENT_FORMATS = {
    'application/pdf': 'pdf',
    'text/plain': 'txt',
}

# Converse error codes worth another attempt; anything else fails fast
RETRYABLE_ERROR_CODES = frozenset({
    'ThrottlingException',
    'ServiceUnavailableException',
    'ModelTimeoutException',
    'ModelNotReadyException',
    'InternalServerException',
})


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


def user_message(text: str, media: Optional[bytes] = None, mime_type: Optional[str] = None) -> Dict[str, Any]:
    """Build a Converse user turn, placing an optional image or document before the text."""
    content: List[Dict[str, Any]] = []
    if media is not None and mime_type:
        if mime_type in IMAGE_FORMATS:
            content.append({'image': {'format': IMAGE_FORMATS[mime_type], 'source': {'bytes': media}}})
        elif mime_type in DOCUMENT_FORMATS:
            content.append(
                {'document': {
                    'format': DOCUMENT_FORMATS[mime_type],
                    'name': 'artifact',
                    'source': {
                        'bytes': media
                    }
                }})
        else:
            logger.debug(f'Unsupported media type for Bedrock: {mime_type}; sending text only')
    content.append({'text': text})
    return {'role': 'user', 'content': content}


def json_prefill() -> Dict[str, Any]:
    """Assistant prefill that makes the model answer inside a ```json block."""
    return {'role': 'assistant', 'content': [{'text': '```json'}]}


def _collect_stream(stream: Any) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Concatenate streamed text deltas and pick up usage metrics from the metadata event."""
    parts = []
    invoke_metrics = None
    for event in stream or ():
        if 'contentBlockDelta' in event:
            parts.append(event['contentBlockDelta']['delta'].get('text', ''))
        elif 'metadata' in event:
            metadata = event['metadata']
            invoke_metrics = {**metadata.get('usage', {}), **metadata.get('metrics', {})}
    return ''.join(parts), invoke_metrics


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code') in RETRYABLE_ERROR_CODES
    return isinstance(error, BotoCoreError)


class BedrockLLM:
    """Streams Converse responses from a Bedrock model, retrying transient failures."""

    def __init__(self, config: BedrockLLMConfig, client: Optional[Any] = None):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            client: Preconfigured bedrock-runtime client; created from config if None
        """
        self.config = config
        self.model_id = config.model_id

        # Retries are handled here, not by botocore
        self.bedrock_runtime = client or boto3.client('bedrock-runtime',
                                                      region_name=config.region,
                                                      config=BotoConfig(connect_timeout=60,
                                                                        read_timeout=300,
                                                                        retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def _backoff(self, attempt: int) -> float:
        return self.config.retry_delay * (2**attempt) + random.uniform(0, 1)

    def _converse(self, messages: List[Dict[str, Any]], system_prompt: str, inference_config: Dict[str, Any]):
        response = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                        messages=messages,
                                                        system=[{'text': system_prompt}],
                                                        inferenceConfig=inference_config)
        return _collect_stream(response.get('stream'))

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Generate a response, retrying throttling and transient service errors.

        Args:
            messages: Converse messages, see user_message and json_prefill
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            BedrockLLMError: On a non-retryable error, or once every attempt has failed
        """
        inference_config = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
            'stopSequences': stop_sequences or [],
        }
        attempts = max(1, self.config.retry_attempts)

        for attempt in range(attempts):
            try:
                text, invoke_metrics = self._converse(messages, system_prompt, inference_config)
                logger.debug(f'Bedrock LLM response received (length: {len(text)}, attempt {attempt + 1})')
                return text, invoke_metrics

            except (ClientError, BotoCoreError) as e:
                if not _is_retryable(e):
                    logger.error(f'Bedrock LLM request rejected: {e}')
                    raise BedrockLLMError(f'Bedrock LLM request rejected: {e}')
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{attempts} failed: {e}')
                if attempt == attempts - 1:
                    raise BedrockLLMError(f'Bedrock LLM failed after {attempts} attempts: {e}')
                time.sleep(self._backoff(attempt))

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {attempts} attempts')

    def health_check(self) -> bool:
        """Send a one-word prompt; True if the model answered."""
        try:
            response, _ = self.generate_response(messages=[user_message('Hi')],
                                                 system_prompt="Respond with just 'OK'.",
                                                 max_tokens=10,
                                                 temperature=0.0)
            return bool(response.strip())
        except BedrockLLMError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
