"""
Response generation for chat turns.
Provides integrations with Amazon Bedrock (Converse API) and Amazon SageMaker
endpoints. Every generator is a callable: generate(prompt) -> (response, word_count).
"""
import json
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .errors import UpstreamError
from .logging import logger
from .models import MAX_RESPONSE_WORDS
from .utils import count_words

SYSTEM_PROMPT = (
    'You are a helpful AI assistant. Provide detailed, accurate, and useful responses. '
    f'Keep your response under {MAX_RESPONSE_WORDS} words.'
)
EMPTY_RESPONSE_FALLBACK = "I apologize, but I couldn't generate a response at this time."


# Initialize AWS clients lazily
_bedrock_client = None
_sagemaker_client = None


def _client_config() -> BotoConfig:
    """Bounded timeouts so a slow model fails the turn instead of hanging it."""
    return BotoConfig(
        connect_timeout=5,
        read_timeout=config.GENERATOR_TIMEOUT_SECONDS,
        retries={'max_attempts': 2, 'mode': 'standard'}
    )


def get_bedrock_client():
    """Get or create Bedrock Runtime client."""
    global _bedrock_client
    if _bedrock_client is None:
        _bedrock_client = boto3.client('bedrock-runtime', region_name=config.AWS_REGION,
                                       config=_client_config())
    return _bedrock_client


def get_sagemaker_client():
    """Get or create SageMaker Runtime client."""
    global _sagemaker_client
    if _sagemaker_client is None:
        _sagemaker_client = boto3.client('sagemaker-runtime', region_name=config.AWS_REGION,
                                         config=_client_config())
    return _sagemaker_client


def cap_response(text: str, max_words: int = MAX_RESPONSE_WORDS) -> Tuple[str, int]:
    """
    Cap a model response at max_words.

    Returns:
        Tuple of (response text, word count). A truncated response keeps its
        first max_words words joined by single spaces followed by '...'.
    """
    text = (text or '').strip() or EMPTY_RESPONSE_FALLBACK
    words = text.split()
    if len(words) > max_words:
        return ' '.join(words[:max_words]) + '...', max_words
    return text, count_words(text)


# =============================================================================
# Amazon Bedrock
# =============================================================================

class BedrockResponseGenerator:
    """Generates turn responses with the Bedrock Converse API."""

    def __init__(self, model_id: str = None, client=None):
        self.model_id = model_id or config.BEDROCK_MODEL_ID
        self.client = client

    def __call__(self, prompt: str) -> Tuple[str, int]:
        client = self.client or get_bedrock_client()
        try:
            response = client.converse(
                modelId=self.model_id,
                system=[{'text': SYSTEM_PROMPT}],
                messages=[{'role': 'user', 'content': [{'text': prompt}]}],
                inferenceConfig={
                    'maxTokens': config.GENERATOR_MAX_TOKENS,
                    'temperature': config.GENERATOR_TEMPERATURE
                }
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error calling Bedrock model {self.model_id}: {e}")
            raise UpstreamError('Failed to generate AI response. Please try again.')

        content = response.get('output', {}).get('message', {}).get('content', [])
        text = ''.join(block.get('text', '') for block in content)
        logger.info(f"Bedrock returned {count_words(text)} words (stopReason={response.get('stopReason')})")
        return cap_response(text)


# =============================================================================
# Amazon SageMaker
# =============================================================================

def _extract_generated_text(result: Any) -> str:
    """Read the text out of a Hugging Face style endpoint response."""
    if isinstance(result, list) and result:
        result = result[0]
    if isinstance(result, dict):
        return result.get('generated_text') or result.get('generation') or ''
    if isinstance(result, str):
        return result
    return ''


class SageMakerResponseGenerator:
    """Generates turn responses with a SageMaker text-generation endpoint."""

    def __init__(self, endpoint_name: str = None, client=None):
        self.endpoint_name = endpoint_name or config.SAGEMAKER_ENDPOINT_NAME
        self.client = client

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            'inputs': f'{SYSTEM_PROMPT}\n\n{prompt}',
            'parameters': {
                'max_new_tokens': config.GENERATOR_MAX_TOKENS,
                'temperature': config.GENERATOR_TEMPERATURE,
                'return_full_text': False
            }
        }

    def __call__(self, prompt: str) -> Tuple[str, int]:
        if not self.endpoint_name:
            raise UpstreamError('No SageMaker endpoint configured')

        client = self.client or get_sagemaker_client()
        try:
            response = client.invoke_endpoint(
                EndpointName=self.endpoint_name,
                ContentType='application/json',
                Accept='application/json',
                Body=json.dumps(self.build_payload(prompt))
            )
            result = json.loads(response['Body'].read().decode('utf-8'))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error invoking SageMaker endpoint {self.endpoint_name}: {e}")
            raise UpstreamError('Failed to generate AI response. Please try again.')
        except (ValueError, KeyError) as e:
            logger.error(f"Unreadable response from SageMaker endpoint {self.endpoint_name}: {e}")
            raise UpstreamError('Failed to generate AI response. Please try again.')

        return cap_response(_extract_generated_text(result))


_generator = None


def get_response_generator(backend: Optional[str] = None):
    """Get or create the generator selected by GENERATOR_BACKEND."""
    global _generator
    if backend is not None:
        return _build_generator(backend)
    if _generator is None:
        _generator = _build_generator(config.GENERATOR_BACKEND)
    return _generator


def _build_generator(backend: str):
    if backend == 'sagemaker':
        return SageMakerResponseGenerator()
    if backend == 'bedrock':
        return BedrockResponseGenerator()
    raise ValueError(f"Unknown generator backend: {backend}")
