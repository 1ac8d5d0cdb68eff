"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import List, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .embedding_provider import EmbeddingProviderError
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockEmbedError(EmbeddingProviderError):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    name = 'bedrock'

    def __init__(self, config: BedrockEmbedConfig, client=None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            client: Pre-built bedrock-runtime client (created from config if None)
        """
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension

        # Create Bedrock runtime client
        self.bedrock = client or boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')

                result = json.loads(response.get('body').read())
                logger.debug('Bedrock Embed request successful')
                return result

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _checked(self, vector) -> List[float]:
        if not isinstance(vector, list) or len(vector) != self.dimension:
            size = len(vector) if isinstance(vector, list) else type(vector).__name__
            raise BedrockEmbedError(f'Malformed embedding from {self.model_id}: expected {self.dimension} values, got {size}')
        return [float(v) for v in vector]

    def _embed_many(self, texts: Sequence[str], input_type: str) -> List[List[float]]:
        model = self.model_id.lower()
        try:
            if 'titan' in model:
                # Titan embeds one text per request
                vectors = []
                for text in texts:
                    response = self._call_with_retry({'inputText': text, 'dimensions': self.dimension})
                    vectors.append(self._checked(response.get('embedding')))
                return vectors

            elif 'cohere' in model:
                if self.dimension != 1024:
                    raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.dimension}')

                vectors = []
                for start in range(0, len(texts), self.config.batch_size):
                    batch = list(texts[start:start + self.config.batch_size])
                    response = self._call_with_retry({'input_type': input_type, 'texts': batch})
                    embeddings = response.get('embeddings') or []
                    if len(embeddings) != len(batch):
                        raise BedrockEmbedError(f'Expected {len(batch)} embeddings, got {len(embeddings)}')
                    vectors.extend(self._checked(vector) for vector in embeddings)
                return vectors

            else:
                raise BedrockEmbedError(f'Unsupported model for embedding: {self.model_id}')

        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating embeddings: {e}')
            raise BedrockEmbedError(f'Embedding failed: {e}')

    def embed(self, text: str) -> List[float]:
        """
        Generate embeddings for document text.

        Args:
            text: Text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not text or not text.strip():
            logger.warning('Empty text provided for document embedding')
            return [0.0] * self.dimension
        return self._embed_many([text], 'search_document')[0]

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not text or not text.strip():
            logger.warning('Empty text provided for query embedding')
            return [0.0] * self.dimension
        return self._embed_many([text], 'search_query')[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate document embeddings for many texts, preserving order.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text

        Raises:
            BedrockEmbedError: If any embedding request fails
        """
        if not texts:
            return []
        # Blank texts would be rejected by the model; give them zero vectors in place
        non_blank = [(i, text) for i, text in enumerate(texts) if text and text.strip()]
        vectors = [[0.0] * self.dimension for _ in texts]
        if non_blank:
            embedded = self._embed_many([text for _, text in non_blank], 'search_document')
            for (i, _), vector in zip(non_blank, embedded):
                vectors[i] = vector
        logger.debug(f'Embedded batch of {len(texts)} texts')
        return vectors

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed('test')
            return len(test_embedding) == self.dimension

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
