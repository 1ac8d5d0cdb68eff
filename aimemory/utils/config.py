"""
Configuration management for storage, indexing and the dense embedding provider.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class StorageConfig:
    """Configuration for the local SQLite database."""
    db_path: str


@dataclass
class IndexConfig:
    """Configuration for deduplication and semantic ranking."""
    dedup_threshold: float
    dedup_sample_tokens: int
    dedup_candidate_limit: int
    min_score: float
    default_limit: int


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    enabled: bool
    region: str
    model_id: str
    dimension: int
    batch_size: int
    retry_attempts: int
    retry_delay: float


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    storage: StorageConfig
    index: IndexConfig
    bedrock_embed: BedrockEmbedConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    storage_config = StorageConfig(db_path=os.path.expanduser(os.getenv('AIMEM_DB', '~/.aimemory/memories.db')))

    index_config = IndexConfig(dedup_threshold=float(os.getenv('AIMEM_DEDUP_THRESHOLD', '0.7')),
                               dedup_sample_tokens=int(os.getenv('AIMEM_DEDUP_SAMPLE_TOKENS', '5')),
                               dedup_candidate_limit=int(os.getenv('AIMEM_DEDUP_CANDIDATE_LIMIT', '50')),
                               min_score=float(os.getenv('AIMEM_MIN_SCORE', '0.05')),
                               default_limit=int(os.getenv('AIMEM_DEFAULT_LIMIT', '10')))

    # Dense embeddings are opt-in; without them semantic search runs on TF-IDF only
    bedrock_embed_config = BedrockEmbedConfig(enabled=_env_bool('AIMEM_DENSE_ENABLED', 'false'),
                                              region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              batch_size=int(os.getenv('BEDROCK_EMBED_BATCH_SIZE', '96')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     storage=storage_config,
                     index=index_config,
                     bedrock_embed=bedrock_embed_config)


# Global configuration instance
config = load_config()
