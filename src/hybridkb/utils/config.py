"""
Configuration utilities.
"""

import json
from pathlib import Path
from typing import Optional

import yaml

from pydantic import BaseModel, Field


class Config(BaseModel):
    """Base configuration class."""

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            with open(path) as f:
                data = json.load(f)
            return cls(**data)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")


class ChunkingOptions(BaseModel):
    """Chunking options, used as the ingestion defaults.

    Attributes:
        chunk_size: Target maximum characters per chunk
        chunk_overlap: Characters of overlap carried into the next chunk
        strategy: One of ``fixed``, ``sentence`` or ``paragraph``
    """
    chunk_size: int = 1000
    chunk_overlap: int = 200
    strategy: str = "paragraph"


class EmbeddingConfig(BaseModel):
    """Embedding service settings."""
    provider: str = "hashing"
    model: str | None = None
    dimension: int = 384
    api_key: str | None = None
    base_url: str | None = None
    batch_size: int = 100
    max_tokens: int = 8191
    chars_per_token: int = 4
    timeout: float = 30.0


class VectorStoreConfig(BaseModel):
    """Vector index backend settings."""
    provider: str = "memory"
    persist_directory: str | None = None
    collection_prefix: str = "kb_"
    timeout: float = 30.0


class SearchConfig(BaseModel):
    """Hybrid ranking defaults."""
    top_k: int = 10
    vector_weight: float = 0.7
    keyword_weight: float = 0.3
    candidate_multiplier: int = 3
    k1: float = 1.5
    b: float = 0.75


class RetryConfig(BaseModel):
    """Retry behavior for embedding calls during ingestion."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True


class EngineConfig(Config):
    """Configuration for the retrieval engine."""
    log_level: str = "INFO"
    default_knowledge_base: str = "default"

    chunking: ChunkingOptions = Field(default_factory=ChunkingOptions)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)


def load_config(path: Optional[str | Path] = "hybridkb.yaml") -> EngineConfig:
    """
    Load engine configuration from file.

    Args:
        path: Path to config file

    Returns:
        EngineConfig instance (defaults if the file does not exist)
    """
    if path is None:
        return EngineConfig()

    path = Path(path)

    if not path.exists():
        return EngineConfig()

    return EngineConfig.from_file(path)
