"""
Pipeline Configuration Module
=============================

Loads pipeline settings from a YAML file, with secrets and endpoints
taken from the environment. Settings are grouped per component
(queue, extraction, similarity, storage, vector index).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class QueueConfig:
    """Claiming and retry settings for the label-scan queue."""

    batch_size: int = 5
    max_batch_size: int = 20
    max_retries: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> QueueConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            batch_size=int(data.get("batch_size", 5)),
            max_batch_size=int(data.get("max_batch_size", 20)),
            max_retries=int(data.get("max_retries", 3)),
        )

    def clamp_batch_size(self, limit: int | None) -> int:
        """Clamp a requested batch size into 1..max_batch_size."""
        if limit is None:
            limit = self.batch_size
        return max(1, min(int(limit), self.max_batch_size))


@dataclass
class ExtractionConfig:
    """AI extraction settings."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    escalation_model: str = "gpt-4o"
    enrichment_model: str = "gpt-4o-mini"
    escalation_threshold: float = 0.6
    enrichment_enabled: bool = True
    temperature: float = 0.2

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ExtractionConfig:
        """Create from dictionary."""
        if data is None:
            data = {}
        return cls(
            provider=os.environ.get("AI_PROVIDER") or data.get("provider", "openai"),
            model=os.environ.get("AI_MODEL") or data.get("model", "gpt-4o-mini"),
            escalation_model=data.get("escalation_model", "gpt-4o"),
            enrichment_model=data.get("enrichment_model", "gpt-4o-mini"),
            escalation_threshold=float(data.get("escalation_threshold", 0.6)),
            enrichment_enabled=bool(data.get("enrichment_enabled", True)),
            temperature=float(data.get("temperature", 0.2)),
        )

    @property
    def api_key(self) -> str:
        """API key for the configured provider."""
        if self.provider.lower() == "anthropic":
            return os.environ.get("ANTHROPIC_API_KEY", "")
        return os.environ.get("OPENAI_API_KEY", "")


@dataclass
class SimilarityConfig:
    """Similarity query settings."""

    default_limit: int = 10
    max_limit: int = 20
    default_threshold: float = 0.60
    history_window: int = 20
    max_source_wines: int = 5
    high_rating: int = 4
    min_high_rated: int = 2
    top_k_margin: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SimilarityConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_limit=int(data.get("default_limit", 10)),
            max_limit=int(data.get("max_limit", 20)),
            default_threshold=float(data.get("default_threshold", 0.60)),
            history_window=int(data.get("history_window", 20)),
            max_source_wines=int(data.get("max_source_wines", 5)),
            high_rating=int(data.get("high_rating", 4)),
            min_high_rated=int(data.get("min_high_rated", 2)),
            top_k_margin=int(data.get("top_k_margin", 5)),
        )


@dataclass
class StorageConfig:
    """Label image storage settings."""

    base_path: str = "~/.vinho/images"
    public_base_url: str = "/images"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> StorageConfig:
        """Create from dictionary."""
        if data is None:
            data = {}
        return cls(
            base_path=os.environ.get("VINHO_IMAGE_PATH") or data.get("base_path", "~/.vinho/images"),
            public_base_url=data.get("public_base_url", "/images"),
        )


@dataclass
class VectorIndexConfig:
    """Vector similarity index settings."""

    url: str = "http://localhost:7700"
    index_name: str = "wine_embeddings"
    embedder: str = "label"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> VectorIndexConfig:
        """Create from dictionary."""
        if data is None:
            data = {}
        return cls(
            url=os.environ.get("MEILISEARCH_URL") or data.get("url", "http://localhost:7700"),
            index_name=data.get("index_name", "wine_embeddings"),
            embedder=data.get("embedder", "label"),
        )

    @property
    def api_key(self) -> str | None:
        """API key for the vector index, if any."""
        return os.environ.get("MEILISEARCH_API_KEY")


@dataclass
class PipelineConfig:
    """Top-level configuration for the ingestion pipeline and similarity engine."""

    queue: QueueConfig = field(default_factory=QueueConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    vector_index: VectorIndexConfig = field(default_factory=VectorIndexConfig)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PipelineConfig:
        """Create from a parsed YAML document."""
        data = data or {}
        return cls(
            queue=QueueConfig.from_dict(data.get("queue")),
            extraction=ExtractionConfig.from_dict(data.get("extraction")),
            similarity=SimilarityConfig.from_dict(data.get("similarity")),
            storage=StorageConfig.from_dict(data.get("storage")),
            vector_index=VectorIndexConfig.from_dict(data.get("vector_index")),
        )

    @classmethod
    def load(cls, config_path: Path | str) -> PipelineConfig:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the vinho.yaml file

        Returns:
            Parsed PipelineConfig

        Raises:
            FileNotFoundError: If the file does not exist
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f)

        config = cls.from_dict(data)
        config.config_path = config_path
        return config


def get_jwt_secret() -> str:
    """Secret used to verify user access tokens."""
    return os.environ.get("VINHO_JWT_SECRET", "")


def get_service_key() -> str:
    """Shared key that authorizes internal queue-processing calls."""
    return os.environ.get("VINHO_SERVICE_KEY", "")


# Global config instance
_default_config: PipelineConfig | None = None


def get_default_config() -> PipelineConfig:
    """
    Get the default pipeline configuration.

    Loads configuration from the path specified in the VINHO_CONFIG
    environment variable, or falls back to config/vinho.yaml. When no
    file exists the built-in defaults are used.

    Returns:
        The global PipelineConfig instance
    """
    global _default_config

    if _default_config is None:
        config_path = os.environ.get("VINHO_CONFIG")
        if config_path:
            path = Path(config_path)
        else:
            project_root = Path(__file__).parent.parent
            path = project_root / "config" / "vinho.yaml"

        if path.exists():
            _default_config = PipelineConfig.load(path)
        else:
            _default_config = PipelineConfig.from_dict(None)

    return _default_config


def reset_default_config() -> None:
    """Reset the global config (useful for testing)."""
    global _default_config
    _default_config = None
