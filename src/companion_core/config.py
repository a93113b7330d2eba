"""Companion core configuration models and loader."""

from __future__ import annotations

import os
import re
from typing import Any

import chardet
import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, model_validator


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    backend: str = "sqlite"  # "sqlite" or "memory"
    sqlite_db_path: str = "./memory/companion.db"

    @model_validator(mode="after")
    def _validate_paths(self) -> "StorageConfig":
        if self.backend not in ("sqlite", "memory"):
            raise ValueError(f"Unknown storage backend: {self.backend!r}")
        normalized = os.path.normpath(self.sqlite_db_path)
        parts = normalized.replace("\\", "/").split("/")
        if ".." in parts:
            raise ValueError(
                f"sqlite_db_path must not contain '..' components: "
                f"{self.sqlite_db_path!r}"
            )
        self.sqlite_db_path = normalized
        return self


class EmbeddingConfig(BaseModel):
    """Embedding client configuration."""

    provider: str = "openai"  # "openai" or "local"
    model: str = "text-embedding-3-small"
    dimension: int = 1536
    api_key: str | None = None
    base_url: str | None = None
    trust_remote_code: bool = False
    max_input_chars: int = 8000
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = 1.0  # linear: backoff_seconds * attempt
    timeout_seconds: float = 10.0


class ConsolidationConfig(BaseModel):
    """Memory consolidation configuration."""

    dedup_threshold: float = 0.9
    default_confidence: float = 0.8
    search_threshold: float = 0.7
    search_limit: int = 10
    batch_limit: int = 20
    gate_enabled: bool = True
    min_detail_length: int = 20
    store_timeout_seconds: float = 10.0


class RelationshipConfig(BaseModel):
    """Relationship state machine configuration."""

    max_conflict_retries: int = 3
    store_timeout_seconds: float = 10.0


class ContextConfig(BaseModel):
    """Context provider configuration."""

    cache_ttl_seconds: int = 300
    cache_maxsize: int = 1000
    memory_pool_size: int = 10
    max_memories: int = 3
    max_milestones: int = 3
    store_timeout_seconds: float = 10.0


class LoggingConfig(BaseModel):
    """Log sink configuration."""

    level: str = "INFO"
    log_file: str | None = None
    rotation: str = "10 MB"


class CompanionConfig(BaseModel):
    """Top-level companion core configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)
    relationship: RelationshipConfig = Field(default_factory=RelationshipConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def load_text_file_with_guess_encoding(file_path: str) -> str | None:
    """Load a text file, trying common encodings before asking chardet.

    Args:
        file_path: Path to the text file

    Returns:
        File content, or None if the encoding could not be determined
    """
    encodings = ["utf-8", "utf-8-sig", "gbk", "gb2312", "ascii", "cp936"]

    for encoding in encodings:
        try:
            with open(file_path, "r", encoding=encoding) as file:
                return file.read()
        except UnicodeDecodeError:
            continue

    with open(file_path, "rb") as file:
        raw_data = file.read()
    detected = chardet.detect(raw_data)
    if detected["encoding"]:
        try:
            return raw_data.decode(detected["encoding"])
        except (UnicodeDecodeError, LookupError) as e:
            logger.error(f"Error decoding config file {file_path}: {e}")
    return None


def read_yaml(config_path: str) -> dict[str, Any]:
    """Read a YAML file, substituting ``${ENV_VAR}`` references.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Configuration data as a dictionary (empty for an empty file)

    Raises:
        FileNotFoundError: If the configuration file is not found
        IOError: If the configuration file cannot be read
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    content = load_text_file_with_guess_encoding(config_path)
    if content is None:
        raise IOError(f"Failed to read configuration file: {config_path}")

    def replacer(match: re.Match) -> str:
        return os.getenv(match.group(1), match.group(0))

    content = _ENV_PATTERN.sub(replacer, content)

    try:
        return yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        logger.critical(f"Error parsing YAML file: {e}")
        raise


def load_config(config_path: str) -> CompanionConfig:
    """Load and validate configuration from a YAML file.

    A ``.env`` file in the working directory is loaded first so its values
    are available for substitution.
    """
    load_dotenv()
    data = read_yaml(config_path)
    config = CompanionConfig.model_validate(data)
    logger.debug(f"Loaded configuration from {config_path}")
    return config
