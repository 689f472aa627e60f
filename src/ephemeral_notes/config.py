"""Configuration for ephemeral notes storage and lifecycle.

Settings can come from keyword arguments, environment variables (a ``.env``
file in the working directory is loaded first), or a YAML file.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from ephemeral_notes.crypto import PBKDF2_ITERATIONS
from ephemeral_notes.gc import DEFAULT_INTERVAL_SECONDS
from ephemeral_notes.resolver import MIN_MATCH_LENGTH
from ephemeral_notes.vault import DEFAULT_PREFIX_LENGTH

logger = logging.getLogger(__name__)


class BackendType(str, Enum):
    """Supported persistence backends."""

    MEMORY = "memory"
    JSON_FILE = "json_file"


class NotesConfig(BaseModel):
    """Configuration for a notes workspace.

    Attributes:
        backend_type: Where records and keys are persisted
        storage_dir: Directory for the json_file backend
        gc_interval_seconds: Minimum time between periodic sweeps
        key_prefix_length: Length of the short id keys are also stored under
        min_match_length: Shortest shared substring that counts as a partial id match
        kdf_iterations: PBKDF2 iterations per seal/open
        base_url: Prefix for generated share links

    Example:
        >>> config = NotesConfig(storage_dir=Path(".notes"))
        >>> config = NotesConfig.from_env()
    """

    backend_type: BackendType = BackendType.JSON_FILE
    storage_dir: Path = Path(".notes")
    gc_interval_seconds: int = Field(default=DEFAULT_INTERVAL_SECONDS, ge=0)
    key_prefix_length: int = Field(default=DEFAULT_PREFIX_LENGTH, ge=1)
    min_match_length: int = Field(default=MIN_MATCH_LENGTH, ge=1)
    kdf_iterations: int = Field(default=PBKDF2_ITERATIONS, ge=1)
    base_url: str = "http://localhost:8080"

    model_config = {"extra": "forbid"}

    @field_validator("storage_dir", mode="before")
    @classmethod
    def convert_storage_dir(cls, v):
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        return v

    @classmethod
    def from_env(cls, prefix: str = "NOTES_", env_file: Optional[Path] = None) -> "NotesConfig":
        """Create config from environment variables.

        Environment variables:
            {prefix}BACKEND_TYPE: memory or json_file
            {prefix}STORAGE_DIR: Storage directory
            {prefix}GC_INTERVAL_SECONDS: Sweep throttle interval
            {prefix}KEY_PREFIX_LENGTH: Short id length for key entries
            {prefix}MIN_MATCH_LENGTH: Partial id match threshold
            {prefix}KDF_ITERATIONS: PBKDF2 iteration count
            {prefix}BASE_URL: Share link prefix
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        kwargs = {}
        for field_name in cls.model_fields:
            value = os.getenv(f"{prefix}{field_name.upper()}")
            if value:
                kwargs[field_name] = value
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Path) -> "NotesConfig":
        """Load config from a YAML file (top-level mapping of field names)."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        logger.debug(f"Loaded config from {path}")
        return cls(**data)
