"""
Centralized configuration using Pydantic Settings.

All settings are loaded from environment variables with KNOWLEDGEVERSE_ prefix.
Example: KNOWLEDGEVERSE_LOG_LEVEL=DEBUG
"""

import logging
from pathlib import Path
from typing import Literal, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Knowledgeverse configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGEVERSE_",
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # Core paths
    storage_path: Optional[str] = None  # Defaults to ./storage
    db_name: str = "knowledgeverse.db"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # Emit JSON lines instead of plain text

    # Access boundary - owner used when a tool call does not supply one
    owner_id: Optional[str] = None

    # Vector storage
    vector_enabled: bool = True  # False = text-only search from startup
    vector_backend: Literal["qdrant", "memory"] = "qdrant"  # memory = process-local, lost on restart
    qdrant_path: Optional[str] = None  # Local Qdrant directory, auto-detect if not set
    qdrant_url: Optional[str] = None   # Remote Qdrant URL (overrides local path)
    qdrant_api_key: Optional[str] = None
    qdrant_collection: str = "knowledge_entries"

    # Embedding Model
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_dimension: int = 384  # all-MiniLM-L6-v2 output dimension

    # Search and pagination limits
    default_search_limit: int = Field(default=10, ge=1)
    max_search_limit: int = Field(default=100, ge=1)
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    # Text submissions use the first N characters as their title
    max_title_length: int = Field(default=100, ge=1)

    # Content extraction limits
    fetch_timeout: float = 15.0  # Request timeout in seconds
    max_content_size: int = 1_000_000  # 1MB max content

    def get_storage_path(self) -> str:
        """
        Determine the storage directory for the SQLite database.

        Priority:
        1. storage_path setting (explicit override via KNOWLEDGEVERSE_STORAGE_PATH)
        2. ./storage (relative to the working directory)
        """
        storage = Path(self.storage_path) if self.storage_path else Path("./storage")
        storage.mkdir(parents=True, exist_ok=True)
        return str(storage)

    def get_qdrant_path(self) -> Optional[str]:
        """
        Determine Qdrant storage path for local mode.

        Returns None if qdrant_url is set (remote mode).

        Priority for local mode:
        1. qdrant_path setting (explicit override via KNOWLEDGEVERSE_QDRANT_PATH)
        2. <storage_path>/qdrant (next to the SQLite database)
        """
        # Remote mode - no local path needed
        if self.qdrant_url:
            return None

        if self.qdrant_path:
            Path(self.qdrant_path).mkdir(parents=True, exist_ok=True)
            return self.qdrant_path

        qdrant_dir = Path(self.get_storage_path()) / "qdrant"
        qdrant_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Using local Qdrant storage: {qdrant_dir}")
        return str(qdrant_dir)


# Singleton instance
settings = Settings()
