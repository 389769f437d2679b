"""Configuration management for Paintworks.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PAINTWORKS_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PAINTWORKS_* prefix)
2. .env file in the project root
3. Default values defined in PaintworksConfig

Example .env file:
    PAINTWORKS_IDEA_API_KEY=sk-or-...
    PAINTWORKS_IMAGE_API_KEY=sk-...
    PAINTWORKS_MAX_PARALLEL_IMAGES=5
    PAINTWORKS_DATA_DIR=data

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Server and client code both read from it; tests build their own instances
pointing at temporary directories.

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- data_dir: SQLite database and other server-side state
- gallery_dir: Generated painting images (served under /static/paintings)

Rate Limits
-----------
``max_parallel_images`` is the only concurrency knob.  It bounds how many
image-generation calls are in flight at once across every batch and retry
handled by one process.  Idea generation is always sequential per title and
is not affected by it.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaintworksConfig(BaseSettings):
    """Main configuration for Paintworks.

    Attributes
    ----------
    Paths:
        data_dir : Path
            Directory holding the SQLite database
        gallery_dir : Path
            Directory where generated paintings are written as PNG files
        database_file : Path | None
            Explicit database location (defaults to ``data_dir/paintworks.db``)
        client_state_path : Path
            JSON file used by the client to persist in-flight placeholders

    Pipeline:
        max_parallel_images : int
            Maximum simultaneous image-generation calls (K)
        max_batch_quantity : int
            Upper bound for ``quantity`` on a generate request
        default_quantity : int
            Quantity used when a request omits it
        placeholder_ttl_seconds : float
            Age after which unconfirmed client placeholders are discarded

    Idea service (OpenRouter-compatible chat completions):
        idea_api_url, idea_api_key, idea_model, idea_timeout_seconds

    Image service (OpenAI-compatible Images API):
        image_api_url, image_api_key, image_model, image_size,
        image_timeout_seconds

    Server / client:
        server_host, server_port, api_token, log_level,
        api_base_url, poll_interval_seconds

    Examples
    --------
        >>> from paintworks.core.config import config
        >>> config.max_parallel_images
        5

        >>> custom = PaintworksConfig(max_parallel_images=2, data_dir="/tmp/pw")
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PAINTWORKS_",
        case_sensitive=False,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for the SQLite database",
    )
    gallery_dir: Path = Field(
        default=Path("data/paintings"),
        description="Directory to save generated paintings",
    )
    database_file: Path | None = Field(
        default=None,
        description="SQLite database file (defaults to data_dir/paintworks.db)",
    )
    client_state_path: Path = Field(
        default=Path.home() / ".paintworks" / "placeholders.json",
        description="Client-local placeholder storage",
    )

    # Pipeline
    max_parallel_images: int = Field(
        default=5,
        description="Maximum simultaneous image-generation calls",
        ge=1,
        le=32,
    )
    max_batch_quantity: int = Field(
        default=20,
        description="Largest accepted batch quantity",
        ge=1,
        le=100,
    )
    default_quantity: int = Field(default=5, ge=1)
    placeholder_ttl_seconds: float = Field(
        default=600.0,
        description="Unconfirmed placeholders older than this are dropped",
        gt=0,
    )

    # Idea generation service
    idea_api_url: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions",
        description="Chat completions endpoint used for idea generation",
    )
    idea_api_key: str | None = Field(default=None, description="Bearer token for the idea service")
    idea_model: str = Field(default="google/gemini-2.5-pro-preview")
    idea_timeout_seconds: float = Field(default=120.0, gt=0)

    # Image generation service
    image_api_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the Images API",
    )
    image_api_key: str | None = Field(default=None, description="Bearer token for the image service")
    image_model: str = Field(default="gpt-image-1")
    image_size: Literal["1024x1024", "1024x1536", "1536x1024", "auto"] = Field(
        default="1024x1024",
    )
    image_timeout_seconds: float = Field(default=300.0, gt=0)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    api_token: str | None = Field(
        default=None,
        description="Bearer token required on /api/paintings routes (unset = open)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    # Client settings
    api_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL the client uses to reach the server",
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        description="Delay between status polls",
        gt=0,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.gallery_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        """Resolved SQLite database location."""
        return self.database_file or self.data_dir / "paintworks.db"


# Global configuration instance
# Loads values from environment variables (PAINTWORKS_* prefix) and .env file.
config = PaintworksConfig()
