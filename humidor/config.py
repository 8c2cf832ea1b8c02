"""
Centralized configuration for the Humidor identification service.

All constants are defined here to avoid scattered magic numbers
and enable easy configuration management.
"""

import os
from pathlib import Path
from typing import List, Optional


class Config:
    """Application configuration constants."""

    # === Log Entry Limits ===
    NOTES_MAX_LENGTH = 60
    MIN_RATING = 1
    MAX_RATING = 5

    # === Local Catalog Matching ===
    # Weighted similarity a candidate must reach (tolerates ~30% divergence)
    CATALOG_MATCH_THRESHOLD = 0.70
    CATALOG_MIN_QUERY_LENGTH = 3

    # Multi-algorithm scoring: token_set + partial_ratio + token_sort_ratio
    WEIGHT_TOKEN_SET = 0.45
    WEIGHT_PARTIAL = 0.30
    WEIGHT_TOKEN_SORT = 0.25
    PHONETIC_BONUS = 0.05

    # Field weights for the catalog index (brand/line count more than band text)
    FIELD_WEIGHT_BRAND = 1.0
    FIELD_WEIGHT_LINE = 1.0
    FIELD_WEIGHT_BAND = 0.85

    # === Assistant Polling ===
    ASSISTANT_POLL_INTERVAL = 1.0      # First poll delay (seconds)
    ASSISTANT_POLL_BACKOFF = 1.5       # Multiplier applied after every poll
    ASSISTANT_POLL_MAX_INTERVAL = 5.0  # Ceiling for a single poll delay
    ASSISTANT_TIMEOUT = 60.0           # Expiry is treated like a failed run

    # === Vision ===
    VISION_MAX_IMAGE_BYTES = 4 * 1024 * 1024

    # === Security ===
    MAX_IMAGE_SIZE_MB = 10
    MAX_IMAGE_SIZE_BYTES = MAX_IMAGE_SIZE_MB * 1024 * 1024
    ALLOWED_CONTENT_TYPES: List[str] = [
        "image/jpeg",
        "image/png",
        "image/heic",
        "image/heif",
    ]

    # === Environment ===
    @staticmethod
    def use_mocks() -> bool:
        """Check if mock mode is enabled."""
        return os.getenv("USE_MOCKS", "false").lower() == "true"

    @staticmethod
    def log_level() -> str:
        """Log level (DEBUG, INFO, WARNING, ERROR)."""
        return os.getenv("LOG_LEVEL", "INFO").upper()

    @staticmethod
    def openai_api_key() -> Optional[str]:
        """Get OpenAI API key from environment."""
        return os.getenv("OPENAI_API_KEY")

    @staticmethod
    def openai_base_url() -> str:
        """Base URL for the OpenAI-compatible API."""
        return os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")

    @staticmethod
    def assistant_id() -> Optional[str]:
        """Identifier of the cigar assistant that resolves identifications."""
        return os.getenv("OPENAI_ASSISTANT_ID")

    @staticmethod
    def anthropic_api_key() -> Optional[str]:
        """Get Anthropic API key from environment."""
        return os.getenv("ANTHROPIC_API_KEY")

    @staticmethod
    def vision_provider() -> str:
        """Vision provider (openai or claude). Default: openai."""
        return os.getenv("VISION_PROVIDER", "openai").lower()

    @staticmethod
    def vision_model() -> str:
        """Vision model name. Default depends on provider."""
        default = "gpt-4o" if Config.vision_provider() == "openai" else "claude-3-5-sonnet-latest"
        return os.getenv("VISION_MODEL", default)

    @staticmethod
    def http_timeout() -> float:
        """Timeout in seconds for a single model HTTP call. Default: 30.0."""
        try:
            return float(os.getenv("HTTP_TIMEOUT", "30.0"))
        except ValueError:
            return 30.0

    # === Remote Store ===
    @staticmethod
    def remote_store_url() -> str:
        """Base URL of the remote document store."""
        return os.getenv("REMOTE_STORE_URL", "").rstrip("/")

    @staticmethod
    def remote_store_token() -> Optional[str]:
        """Bearer token for the remote document store."""
        return os.getenv("REMOTE_STORE_TOKEN")

    @staticmethod
    def remote_timeout() -> float:
        """Timeout in seconds for remote store calls. Default: 10.0."""
        try:
            return float(os.getenv("REMOTE_TIMEOUT", "10.0"))
        except ValueError:
            return 10.0

    @staticmethod
    def gcs_image_bucket() -> str:
        """GCS bucket for uploaded cigar images."""
        return os.getenv("GCS_IMAGE_BUCKET", "")

    # === Local Persistence ===
    @staticmethod
    def database_path() -> str:
        """Path to the local SQLite key-value store.
        Default: humidor/data/humidor.db (relative to the package).
        """
        default = str(Path(__file__).parent / "data" / "humidor.db")
        return os.getenv("DATABASE_PATH", default)

    @staticmethod
    def image_cache_dir() -> str:
        """App-private directory that captured images are copied into."""
        default = str(Path(__file__).parent / "data" / "images")
        return os.getenv("IMAGE_CACHE_DIR", default)

    @staticmethod
    def catalog_path() -> str:
        """Bundled cigar reference dataset for the local fuzzy matcher."""
        default = str(Path(__file__).parent / "data" / "cigar_catalog.json")
        return os.getenv("CATALOG_PATH", default)

    @staticmethod
    def band_rules_path() -> str:
        """Band award rules consumed by the stats notifier."""
        default = str(Path(__file__).parent / "data" / "band_rules.json")
        return os.getenv("BAND_RULES_PATH", default)
