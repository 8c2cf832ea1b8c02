"""
Feature flags for the Humidor service.

Uses pydantic-settings (FastAPI-recommended) for typed, validated,
environment-variable-backed feature flags.

Toggle via env vars: FEATURE_STATS=false
All flags default to True (on). Disable via env vars when needed.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class FeatureFlags(BaseSettings):
    """Feature flags backed by environment variables."""

    feature_catalog_crosscheck: bool = True
    feature_pending_contributions: bool = True
    feature_stats: bool = True
    feature_band_awards: bool = True
    feature_sync_on_load: bool = True

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
    }


@lru_cache()
def get_feature_flags() -> FeatureFlags:
    """Cached singleton. Use FastAPI Depends() for injection."""
    return FeatureFlags()
