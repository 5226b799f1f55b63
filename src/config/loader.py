"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  -- Static defaults checked into the repo
#                            (chunking, retry presets, circuit breaker,
#                            rate limiting, ingestion limits)
#   2. .env file           -- Local developer overrides (not committed)
#   3. Environment vars    -- Set at deploy time
#
# _deep_merge does recursive dict merging:
#   base      = {"retry": {"presets": {"embeddings": {"max_retries": 2}}}}
#   overrides = {"retry": {"presets": {"embeddings": {"timeout_ms": 5000}}}}
#   result    = {"retry": {"presets": {"embeddings": {"max_retries": 2,
#                                                     "timeout_ms": 5000}}}}
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path

import yaml

from src.config.settings import Settings


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built Settings; a fresh instance is read when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "ingestion": {
            "pages_per_batch": settings.pages_per_batch,
            "max_pdf_size_mb": settings.max_pdf_size_mb,
            "invocation_timeout_ms": settings.invocation_timeout_ms,
        },
        "providers": {
            "available": settings.get_available_providers(),
        },
        "rate_limit": {
            "enabled": settings.rate_limit_enabled,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
