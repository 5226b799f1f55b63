"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Values are read from two sources, in priority order:
#
#   1. **Environment variables** -- e.g. ANTHROPIC_API_KEY=sk-ant-...
#   2. **.env file** -- key=value lines in the project root .env file
#
# Field ``anthropic_api_key`` maps to env var ``ANTHROPIC_API_KEY``.
# Defaults apply when neither source defines a value.
#
# The .env file is never committed.  Tunables that are not secrets
# (chunk sizes, retry presets, rate-limit windows) live in
# config/config.yaml and are merged by ``load_config``.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ingestion service settings.

    Environment variables override defaults.  Loaded from .env when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Extraction service (Claude, PDF document input) ===
    # Empty string = "not configured": the app starts but /ingest of PDFs
    # fails with a ProviderUnavailableError.
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_model: str = "claude-sonnet-4-20250514"

    # === Embeddings ===
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_embedding_model: str = "text-embedding-3-small"

    # === Metadata store / shared rate-limit store ===
    metadata_db_path: str = "data/legal_sources.db"
    rate_limit_db_path: str = "data/rate_limits.db"

    # === Ingestion limits ===
    pages_per_batch: int = 5
    max_pdf_size_mb: int = 15
    # Wall-clock ceiling of one invocation; per-attempt timeouts stay below it.
    invocation_timeout_ms: int = 150_000

    # === Rate limiting ===
    rate_limit_enabled: bool = True

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_providers(self) -> list[str]:
        """Return the external providers that have credentials configured."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        return providers
