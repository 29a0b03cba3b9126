from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CARDCHECK_")

    app_name: str = "cardcheck"
    debug: bool = False

    # Single local user: a SQLite file is the default store
    database_url: str = "sqlite+aiosqlite:///./cardcheck.db"

    anthropic_api_key: str = ""
    extractor_model: str = "claude-sonnet-4-5"
    extractor_max_tokens: int = 2048
    extractor_timeout_seconds: float = 60.0
    confirmation_timeout_seconds: float = 30.0

    # Vision providers are rate limited; keep one card in flight by default
    min_request_interval_seconds: float = 0.0
    max_concurrent_scans: int = 1

    # Directory of seed checklist JSON files. Empty means the packaged corpus.
    seed_data_dir: str = ""

    # Feature toggles
    enable_variation_verification: bool = True
    auto_apply_high_confidence_suggestions: bool = True
    run_confirmation_pass: bool = True
    enable_checklist_learning: bool = True


settings = Settings()


# =============================================================================
# MATCHING THRESHOLDS
# =============================================================================

# Minimum similarity for an extracted player name to count as the checklist name
PLAYER_NAME_THRESHOLD = 0.85

# Minimum similarity for an extracted parallel to be suggested as a known variation
PARALLEL_FUZZY_THRESHOLD = 0.70
