"""Memory Timeline configuration: settings, provider defaults and analysis thresholds."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///data/timeline.db"

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:3000"

    # LLM relationship classifier (empty key = heuristic classifier only)
    anthropic_api_key: str = ""
    classifier_enabled: bool = True
    classifier_model: str = "claude-sonnet-4-6"
    classifier_min_confidence: float = 0.5
    llm_timeout_seconds: float = 60.0
    default_max_tokens: int = 1024
    default_max_retries: int = 2
    default_temperature: float = 0.0

    # Embedding provider ("local" works offline, no key needed)
    embedding_provider: str = "local"
    embedding_model: str = ""  # Empty = provider default
    embedding_api_key: str = ""
    embedding_timeout_seconds: float = 30.0
    embedding_max_retries: int = 3
    embedding_retry_base_delay: float = 1.0

    # Batch work (hosted providers rate-limit, keep this small)
    batch_concurrency: int = 3
    batch_item_timeout_seconds: float = 120.0

    # Similarity / cross-reference analysis
    similarity_threshold: float = 0.75
    similarity_limit: int = 10
    analysis_candidate_limit: int = 20
    cross_reference_min_confidence: float = 0.4

    # Pattern detection
    pattern_min_category_support: int = 3
    cluster_window_days: int = 30
    cluster_min_events: int = 3
    era_transition_window_days: int = 180

    # Tag suggestions
    tag_similarity_threshold: float = 0.5
    tag_neighbor_limit: int = 10

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
