"""
Application configuration management.

This module handles configuration from environment variables using Pydantic Settings.
"""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application configuration from environment variables.

    All settings can be overridden via environment variables with the same name.
    """

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 4

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Monitoring
    enable_metrics: bool = True

    # Database
    database_url: str = "sqlite:///./inbox_triage.db"
    database_pool_size: int = 10
    database_echo_sql: bool = False

    # LLM Provider Configuration
    llm_provider: str = "openai"  # "openai" | "ollama"
    llm_model: str = "gpt-4o-mini"
    llm_api_key: str = ""  # Required for openai
    llm_api_base_url: str = ""  # Empty = provider default
    llm_temperature: float = 0.3
    llm_max_tokens: int = 1000
    llm_timeout_seconds: float = 30.0

    # Classification
    classification_max_content_length: int = 4000
    classification_default_threshold: float = 0.6
    classification_batch_concurrency: int = 5
    classification_max_retries: int = 3
    classification_retry_delays_seconds: List[float] = [1.0, 5.0, 30.0]
    dead_letter_payload_max_length: int = 500
    classification_stale_after_seconds: float = 600.0  # processing longer than this is reclaimed

    # Background work (search indexing)
    background_workers: int = 4

    # Queues
    queue_limit: int = 100

    # Review sessions
    review_session_ttl_hours: int = 24

    # Auto-archive
    auto_archive_default_days: int = 15
    auto_archive_warning_days: int = 2

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


# Global settings instance
settings = Settings()
