from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    max_concurrent_jobs: int = Field(default=4, ge=1)
    status_preview_chars: int = Field(default=500, ge=0)
    finished_job_retention: int = Field(default=100, ge=0)

    max_chunk_words: int = Field(default=2000, gt=0)
    min_chunk_words: int = Field(default=200, gt=0)
    large_document_threshold_words: int = Field(default=5000, gt=0)

    max_retries: int = Field(default=3, ge=1)
    base_backoff_ms: int = Field(default=1000, ge=0)
    max_backoff_ms: int = Field(default=30000, ge=0)
    backoff_jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0)

    provider_requests_per_window: int = Field(default=10, ge=1)
    provider_tokens_per_window: int | None = Field(default=None, ge=1)
    window_ms: int = Field(default=60000, gt=0)
    min_inter_request_spacing_ms: int = Field(default=15000, ge=0)
    max_budget_wait_ms: int = Field(default=300000, ge=0)
    budget_reset_per_job: bool = False

    provider_timeout_seconds: int = Field(default=60, gt=0)
    default_provider: str = "deepseek"

    openai_api_key: str = ""
    openai_model_name: str = "gpt-4o-mini"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 4000

    deepseek_api_key: str = ""
    deepseek_base_url: str = "https://api.deepseek.com"
    deepseek_model_name: str = "deepseek-chat"
    deepseek_temperature: float = 0.7
    deepseek_max_tokens: int = 4000

    openai_compatible_api_key: str = ""
    openai_compatible_base_url: str = ""
    openai_compatible_model_name: str = ""
    openai_compatible_temperature: float = 0.7
    openai_compatible_max_tokens: int = 4000

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.min_chunk_words > self.max_chunk_words:
            raise ValueError("min_chunk_words must not exceed max_chunk_words")
        if self.base_backoff_ms > self.max_backoff_ms:
            raise ValueError("base_backoff_ms must not exceed max_backoff_ms")
        return self
