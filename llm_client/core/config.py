from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Backend
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"

    # Request execution
    llm_timeout_ms: int = 30_000  # Per-attempt deadline
    llm_max_retries: int = 3
    llm_retry_delay_ms: int = 1_000  # Base delay, doubled per attempt
    llm_use_queue: bool = True
    llm_max_concurrent: int = 3

    # Rate limiting
    llm_rate_limit_preset: str = "UNLIMITED"
    llm_usage_store_path: str = "~/.llm_client/usage.json"  # Durable usage history

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs


settings = Settings()
