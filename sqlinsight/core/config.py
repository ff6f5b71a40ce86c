from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SQLINSIGHT_",
        extra="ignore",
    )

    # Model endpoint (OpenAI-compatible chat completions)
    llm_api_url: str = "https://api.openai.com/v1/chat/completions"
    llm_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = Field(60.0, gt=0)
    llm_temperature: float = Field(0.1, ge=0, le=2)
    llm_max_tokens: int = Field(4000, gt=0)

    # Orchestration
    tool_timeout_seconds: float = Field(60.0, gt=0)
    tool_max_retries: int = Field(2, ge=0)
    retry_confidence_threshold: float = Field(0.5, ge=0, le=1)  # retry a dimension below this confidence
    retry_base_delay: float = Field(1.0, ge=0)
    retry_max_delay: float = Field(8.0, ge=0)
    parallel_execution: bool = True
    batch_max_concurrent: int = Field(5, ge=1)

    # Parsing
    parse_cache_enabled: bool = True
    parse_cache_max_size: int = Field(256, ge=1)
    parse_cache_ttl_seconds: float = Field(600.0, gt=0)
    model_repair_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs


settings = Settings()
