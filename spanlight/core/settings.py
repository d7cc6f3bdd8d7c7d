from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(default="sqlite+pysqlite:///./spanlight.db", validation_alias="DATABASE_URL")
    db_auto_create: bool = Field(default=True, validation_alias="DB_AUTO_CREATE")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

    classifier_backend: str = Field(default="gemini", validation_alias="CLASSIFIER_BACKEND")
    classifier_url: str | None = Field(default=None, validation_alias="CLASSIFIER_URL")
    classifier_api_key: str | None = Field(default=None, validation_alias="CLASSIFIER_API_KEY")
    classifier_timeout_seconds: float = Field(default=5.0, validation_alias="CLASSIFIER_TIMEOUT_SECONDS")
    classifier_offset_unit: str = Field(default="codepoint", validation_alias="CLASSIFIER_OFFSET_UNIT")

    google_cloud_project: str | None = Field(default=None, validation_alias="GOOGLE_CLOUD_PROJECT")
    google_cloud_location: str = Field(default="us-central1", validation_alias="GOOGLE_CLOUD_LOCATION")

    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    gemini_text_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_TEXT_MODEL")
    gemini_max_retries: int = Field(default=3, validation_alias="GEMINI_MAX_RETRIES")
    gemini_initial_backoff_seconds: float = Field(
        default=0.8,
        validation_alias="GEMINI_INITIAL_BACKOFF_SECONDS",
    )
    gemini_circuit_breaker_threshold: int = Field(
        default=5,
        validation_alias="GEMINI_CIRCUIT_BREAKER_THRESHOLD",
    )
    gemini_circuit_breaker_timeout: int = Field(
        default=60,
        validation_alias="GEMINI_CIRCUIT_BREAKER_TIMEOUT",
    )

    span_max_spans: int = Field(default=60, validation_alias="SPAN_MAX_SPANS")
    span_min_confidence: float = Field(default=0.5, validation_alias="SPAN_MIN_CONFIDENCE")
    span_template_version: str = Field(default="v1", validation_alias="SPAN_TEMPLATE_VERSION")
    span_non_technical_word_limit: int = Field(default=6, validation_alias="SPAN_NON_TECHNICAL_WORD_LIMIT")
    span_debounce_ms: int = Field(default=500, validation_alias="SPAN_DEBOUNCE_MS")
    span_smart_debounce: bool = Field(default=True, validation_alias="SPAN_SMART_DEBOUNCE")

    span_cache_max_entries: int = Field(default=100, validation_alias="SPAN_CACHE_MAX_ENTRIES")
    span_cache_ttl_seconds: float = Field(default=3600.0, validation_alias="SPAN_CACHE_TTL_SECONDS")
    span_cache_persist: bool = Field(default=False, validation_alias="SPAN_CACHE_PERSIST")

    highlight_debug: bool = Field(default=False, validation_alias="HIGHLIGHT_DEBUG")
    highlight_context_chars: int = Field(default=20, validation_alias="HIGHLIGHT_CONTEXT_CHARS")


settings = Settings()
