# restored_relay/config.py
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        populate_by_name=True,
        extra="ignore",
    )

    # App
    app_env: str = Field(
        "development", validation_alias=AliasChoices("APP_ENV", "NODE_ENV", "app_env")
    )
    tz: str = Field("UTC", alias="TZ")
    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(3001, alias="PORT")
    log_level: str | None = Field(None, alias="LOG_LEVEL")
    log_dir: str | None = Field(None, alias="LOG_DIR")
    cors_origins: str = Field("*", alias="CORS_ORIGINS")
    trust_proxy: bool = Field(False, alias="TRUST_PROXY")

    # Provider
    gemini_api_key: str | None = Field(None, alias="GEMINI_API_KEY")
    generative_model: str = Field("gemini-2.0-flash-exp", alias="GENERATIVE_MODEL")
    list_models_on_startup: bool = Field(True, alias="LIST_MODELS_ON_STARTUP")

    # Request guards
    max_prompt_length: int = Field(10_000, alias="MAX_PROMPT_LENGTH")
    api_rate_limit_max: int = Field(100, alias="API_RATE_LIMIT_MAX")
    api_rate_limit_window_seconds: float = Field(
        15 * 60, alias="API_RATE_LIMIT_WINDOW_SECONDS"
    )
    generation_rate_limit_max: int = Field(10, alias="GENERATION_RATE_LIMIT_MAX")
    generation_rate_limit_window_seconds: float = Field(
        60, alias="GENERATION_RATE_LIMIT_WINDOW_SECONDS"
    )

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"

    @property
    def api_key_configured(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "DEBUG" if self.is_development else "INFO"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
