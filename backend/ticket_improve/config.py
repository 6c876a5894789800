from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Ticket Improve API"
    app_env: str = "development"
    cors_origins: str = "http://localhost:5173"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    # Empty key means the completion service is not configured; requests fail with ConfigurationError.
    completion_api_key: str = ""
    completion_base_url: str = "https://openrouter.ai/api/v1"
    completion_model: str = "openai/gpt-4o-mini"
    completion_timeout_seconds: float = 30.0
    completion_referer: str = "https://kooyahq.com"
    completion_title: str = "KooyaHQ"

    max_images: int = 3
    max_image_bytes: int = 2 * 1024 * 1024
    max_criteria: int = 10
    storage_read_chunk_bytes: int = 64 * 1024

    storage_backend: str = "local"  # local|s3
    storage_root: str = "data/uploads"
    aws_region: str = "us-east-1"
    s3_bucket: str = "kooya-dev"
    s3_prefix: str = ""
    media_route_prefix: str = "/api/media/"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def completion_configured(self) -> bool:
        return bool(self.completion_api_key.strip())


settings = Settings()
