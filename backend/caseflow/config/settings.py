"""Application Settings - Central Configuration"""
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "caseflow_dev"

    # JWT (tokens are issued by the identity provider in front of the console)
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_audience: str = ""

    # Logging
    logs_path: str = "./logs"
    log_level: str = "INFO"

    # CORS - set to "*" to allow all origins
    cors_origins: str = "*"

    # Frontend URL (for links in emails and webhook payloads)
    frontend_url: str = "http://localhost:3000"

    # Action worker (async transition actions)
    action_worker_enabled: bool = True
    action_worker_interval_seconds: int = 10
    action_max_retries: int = 5
    action_lock_duration_seconds: int = 60
    action_retry_base_seconds: int = 30
    action_worker_threads: int = 4

    # Synchronous action budget per transition, in seconds
    sync_action_timeout_seconds: float = 10.0
    webhook_timeout_seconds: float = 5.0

    # Workflow import
    import_max_mb: int = 10

    # Environment
    environment: str = "development"
    debug: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string to list"""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def import_max_bytes(self) -> int:
        """Max workflow import size in bytes"""
        return self.import_max_mb * 1024 * 1024

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ["development", "dev", "local"]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
