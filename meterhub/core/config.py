"""
Application configuration management
"""
import json
from typing import Any, List
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Ensure repository .env values win over stale exported shell variables.
load_dotenv(override=True)

class Settings(BaseSettings):
    """Application settings"""
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Database
    DATABASE_URL: str = "sqlite:///./data/meterhub.db"
    DB_AUTO_MIGRATE: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    CORS_ORIGINS: str = "*"
    STATIC_DIR: str = "static"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/meterhub.log"

    # Default alerting thresholds seeded into the settings record on first boot
    DEFAULT_WARNING_THRESHOLD: float = 25.0
    DEFAULT_ALERT_THRESHOLD: float = 30.0

    # Device proxy
    PROXY_TIMEOUT_SECONDS: float = 5.0
    PROXY_MAX_RESPONSE_BYTES: int = 1024 * 1024

    # Realtime push channel
    WS_QUEUE_SIZE: int = 256

    @field_validator('PROXY_TIMEOUT_SECONDS')
    @classmethod
    def validate_proxy_timeout(cls, v):
        if float(v) <= 0:
            raise ValueError('PROXY_TIMEOUT_SECONDS must be positive')
        return float(v)

    @field_validator('PROXY_MAX_RESPONSE_BYTES', 'WS_QUEUE_SIZE')
    @classmethod
    def validate_positive_sizes(cls, v):
        if int(v) <= 0:
            raise ValueError('Must be positive')
        return int(v)

    @field_validator('PORT')
    @classmethod
    def validate_port(cls, v):
        if v < 1 or v > 65535:
            raise ValueError('PORT must be between 1 and 65535')
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        level = str(v or "").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError('LOG_LEVEL must be a standard logging level name')
        return level

    @model_validator(mode='after')
    def validate_threshold_order(self):
        if self.DEFAULT_WARNING_THRESHOLD > self.DEFAULT_ALERT_THRESHOLD:
            raise ValueError('DEFAULT_WARNING_THRESHOLD cannot exceed DEFAULT_ALERT_THRESHOLD')
        return self

    @staticmethod
    def _parse_str_list(value: Any) -> List[str]:
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
        if value is None:
            return []
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return []
            if stripped.startswith('[') and stripped.endswith(']'):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in stripped.split(',') if item.strip()]
        return [str(value).strip()] if str(value).strip() else []

    def get_cors_origins(self) -> List[str]:
        return self._parse_str_list(self.CORS_ORIGINS) or ["*"]

    def get_default_settings(self) -> dict:
        return {
            "warning_threshold": float(self.DEFAULT_WARNING_THRESHOLD),
            "alert_threshold": float(self.DEFAULT_ALERT_THRESHOLD),
        }

# Global settings instance
settings = Settings()
