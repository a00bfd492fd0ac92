"""Configuration management for the BNCC activity generator.

This module uses Pydantic Settings to load configuration from environment
variables. All settings are validated at startup to catch configuration
errors early.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All sensitive values (API keys, database credentials) must be
    provided via environment variables or .env file.
    """

    # Model backend configuration
    model_backend: Literal["gemini_structured", "gemini_text", "apifreellm"] = Field(
        default="gemini_structured",
        description="Which model invocation style generates the activities"
    )
    gemini_api_key: Optional[str] = Field(
        default=None,
        description="Google Gemini API key (required for the Gemini backends)"
    )
    model_name: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model used for generation"
    )
    apifreellm_url: str = Field(
        default="https://apifreellm.com/api/chat",
        description="Chat endpoint of the ApiFreeLLM backend"
    )
    model_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Timeout for a single model invocation"
    )

    # Prompt budget
    max_prompt_chars: int = Field(
        default=195000,
        ge=1000,
        description="Character ceiling for the whole prompt, document context included"
    )

    # Storage
    storage_backend: Literal["memory", "supabase"] = Field(
        default="memory",
        description="Persistence for activities and uploaded documents"
    )
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL"
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase anonymous key"
    )
    supabase_service_role_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key (preferred when set)"
    )

    # Uploads
    max_upload_bytes: int = Field(
        default=20 * 1024 * 1024,
        gt=0,
        description="Maximum size of an uploaded support document"
    )

    # HTTP
    trusted_proxies: str = Field(
        default="",
        description="Comma-separated proxy IPs allowed to set X-Forwarded-For"
    )
    log_level: str = Field(default="INFO", description="Root log level")

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    @field_validator("gemini_api_key", "supabase_key", "supabase_service_role_key")
    @classmethod
    def strip_secret(cls, v: Optional[str]) -> Optional[str]:
        """Normalise blank secrets to None."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that the Supabase URL, when given, is properly formatted."""
        if v is None or not v.strip():
            return None

        url = v.strip()
        if not url.startswith("https://"):
            raise ValueError(
                "SUPABASE_URL must start with https:// "
                f"(got: {url[:20]}...)"
            )

        return url

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL must be a standard logging level (got: {v})")
        return level

    @model_validator(mode="after")
    def check_backend_requirements(self) -> "Settings":
        """Fail fast when the selected backends are missing credentials."""
        if self.model_backend.startswith("gemini") and not self.gemini_api_key:
            raise ValueError(
                "GEMINI_API_KEY must be set in environment variables when "
                f"MODEL_BACKEND={self.model_backend}. "
                "Get your API key from https://ai.google.dev/"
            )
        if self.storage_backend == "supabase":
            if not self.supabase_url:
                raise ValueError("SUPABASE_URL must be set when STORAGE_BACKEND=supabase")
            if not (self.supabase_key or self.supabase_service_role_key):
                raise ValueError("SUPABASE_KEY must be set when STORAGE_BACKEND=supabase")
        return self

    @property
    def trusted_proxy_list(self) -> list[str]:
        return [ip.strip() for ip in self.trusted_proxies.split(",") if ip.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance.

    This function uses lru_cache to ensure settings are loaded only once
    and reused across the application lifetime.

    Returns:
        Settings: Validated application settings

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    return Settings()
