"""Pydantic models for configuration validation."""

from pathlib import Path
from typing import Optional, Literal, Union
from pydantic import BaseModel, Field, field_validator, ConfigDict


class GeminiConfig(BaseModel):
    """Remote generative model configuration."""

    provider: Literal["gemini"] = "gemini"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-2.5-flash-lite"
    api_key: str = Field(default="", description="Empty means read GEMINI_API_KEY from the environment")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=4096, gt=0, le=65536)
    response_mime_type: str = "application/json"
    timeout_seconds: float = Field(default=60.0, gt=0)
    retry_count: int = Field(default=2, ge=0, le=10)
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0)
    verify_ssl: Union[bool, str] = Field(default=True, description="False, True, or a CA bundle path")

    @field_validator('base_url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Ensure URL is properly formatted."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('base_url must start with http:// or https://')
        return v.rstrip('/')


class CacheConfig(BaseModel):
    """Cache store and TTL configuration."""

    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    reply_ttl_seconds: int = Field(default=3600, gt=0)
    conversation_list_ttl_seconds: int = Field(default=600, gt=0)
    conversation_detail_ttl_seconds: int = Field(default=3600, gt=0)
    dashboard_ttl_seconds: int = Field(default=900, gt=0)
    recent_assessments_ttl_seconds: int = Field(default=3600, gt=0)
    profile_ttl_seconds: int = Field(default=86400, gt=0)
    single_flight: bool = Field(
        default=False,
        description="Share one external call between concurrent misses on the same reply key"
    )

    @field_validator('redis_url')
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        if not v.startswith(('redis://', 'rediss://', 'unix://')):
            raise ValueError('redis_url must start with redis://, rediss:// or unix://')
        return v


class ContextConfig(BaseModel):
    """Bounds for the conversational context window."""

    max_history_messages: int = Field(default=10, ge=0, le=100)
    max_assessments: int = Field(default=3, ge=0, le=20)
    max_history_message_chars: int = Field(default=200, gt=0)


class PromptConfig(BaseModel):
    """Prompt building configuration."""

    max_payload_chars: int = Field(default=30000, gt=0)
    max_message_chars: int = Field(default=4000, gt=0)
    default_language: str = "English"
    policy_template_path: Optional[Path] = None


class SystemConfig(BaseModel):
    """Top-level system configuration."""

    model_config = ConfigDict(extra='ignore')

    llm: GeminiConfig = Field(default_factory=GeminiConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    database_url: str = "sqlite:///data/kardia.db"
    debug: bool = False
    api_host: str = "localhost"
    api_port: int = Field(default=8080, gt=0, le=65535)
