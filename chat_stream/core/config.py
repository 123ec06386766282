"""Configuration settings for the chat streaming service."""

from pydantic_settings import BaseSettings
from typing import Optional, List
import os


class Settings(BaseSettings):
    """Application settings."""

    # API Configuration
    app_name: str = "Chat Stream Service"
    app_version: str = "0.3.0"
    api_prefix: str = "/api/v1"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 3000
    workers: int = 1  # Heartbeats and turn tasks live in the event loop

    # CORS
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:3001"]

    # OpenAI Configuration
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    default_model: str = "gpt-4o-mini"
    allowed_models: List[str] = ["gpt-4o-mini", "gpt-4o", "gpt-3.5-turbo"]
    openai_temperature: float = 0.7
    openai_max_tokens: int = 2000

    # Upstream provider behaviour
    provider_connect_timeout_seconds: float = 5.0
    provider_timeout_seconds: float = 30.0
    provider_retry_max: int = 1  # Retries only happen before the first token
    provider_retry_base_delay_seconds: float = 1.0

    # Streaming Configuration
    sse_heartbeat_seconds: float = 10.0
    sse_emit_done_sentinel: bool = False  # Append legacy "data: [DONE]" after the done event

    # Memory (Zep) Configuration
    memory_enabled: bool = True
    zep_api_key: Optional[str] = None
    zep_base_url: str = "https://api.getzep.com"
    memory_top_k: int = 10
    memory_min_score: float = 0.7
    memory_token_budget: int = 1500
    memory_clip_sentences: int = 2
    memory_timeout_seconds: float = 3.0

    # Pricing / model registry
    pricing_file: Optional[str] = None  # JSON list of {model, input_per_mtok, output_per_mtok}
    pricing_cache_ttl_seconds: int = 300  # 5 minutes

    # Prompt assembly
    default_system_prompt: str = (
        "You are a helpful AI assistant. Use any provided context to give accurate "
        "and relevant responses."
    )
    prompt_system_token_budget: int = 200
    prompt_user_token_budget: int = 2000

    # Telemetry
    enable_telemetry: bool = True
    telemetry_db_path: str = "./data/telemetry.db"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    class Config:
        env_file = ".env"
        env_prefix = "CHAT_"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields in .env file


# Create settings instance
settings = Settings()

# Override with well-known environment variables
if os.getenv("OPENAI_API_KEY"):
    settings.openai_api_key = os.getenv("OPENAI_API_KEY").strip()

if os.getenv("OPENAI_DEFAULT_MODEL"):
    settings.default_model = os.getenv("OPENAI_DEFAULT_MODEL").strip()

if os.getenv("ZEP_API_KEY"):
    settings.zep_api_key = os.getenv("ZEP_API_KEY").strip()

if os.getenv("OPENAI_SSE_HEARTBEAT_MS"):
    try:
        settings.sse_heartbeat_seconds = int(os.getenv("OPENAI_SSE_HEARTBEAT_MS")) / 1000
    except ValueError:
        print("[warning] OPENAI_SSE_HEARTBEAT_MS is not an integer; keeping default heartbeat.")
