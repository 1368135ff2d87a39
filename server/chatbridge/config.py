"""Configuration helpers for the chat bridge service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


DEFAULT_INSTRUCTIONS = (
    "You are a helpful AI assistant. Use the provided Azure Search knowledge base "
    "to answer questions accurately."
)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Field defaults are read from the environment when this module is imported;
    tests construct ``Settings`` directly with explicit values instead.
    """

    # Azure OpenAI realtime (speech-to-speech) deployment
    azure_openai_endpoint: Optional[str] = os.getenv("AZURE_OPENAI_ENDPOINT")
    azure_openai_api_key: Optional[str] = os.getenv("AZURE_OPENAI_API_KEY")
    realtime_deployment: str = os.getenv("AZURE_OPENAI_REALTIME_DEPLOYMENT", "gpt-4o-realtime-preview")
    realtime_voice: str = os.getenv("AZURE_OPENAI_REALTIME_VOICE_CHOICE", "alloy")
    realtime_api_version: str = os.getenv("AZURE_OPENAI_REALTIME_API_VERSION", "2024-10-01-preview")
    realtime_instructions: str = os.getenv("AZURE_OPENAI_REALTIME_INSTRUCTIONS", DEFAULT_INSTRUCTIONS)

    # Azure AI Search knowledge base
    search_endpoint: Optional[str] = os.getenv("AZURE_SEARCH_ENDPOINT")
    search_index: Optional[str] = os.getenv("AZURE_SEARCH_INDEX")
    search_api_key: Optional[str] = os.getenv("AZURE_SEARCH_API_KEY")
    search_semantic_configuration: Optional[str] = os.getenv("AZURE_SEARCH_SEMANTIC_CONFIGURATION")
    search_identifier_field: str = os.getenv("AZURE_SEARCH_IDENTIFIER_FIELD", "content_id")
    search_title_field: str = os.getenv("AZURE_SEARCH_TITLE_FIELD", "document_title")
    search_content_field: str = os.getenv("AZURE_SEARCH_CONTENT_FIELD", "content_text")
    search_embedding_field: str = os.getenv("AZURE_SEARCH_EMBEDDING_FIELD", "content_embedding")
    search_use_vector_query: bool = _env_flag("AZURE_SEARCH_USE_VECTOR_QUERY")
    search_api_version: str = os.getenv("AZURE_SEARCH_API_VERSION", "2023-11-01")
    search_timeout: float = _env_float("AZURE_SEARCH_TIMEOUT_SECONDS", 30.0)

    # Copilot Studio bot over Direct Line
    direct_line_token: Optional[str] = os.getenv("DIRECT_LINE_TOKEN")
    direct_line_base_url: str = os.getenv(
        "DIRECT_LINE_BASE_URL", "https://directline.botframework.com/v3/directline"
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    host: str = os.getenv("SERVER_HOST", "0.0.0.0")
    port: int = _env_int("SERVER_PORT", 8000)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
