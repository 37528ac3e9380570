"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "URLBar LLM"
    app_version: str = "1.0.0"
    debug: bool = False
    enabled: bool = True

    # Storage
    local_storage_path: str = "./data"

    # Providers (presets live in llm/presets.py, these override them)
    default_provider: str = "ollama"
    mistral_api_key: Optional[str] = None
    mistral_model: str = "mistral-medium-latest"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    ollama_base_url: str = "http://localhost:11434/api"
    ollama_model: str = "mistral"
    ollama_api_key: Optional[str] = None  # enables Ollama's hosted web search API
    llm_timeout: float = 120.0
    llm_temperature: float = 0.7

    # Web search
    search_enabled: bool = True
    search_max_results: int = 5
    search_page_url: str = "https://html.duckduckgo.com/html/"
    search_timeout: float = 10.0
    search_cache_max_size: int = 50
    search_cache_ttl_seconds: float = 300.0

    # Content fetching
    fetch_max_results: int = 3
    fetch_item_timeout: float = 5.0
    fetch_overall_timeout: float = 8.0
    fetch_max_content_chars: int = 3000
    fetch_min_content_chars: int = 200

    # Network retry
    retry_max_attempts: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0

    # Sessions
    session_max_messages: int = 50
    session_max_per_provider: int = 25
    session_title_max_chars: int = 60
    session_max_content_chars: int = 200_000

    # Rendering
    render_debounce_ms: int = 50

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/urlbar-llm.log"
    log_file_enabled: bool = True
    log_file_max_bytes: int = 10 * 1024 * 1024
    log_file_backup_count: int = 5
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True  # Log all API requests/responses
    log_llm_calls: bool = True  # Log LLM call completion with timing

    class Config:
        env_file = ".env"
        env_prefix = "URLBAR_LLM_"
        case_sensitive = False


settings = Settings()
