"""
Configuration settings for the Mail Attachment Extractor
Reads configuration from .env file using Pydantic Settings
"""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # IMAP Configuration
    imap_folder: str = "INBOX"
    imap_connect_timeout: float = 30.0
    imap_read_timeout: float = 30.0
    imap_verify_certificates: bool = True
    default_list_limit: int = 50

    # OpenAI Configuration
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4-turbo-preview"
    openai_temperature: float = 0.3
    openai_timeout_seconds: float = 30.0

    # Rate limiting for the suggestion endpoint
    suggest_rate_limit_window_seconds: float = 60.0
    suggest_rate_limit_max_requests: int = 20
    rate_limit_cleanup_interval_seconds: float = 60.0
    rate_limit_max_keys: int = 10000

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    log_file: str = "logs/attachment_extractor.log"

    model_config = {
        'env_file': '.env',
        'env_file_encoding': 'utf-8',
        'case_sensitive': False,
        'extra': 'ignore'  # Ignore extra fields in .env
    }


def create_settings() -> Settings:
    """Create and validate settings instance"""
    try:
        settings = Settings()

        if settings.default_list_limit < 1:
            raise ValueError("❌ DEFAULT_LIST_LIMIT must be at least 1")
        if settings.imap_connect_timeout <= 0 or settings.imap_read_timeout <= 0:
            raise ValueError("❌ IMAP timeouts must be positive")

        return settings

    except Exception as e:
        print(f"🔧 Configuration Error: {e}")
        print("📝 Check the .env file and environment variables.")
        raise

settings = create_settings()
