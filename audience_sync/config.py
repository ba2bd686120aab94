"""
Configuration management for the audience sync service
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Audience Sync"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./audience_sync.db"

    # Shopify
    shopify_store_domain: Optional[str] = None
    shopify_admin_access_token: Optional[str] = None
    shopify_api_version: str = "2024-01"
    shopify_webhook_secret: Optional[str] = None
    shopify_page_size: int = 250  # Max allowed by Shopify
    shopify_max_retries: int = 5  # 429 retries before giving up

    # LLM enrichment
    anthropic_api_key: Optional[str] = None
    llm_model: str = "claude-3-5-haiku-20241022"
    enable_llm_enrichment: bool = True
    llm_max_tokens: int = 50

    # Write-back to Shopify
    write_back_to_shopify: bool = False  # marketing.inferred_gender metafield
    sync_gender_to_tags: bool = False  # gender:<value> customer tag

    # Sync
    incremental_sync_start_date: Optional[str] = None  # ISO date, overrides watermark
    sync_schedule_hour: int = 2
    enrichment_interval_minutes: int = 5
    enable_scheduler: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
