"""Application configuration."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    
    # Database
    DATABASE_URL: str = "postgresql+asyncpg://leadintel:leadintel@db:5432/leadintel"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    
    # Model classifier (OpenAI-compatible endpoint)
    LLM_API_KEY: Optional[str] = None
    LLM_BASE_URL: Optional[str] = None
    LLM_MODEL: str = "gpt-4o"
    LLM_FAST_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 60.0
    
    # Data providers
    APOLLO_API_KEY: Optional[str] = None
    LEADMAGIC_API_KEY: Optional[str] = None
    PROSPEO_API_KEY: Optional[str] = None
    PROVIDER_TIMEOUT_SECONDS: float = 20.0
    
    # Credits
    DEFAULT_MARGIN_PERCENT: float = 0.0
    
    # Batch processing
    ENRICHMENT_BATCH_SIZE: int = 5  # Fan-out window for per-item work
    
    # Strategy cache
    STRATEGY_TTL_HOURS: int = 24
    
    # Scoring floors
    INTELLIGENCE_SCORE_FLOOR: float = 0.3
    ICP_FIT_FLOOR: float = 0.2
    
    # Stage promotion thresholds
    MARKET_RELEVANCE_THRESHOLD: float = 0.7
    EXPOSURE_CONFIDENCE_THRESHOLD: float = 0.5
    EXPOSURE_BATCH_SIZE: int = 12
    QUALIFY_SINGLE_SIGNAL: float = 0.8
    QUALIFY_PAIR_SIGNAL: float = 0.7
    QUALIFY_AGGREGATE_SCORE: float = 0.6
    
    # Signals
    DEFAULT_SIGNAL_TTL_DAYS: int = 90
    
    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
