"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )
    
    # Application
    APP_NAME: str = "Landed Cost Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"
    
    # Database
    POSTGRES_USER: str = "landedcost"
    POSTGRES_PASSWORD: str = "landedcost"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "landedcost"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)
    
    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    
    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    
    # Vision / LLM providers
    VISION_PROVIDER: str = "mock"  # mock, openai
    LLM_PROVIDER: str = "mock"  # mock, openai
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    VISION_MODEL: str = "gpt-4o-mini"
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    
    # Estimation pipeline
    PIPELINE_VERSION: str = "2024.2"
    FAST_FACTS_BUDGET_SECONDS: float = 0.8
    
    # Background tasks (outbox)
    TASKS_EAGER: bool = False  # run tasks in-process instead of RQ
    TASK_MAX_ATTEMPTS: int = 3
    TASK_VISIBILITY_TIMEOUT_SECONDS: int = 300
    FAST_PATH_STALE_SECONDS: int = 60
    OUTBOX_DRAIN_INTERVAL_SECONDS: int = 60
    
    # Evidence upgrade cooldowns
    EVIDENCE_COOLDOWN_HOURS_BASELINE: int = 12
    EVIDENCE_COOLDOWN_HOURS_EVIDENCE: int = 24
    
    # Outreach messaging
    OUTREACH_WEBHOOK_URL: Optional[str] = None
    
    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]
    
    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v
        
        data = info.data
        user = data.get("POSTGRES_USER", "landedcost")
        password = data.get("POSTGRES_PASSWORD", "landedcost")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "landedcost")
        
        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Reject weak SECRET_KEY in production, warn in development."""
        weak_keys = {
            "your-secret-key-change-in-production",
            "change-me-in-production",
            "secret",
            "changeme",
        }
        is_weak = v in weak_keys or len(v) < 32
        if is_weak:
            debug = info.data.get("DEBUG", False)
            if not debug:
                raise ValueError(
                    "SECRET_KEY is weak or default. "
                    "Generate a strong key with: openssl rand -hex 32"
                )
            import warnings
            warnings.warn(
                "SECRET_KEY is weak or default! Set a strong key before deploying.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator('POSTGRES_PASSWORD')
    @classmethod
    def validate_postgres_password(cls, v: str, info) -> str:
        """Reject default database password in production."""
        weak = {"landedcost", "postgres", "password", "changeme", ""}
        if v in weak and not info.data.get("DEBUG", False):
            raise ValueError(
                "POSTGRES_PASSWORD is set to a default value. "
                "Set a strong database password for production."
            )
        return v

    @field_validator('FAST_FACTS_BUDGET_SECONDS')
    @classmethod
    def validate_budget(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("FAST_FACTS_BUDGET_SECONDS must be positive")
        return v


settings = Settings()
