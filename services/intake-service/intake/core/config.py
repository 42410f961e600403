from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Complaint & Suggestion Intake API"
    DATABASE_URL: str = "sqlite:///./intake.db"
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "UTC"

    # "memory" keeps lock and cache in-process; "redis" shares them across workers
    LOCK_BACKEND: str = "memory"
    LOCK_TIMEOUT_SECONDS: float = 30.0
    LOCK_LEASE_SECONDS: float = 120.0
    CACHE_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    HEADER_CACHE_TTL_SECONDS: int = 21600

    SESSION_HEADER: str = "X-Session-Token"
    SESSION_TTL_SECONDS: int = 21600
    UPLOAD_DIR: str = "./uploads"
    PUBLIC_BASE_URL: str = "http://localhost:8000/uploads"

    PAGE_SIZE: int = 30
    SLA_NEW_HOURS: int = 24
    SLA_IN_PROGRESS_HOURS: int = 72

    class Config:
        env_file = ".env"

settings = Settings()
