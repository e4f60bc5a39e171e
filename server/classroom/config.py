from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration settings"""

    # Application
    app_name: str = "Classroom Exam Server"
    debug: bool = False
    api_version: str = "v1"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 5000

    # Database
    database_url: str = "sqlite:///./classroom.db"
    storage_backend: str = "sql"  # "sql" or "memory"

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:5174,http://localhost:5175"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # Exam lifecycle
    scheduler_interval_seconds: float = 3.0
    upcoming_window_seconds: int = 60
    ended_lookback_seconds: int = 300
    countdown_fallback_seconds: int = 10
    clock_skew_seconds: int = 2

    # Result weighting (renormalised over the components that are present)
    mid_exam_weight: float = 0.3
    final_exam_weight: float = 0.5
    assignment_weight: float = 0.2

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
