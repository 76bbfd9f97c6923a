"""Configuration settings for the Veritas pipeline."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # API Keys
    OPENAI_API_KEY: str = ""
    
    # LLM Configuration
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.1
    LLM_MAX_TOKENS: int = 4096
    
    # Pipeline Configuration
    CHUNK_SIZE: int = 30000  # Characters per oracle call
    
    # API Configuration
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    
    # Security Configuration
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8000"  # Comma-separated list
    API_KEY: str = ""  # Optional API key for authentication
    RATE_LIMIT_REQUESTS: int = 30  # Requests per window
    RATE_LIMIT_WINDOW: int = 60  # Window in seconds
    MAX_TEXT_LENGTH: int = 2_000_000  # Maximum manuscript length
    MAX_JOBS_STORED: int = 200  # Maximum jobs to keep in memory
    DEBUG_MODE: bool = False  # Set to True only in development
    LOG_LEVEL: str = "INFO"
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()
