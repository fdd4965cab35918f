"""Configuration settings for the application."""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # LLM Configuration
    PLANNER: str = "openai"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_BASE_URL: str | None = None  # Any OpenAI-compatible endpoint

    # Data store (Supabase / PostgREST)
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str | None = None

    # Chat behaviour
    MAX_STEPS: int = 5
    TAX_RATE: float = 0.13
    ASSISTANT_LANGUAGE: str = "Spanish"
    BUDGET_FALLBACK_MESSAGE: str = (
        "No pude completar la consulta con la información disponible. "
        "Por favor, intenta reformular tu pregunta."
    )

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
