"""
Colloquy Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Config:
    """Agent configuration loaded from environment variables."""

    # LLM Provider Configuration
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
    LLM_MODEL_SMALL: str = os.getenv("LLM_MODEL_SMALL", "gpt-5-nano")
    LLM_MODEL_LARGE: str = os.getenv("LLM_MODEL_LARGE", "gpt-5-mini")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "nomic-embed-text")

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    NEWS_API_KEY: str | None = os.getenv("NEWS_API_KEY")

    # Local LLM Configuration (Ollama). Embeddings are always served from here.
    # Example: http://localhost:11434
    LOCAL_LLM_BASE_URL: str | None = os.getenv("LOCAL_LLM_BASE_URL")

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "postgresql://localhost/colloquy")
    STORE_INIT_ATTEMPTS: int = int(os.getenv("STORE_INIT_ATTEMPTS", "5"))

    # Pipeline Configuration
    CONVERSATION_LENGTH: int = int(os.getenv("CONVERSATION_LENGTH", "32"))
    KNOWLEDGE_MATCH_THRESHOLD: float = float(os.getenv("KNOWLEDGE_MATCH_THRESHOLD", "0.5"))
    KNOWLEDGE_MATCH_COUNT: int = int(os.getenv("KNOWLEDGE_MATCH_COUNT", "10"))
    MODEL_TIMEOUT_SECONDS: float = float(os.getenv("MODEL_TIMEOUT_SECONDS", "120"))
    OUTBOUND_QUEUE_SIZE: int = int(os.getenv("OUTBOUND_QUEUE_SIZE", "64"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.LLM_PROVIDER == "ollama" and not cls.LOCAL_LLM_BASE_URL:
            raise ValueError(
                "LOCAL_LLM_BASE_URL is required when using the 'ollama' provider. "
                "Set it to your local server endpoint (e.g., http://localhost:11434)"
            )

        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For local LLMs, set LLM_PROVIDER=ollama and LOCAL_LLM_BASE_URL instead."
            )

        if cls.STORE_INIT_ATTEMPTS < 1:
            raise ValueError("STORE_INIT_ATTEMPTS must be >= 1")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Colloquy Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  Models: small={cls.LLM_MODEL_SMALL} large={cls.LLM_MODEL_LARGE}",
            f"  Embedding Model: {cls.EMBEDDING_MODEL}",
            f"  Database: {cls.DATABASE_URL}",
            f"  Conversation Length: {cls.CONVERSATION_LENGTH}",
            f"  Knowledge: threshold={cls.KNOWLEDGE_MATCH_THRESHOLD} count={cls.KNOWLEDGE_MATCH_COUNT}",
            f"  Model Timeout: {int(cls.MODEL_TIMEOUT_SECONDS)}s",
        ]
        return "\n".join(lines)
