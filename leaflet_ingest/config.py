"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

DATA_DIR = Path(os.getenv("DATA_DIR", Path.cwd() / "data"))

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0.0.0 Safari/537.36"
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration."""

    # Fetching
    TIMEOUT_MS: int = int(os.getenv("TIMEOUT_MS", "30000"))
    USER_AGENT: str = os.getenv("USER_AGENT", DEFAULT_USER_AGENT)
    WAIT_STRATEGY: str = os.getenv("WAIT_STRATEGY", "dom-ready")
    HEADLESS: bool = _env_bool("HEADLESS", "true")
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))

    # Pipeline
    URL_CONCURRENCY: int = int(os.getenv("URL_CONCURRENCY", "5"))

    # Supabase
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE: str | None = os.getenv("SUPABASE_SERVICE_ROLE")
    SUPABASE_TABLE: str = os.getenv("SUPABASE_TABLE", "leaflets")

    # Local storage
    LOCAL_DB: Path = Path(os.getenv("LOCAL_DB", DATA_DIR / "leaflets.db"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")

    @classmethod
    def validate(cls, require_supabase: bool = True) -> None:
        """Validate required configuration."""
        errors = []
        if require_supabase:
            if not cls.SUPABASE_URL:
                errors.append("SUPABASE_URL is required")
            if not cls.SUPABASE_SERVICE_ROLE:
                errors.append("SUPABASE_SERVICE_ROLE is required")
        if cls.TIMEOUT_MS <= 0:
            errors.append("TIMEOUT_MS must be positive")
        if cls.URL_CONCURRENCY <= 0:
            errors.append("URL_CONCURRENCY must be positive")
        if cls.WAIT_STRATEGY not in ("dom-ready", "network-idle"):
            errors.append("WAIT_STRATEGY must be 'dom-ready' or 'network-idle'")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()
