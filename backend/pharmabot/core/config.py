"""Application configuration with fail-fast defaults.

Environment variables override all defaults.
CRITICAL: the messaging credentials and the backend URL must be set in .env.
Missing values fail immediately in production and fall back to loud
placeholders in development.
"""

import os
import warnings
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from pharmabot.core.exceptions import ConfigurationError

_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


REQUIRED_VARIABLES: List[str] = [
    "WHATSAPP_TOKEN",
    "WHATSAPP_PHONE_NUMBER_ID",
    "WEBHOOK_VERIFY_TOKEN",
    "BACKEND_BASE_URL",
]

_TRUTHY = {"1", "true", "yes", "on"}


class Settings:
    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        env = os.environ if environ is None else environ

        # Environment
        self.ENVIRONMENT: str = env.get("ENVIRONMENT", "development")
        self.DEBUG: bool = self.ENVIRONMENT == "development"
        self.LOG_LEVEL: str = env.get("LOG_LEVEL", "DEBUG" if self.DEBUG else "INFO").upper()

        # WhatsApp Cloud API (must be set via .env, never in code)
        self.WHATSAPP_TOKEN: str = env.get("WHATSAPP_TOKEN", "")
        self.WHATSAPP_PHONE_NUMBER_ID: str = env.get("WHATSAPP_PHONE_NUMBER_ID", "")
        self.WEBHOOK_VERIFY_TOKEN: str = env.get("WEBHOOK_VERIFY_TOKEN", "")
        self.WHATSAPP_API_VERSION: str = env.get("WHATSAPP_API_VERSION", "v18.0")
        self.WHATSAPP_GRAPH_URL: str = env.get("WHATSAPP_GRAPH_URL", "https://graph.facebook.com").rstrip("/")

        # Commerce backend (DJANGO_BASE_URL kept for old deployments)
        self.BACKEND_BASE_URL: str = (
            env.get("BACKEND_BASE_URL") or env.get("DJANGO_BASE_URL") or ""
        ).rstrip("/")
        self.BACKEND_AUTH_TOKEN: Optional[str] = env.get("BACKEND_AUTH_TOKEN") or None

        # Remote call policy
        self.REQUEST_TIMEOUT_SECONDS: float = float(env.get("REQUEST_TIMEOUT_SECONDS", "15"))
        self.MAX_RETRIES: int = int(env.get("MAX_RETRIES", "3"))
        self.RETRY_BACKOFF_SECONDS: float = float(env.get("RETRY_BACKOFF_SECONDS", "1.0"))

        # Local storage
        self.FALLBACK_DATABASE_URL: str = env.get(
            "FALLBACK_DATABASE_URL", "sqlite:///./pharmabot_sessions.db"
        )
        self.MEDIA_ROOT: Path = Path(env.get("MEDIA_ROOT", "./media"))

        # One turn at a time per phone number (in-process only)
        self.SERIALIZE_PER_USER: bool = env.get("SERIALIZE_PER_USER", "true").lower() in _TRUTHY

        self._check_required()

    @property
    def whatsapp_messages_url(self) -> str:
        return f"{self.WHATSAPP_GRAPH_URL}/{self.WHATSAPP_API_VERSION}/{self.WHATSAPP_PHONE_NUMBER_ID}/messages"

    @property
    def whatsapp_media_url(self) -> str:
        return f"{self.WHATSAPP_GRAPH_URL}/{self.WHATSAPP_API_VERSION}"

    def _check_required(self) -> None:
        missing = [name for name in REQUIRED_VARIABLES if not getattr(self, name)]
        if not missing:
            return

        # In production, this fails immediately (no silent defaults)
        if self.ENVIRONMENT == "production":
            raise ConfigurationError(
                "⛔ CRITICAL: missing required environment variables: " + ", ".join(missing)
            )

        warnings.warn(
            "⚠️  Missing environment variables: " + ", ".join(missing) + ". "
            "Using development placeholders. SET THESE BEFORE PRODUCTION.",
            RuntimeWarning,
        )
        for name in missing:
            if name == "BACKEND_BASE_URL":
                self.BACKEND_BASE_URL = "http://localhost:8000"
            else:
                setattr(self, name, f"development-only-{name.lower()}")


settings = Settings()
