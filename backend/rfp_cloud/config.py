# config.py
# Immutable settings object, built once at startup from the environment.

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


class Settings(BaseModel):
    """
    Application settings. Frozen so components can hold a reference safely.

    Usage:
        settings = Settings.from_env()
        app = create_app(settings)
    """
    model_config = ConfigDict(frozen=True)

    # LLM
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 60.0

    # Inbound webhook shared secret
    inbound_token: Optional[str] = None

    # Record store
    data_dir: Path = Path(__file__).resolve().parent.parent / "data"

    # Object storage (DigitalOcean Spaces / any S3-compatible endpoint)
    spaces_region: Optional[str] = None
    spaces_bucket: Optional[str] = None
    spaces_endpoint: Optional[str] = None
    spaces_key: Optional[str] = None
    spaces_secret: Optional[str] = None
    spaces_cdn_url: Optional[str] = None
    public_objects: bool = True
    storage_timeout_seconds: float = 30.0

    # Outbound mail
    sendgrid_api_key: Optional[str] = None
    mail_from: str = "rfp@localhost"
    mail_from_name: str = "RFP Cloud"
    reply_domain: Optional[str] = None
    mail_timeout_seconds: float = 15.0

    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()

        values = {
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "openai_model": os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            "llm_timeout_seconds": _env_float("LLM_TIMEOUT_SECONDS", 60.0),
            "inbound_token": os.getenv("INBOUND_TOKEN") or os.getenv("SENDGRID_INBOUND_TOKEN"),
            "spaces_region": os.getenv("DO_SPACES_REGION"),
            "spaces_bucket": os.getenv("DO_SPACES_NAME"),
            "spaces_endpoint": os.getenv("DO_SPACES_ENDPOINT"),
            "spaces_key": os.getenv("DO_SPACES_KEY"),
            "spaces_secret": os.getenv("DO_SPACES_SECRET"),
            "spaces_cdn_url": os.getenv("DO_SPACES_CDN_URL") or None,
            "public_objects": _env_bool("DO_PUBLIC_OBJECTS", "true"),
            "storage_timeout_seconds": _env_float("STORAGE_TIMEOUT_SECONDS", 30.0),
            "sendgrid_api_key": os.getenv("SENDGRID_API_KEY"),
            "mail_from": os.getenv("SENDGRID_FROM_EMAIL", "rfp@localhost"),
            "mail_from_name": os.getenv("SENDGRID_FROM_NAME", "RFP Cloud"),
            "reply_domain": os.getenv("REPLY_DOMAIN"),
            "mail_timeout_seconds": _env_float("MAIL_TIMEOUT_SECONDS", 15.0),
            "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
        }
        if os.getenv("DATA_DIR"):
            values["data_dir"] = Path(os.environ["DATA_DIR"])
        cors = os.getenv("CORS_ORIGINS", "*")
        values["cors_origins"] = ["*"] if cors.strip() == "*" else [o.strip() for o in cors.split(",") if o.strip()]

        settings = cls(**values)
        if not settings.inbound_token:
            logger.warning("INBOUND_TOKEN is not set; the inbound webhook will reject every request.")
        if not (settings.spaces_key and settings.spaces_secret and settings.spaces_bucket and settings.spaces_region):
            logger.warning("DO Spaces settings are incomplete; attachment uploads will fail.")
        return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
