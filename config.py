import logging
import os
import sys
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from models import ModelCard

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_PORT = 8000
DEFAULT_UPSTREAM_URL = "https://api.gpt-oss.com/chatkit"
DEFAULT_MODEL = "gpt-oss-120b"
SUPPORTED_MODELS = ("gpt-oss-120b", "gpt-oss-20b")
MODEL_OWNER = "gpt-oss"


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    upstream_url: str = DEFAULT_UPSTREAM_URL
    upstream_timeout: float = 300.0
    upstream_connect_timeout: float = 10.0
    max_line_length: int = 1024 * 1024
    queue_size: int = 64
    log_level: str = "INFO"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring unparsable %s=%r, using %s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring unparsable %s=%r, using %s", name, raw, default)
        return default


def load_settings() -> Settings:
    """Read gateway settings from the environment."""
    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", DEFAULT_PORT),
        upstream_url=os.getenv("UPSTREAM_URL", DEFAULT_UPSTREAM_URL),
        upstream_timeout=_env_float("UPSTREAM_TIMEOUT", 300.0),
        upstream_connect_timeout=_env_float("UPSTREAM_CONNECT_TIMEOUT", 10.0),
        max_line_length=_env_int("MAX_LINE_LENGTH", 1024 * 1024),
        queue_size=_env_int("STREAM_QUEUE_SIZE", 64),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def build_model_registry(created: int | None = None) -> Mapping[str, ModelCard]:
    """Build the read-only table of advertised models."""
    created = int(time.time()) if created is None else created
    return MappingProxyType(
        {
            model_id: ModelCard(id=model_id, created=created, owned_by=MODEL_OWNER)
            for model_id in SUPPORTED_MODELS
        }
    )


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Send gateway logs to stdout with timestamps."""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root.addHandler(handler)
    return root
