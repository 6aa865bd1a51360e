import logging
import os
from pydantic import BaseModel
from typing import Optional, Any

from sceneboard.config.config import config
from sceneboard.errors import ConfigurationError
from sceneboard.utils.logging_setup import configure_logging


class ToolResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    content: Optional[Any] = None
    output_url: Optional[str] = None

    class Config:
        extra = "allow"


def setup_logger(name: str) -> logging.Logger:
    configure_logging(
        log_file=config.get("log_file", "logs/sceneboard.log"),
        level=config.get("log_level", "INFO"),
        enable_console=bool(config.get("log_console", False)),
    )
    return logging.getLogger(name)


def get_replicate_api_token() -> str:
    """API tokens must come from environment variables (.env)."""
    token = os.getenv("REPLICATE_API_TOKEN") or ""
    if not token:
        raise ConfigurationError("Replicate API token is not configured")
    return token


def replicate_settings() -> dict:
    return config.get("gen_tools", {}).get("replicate", {})
