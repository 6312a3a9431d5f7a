"""Logging configuration."""

import logging
import os
import sys

from pydantic import BaseModel

# Chatty client libraries only log warnings and above
QUIET_LOGGERS = (
    "anthropic",
    "httpx",
    "httpcore",
    "uvicorn.access",
    "langchain_core",
    "langchain_anthropic",
)


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    @classmethod
    def from_env(cls) -> "LogConfig":
        return cls(level=os.getenv("LOG_LEVEL", "INFO"))


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root logger for the service."""
    config = config or LogConfig.from_env()

    logging.basicConfig(
        level=config.level.upper(),
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)
        level: Explicit level, overriding LOG_LEVEL
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    return logger
