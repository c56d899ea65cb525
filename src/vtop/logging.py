"""structlog setup for the VTOP client.

Console rendering by default, JSON lines when VtopConfig.log_json is set.
Passwords, CSRF values and cookie values are masked before any renderer
sees them, so event dicts can carry request context freely.
"""

import logging
import sys
from typing import Any

import structlog

from src.vtop.config import VtopConfig, get_config

# Event keys whose values must never reach a log sink.
SECRET_KEYS: frozenset[str] = frozenset({"password", "csrf_value", "cookies"})


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask credential-bearing values; cookie dicts keep only their names."""
    for key in SECRET_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, dict):
            event_dict[key] = sorted(value)
        elif value:
            event_dict[key] = "***"
    return event_dict


def build_processors(json_output: bool) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def setup_logging(config: VtopConfig | None = None) -> None:
    """Configure structlog from log_json / log_level.

    Args:
        config: Settings to read (defaults to get_config()).
    """
    config = config or get_config()
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=build_processors(config.log_json),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # httpx and tenacity log through stdlib logging
    root = logging.getLogger()
    root.handlers = [logging.StreamHandler(sys.stdout)]
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
