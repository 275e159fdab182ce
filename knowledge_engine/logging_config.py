"""Centralized logging configuration with Pydantic Logfire integration."""

import logging
from typing import Any

import logfire
import sentry_sdk

from knowledge_engine.config import get_settings


def setup_logfire() -> None:
    """
    Initialize and configure Pydantic Logfire for observability.

    Sets up:
    - Pydantic instrumentation (model validation logging)
    - httpx instrumentation (crawler and provider requests)
    - Environment-aware configuration
    - Structured JSON logging for production
    """
    settings = get_settings()

    logfire_config: dict[str, Any] = {
        "environment": settings.env,
    }

    # Add token if provided (for cloud logging)
    if settings.logfire_token:
        logfire_config["token"] = settings.logfire_token

    logfire.configure(**logfire_config)

    logfire.instrument_pydantic()
    logfire.instrument_httpx()

    # Instrument PydanticAI for embedding and chat calls
    logfire.instrument_pydantic_ai()

    log_level = settings.log_level.upper()

    if settings.env == "local":
        # Local: Console formatting for development
        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    else:
        # Production: Structured JSON logging
        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format="%(message)s",  # Logfire handles structured formatting
        )


def init_sentry() -> bool:
    """
    Initialize Sentry error tracking when a DSN is configured.

    Returns:
        True if Sentry was initialized, False otherwise
    """
    settings = get_settings()
    if not settings.sentry_dsn:
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.env,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )
    logfire.info("Sentry initialized", environment=settings.env)
    return True
