"""Configuration and logging setup for the Kapacitor client."""

import json
import logging
import os
import pathlib

import pydantic
import structlog

from . import restapi
from .metrics import RequestMetrics

CONFIG_ENV_VAR = "KAPACITOR_CLIENT_CONFIG_PATH"
logger = structlog.get_logger(__name__)


class ClientConfig(pydantic.BaseModel):
    """Configuration for a Kapacitor REST API client."""

    url: str = pydantic.Field(
        restapi.DEFAULT_URL,
        description="Scheme and host of the Kapacitor server",
        min_length=1,
    )
    api_version: str = pydantic.Field(
        restapi.DEFAULT_API_VERSION,
        description="Kapacitor REST API version",
        min_length=1,
    )
    timeout: float = pydantic.Field(
        restapi.DEFAULT_TIMEOUT,
        description="Request timeout in seconds",
        gt=0,
    )
    log_level: str = pydantic.Field("INFO", description="Logging level")
    enable_metrics: bool = pydantic.Field(
        False,
        description="Record Prometheus request metrics",
    )


def configure_logging(log_level_name: str) -> None:
    """Configure structlog for logfmt output."""
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            structlog.processors.LogfmtRenderer(
                key_order=("timestamp", "level", "msg"),
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(config_path: str) -> ClientConfig:
    """Load configuration from JSON file."""
    path = pathlib.Path(config_path)
    if not path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with path.open("r") as f:
        data = json.load(f)

    return ClientConfig(**data)


def create_client_from_config(config: ClientConfig) -> restapi.KapacitorRestApiClient:
    """Construct a REST client from validated config."""
    metrics = RequestMetrics() if config.enable_metrics else None
    client = restapi.KapacitorRestApiClient(
        base_url=config.url,
        api_version=config.api_version,
        timeout=config.timeout,
        metrics=metrics,
    )
    logger.info("Created REST client", api_url=client.api_url, metrics=metrics is not None)
    return client


def create_client(config_path: str | None = None) -> restapi.KapacitorRestApiClient:
    """Create a client using a config path, the environment, or defaults.

    The path comes from ``config_path`` or the ``KAPACITOR_CLIENT_CONFIG_PATH``
    environment variable; with neither set the default configuration is used.
    """
    resolved_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    config = load_config(resolved_path) if resolved_path else ClientConfig()
    configure_logging(config.log_level)
    return create_client_from_config(config)
