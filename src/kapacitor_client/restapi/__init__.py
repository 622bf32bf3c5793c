"""Kapacitor REST API client package.

Provides a lightweight HTTP client for the Kapacitor REST API. Requests are
built and validated by the builder module before anything is sent, and
responses are returned as Pydantic-validated types.

Exports:
    KapacitorRestApiClient: HTTP client with validation and error handling.
    builder: Module turning operations into request descriptors.
    types: Module containing Pydantic models for API inputs and responses.
    KapacitorError and subclasses: The errors raised by the client.
    DEFAULT_API_VERSION: Default Kapacitor API version.
    DEFAULT_TIMEOUT: Default HTTP request timeout.
    DEFAULT_URL: Default Kapacitor server URL.
"""

from . import builder, types
from .client import (
    DEFAULT_API_VERSION,
    DEFAULT_PAGE_LIMIT,
    DEFAULT_TIMEOUT,
    DEFAULT_URL,
    KapacitorRestApiClient,
)
from .errors import (
    InvalidArgumentError,
    KapacitorError,
    ResponseDecodeError,
    TransportError,
    UnexpectedStatusError,
)

__all__ = [
    "DEFAULT_API_VERSION",
    "DEFAULT_PAGE_LIMIT",
    "DEFAULT_TIMEOUT",
    "DEFAULT_URL",
    "InvalidArgumentError",
    "KapacitorError",
    "KapacitorRestApiClient",
    "ResponseDecodeError",
    "TransportError",
    "UnexpectedStatusError",
    "builder",
    "types",
]
