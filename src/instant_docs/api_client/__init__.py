"""
Example backend API client.

Provides:
- List documents with their per-layer tokens
- Fetch a fresh authentication token for a layer
- Uniform error taxonomy for transport and response failures
- Cancellable background fetches

Uses HTTP Basic authentication with a fixed user and password.
"""

from .client import (
    APIClient,
    APIClientError,
    APIConnectivityError,
    APIMalformedBodyError,
    APIMissingFieldError,
    APIStatusError,
    APITransportError,
    Document,
    FetchTask,
    Layer,
    Result,
)

__all__ = [
    "APIClient",
    "APIClientError",
    "APIConnectivityError",
    "APIMalformedBodyError",
    "APIMissingFieldError",
    "APIStatusError",
    "APITransportError",
    "Document",
    "FetchTask",
    "Layer",
    "Result",
]
