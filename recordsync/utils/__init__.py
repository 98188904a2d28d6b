"""Shared helpers."""

from .http import APIClient, raise_for_status
from .logging import SUCCESS, JsonLinesHandler, log_success, setup_logging

__all__ = [
    "APIClient",
    "raise_for_status",
    "SUCCESS",
    "JsonLinesHandler",
    "log_success",
    "setup_logging",
]
