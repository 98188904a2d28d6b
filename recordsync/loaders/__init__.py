"""Target connectors."""

from .base import BaseLoader, TargetConnector
from .api_loader import APILoader
from .memory_loader import MemoryLoader

__all__ = [
    "BaseLoader",
    "TargetConnector",
    "APILoader",
    "MemoryLoader",
]
