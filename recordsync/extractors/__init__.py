"""Source connectors and the page reader."""

from .base import BaseExtractor, Page, RawPage, SourceConnector
from .api_extractor import APIExtractor
from .file_extractor import FileExtractor
from .memory_extractor import MemoryExtractor
from .reader import SourceReader

__all__ = [
    "BaseExtractor",
    "SourceConnector",
    "Page",
    "RawPage",
    "APIExtractor",
    "FileExtractor",
    "MemoryExtractor",
    "SourceReader",
]
