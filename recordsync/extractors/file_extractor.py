"""CSV/JSON/JSONL file-based source connector."""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base import BaseExtractor, RawPage
from ..exceptions import FetchError
from ..models.migration import PaginationStyle, SourceConfig

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".csv", ".json", ".jsonl")


class FileExtractor(BaseExtractor):
    """
    Source connector for file exports.

    Supports:
    - CSV with delimiter sniffing and a latin-1 fallback
    - JSON arrays, or objects wrapping the array under a common key
    - JSON Lines

    The file is read once and then served in pages, either by offset or
    by a token holding the next offset.
    """

    WRAPPER_KEYS = ("data", "records", "items", "results", "result", "value")

    def __init__(
        self,
        source: SourceConfig,
        encoding: str = "utf-8",
        delimiter: str = ","
    ):
        """
        Initialize the file extractor.

        Args:
            source: Source configuration (``file_path`` required)
            encoding: File encoding
            delimiter: CSV delimiter if sniffing fails
        """
        super().__init__(source)
        self.encoding = encoding
        self.delimiter = delimiter
        self._items: Optional[List[Dict[str, Any]]] = None

    async def fetch_page(self, params: Dict[str, Any]) -> RawPage:
        items = self._load()
        limit = int(params.get(self.source.limit_param) or self.source.page_size)

        if self.source.pagination == PaginationStyle.OFFSET:
            offset = int(params.get(self.source.offset_param) or 0)
        else:
            offset = int(params.get(self.source.token_param) or 0)

        page = items[offset:offset + limit]
        next_offset = offset + len(page)
        next_token = str(next_offset) if next_offset < len(items) else None
        return RawPage(items=page, next_token=next_token)

    def _load(self) -> List[Dict[str, Any]]:
        if self._items is not None:
            return self._items

        if not self.source.file_path:
            raise FetchError("File source requires file_path")

        path = Path(self.source.file_path)
        logger.info(f"Processing file: {path}")
        try:
            suffix = path.suffix.lower()
            if suffix == ".jsonl":
                items = self._read_jsonl(path)
            elif suffix == ".json":
                items = self._read_json(path)
            else:
                items = self._read_csv(path)
        except (OSError, json.JSONDecodeError, csv.Error) as e:
            raise FetchError(f"Failed to read {path}: {e}", details={"file": str(path)}) from e

        logger.info(f"Loaded {len(items)} records from {path}")
        self._items = items
        return items

    def _read_csv(self, path: Path) -> List[Dict[str, Any]]:
        try:
            return self._read_csv_with_encoding(path, self.encoding)
        except UnicodeDecodeError:
            logger.warning(f"{self.encoding} decode failed, trying latin-1 for {path}")
            return self._read_csv_with_encoding(path, "latin-1")

    def _read_csv_with_encoding(self, path: Path, encoding: str) -> List[Dict[str, Any]]:
        rows = []
        with open(path, "r", encoding=encoding, newline="") as f:
            sample = f.read(8192)
            f.seek(0)

            try:
                delimiter = csv.Sniffer().sniff(sample).delimiter
            except csv.Error:
                delimiter = self.delimiter

            for row in csv.DictReader(f, delimiter=delimiter):
                data = {}
                for column, value in row.items():
                    if column is None:
                        continue
                    if value is not None:
                        value = value.strip() or None
                    data[column] = value

                # Skip empty rows
                if all(v is None for v in data.values()):
                    continue
                rows.append(data)
        return rows

    def _read_json(self, path: Path) -> List[Dict[str, Any]]:
        with open(path, "r", encoding=self.encoding) as f:
            data = json.load(f)

        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in self.WRAPPER_KEYS:
                if isinstance(data.get(key), list):
                    return data[key]
            return [data]
        raise FetchError(f"Unexpected JSON structure in {path}")

    def _read_jsonl(self, path: Path) -> List[Dict[str, Any]]:
        items = []
        with open(path, "r", encoding=self.encoding) as f:
            for line in f:
                line = line.strip()
                if line:
                    items.append(json.loads(line))
        return items

    def validate_source(self) -> List[str]:
        """Validate the file source configuration."""
        errors = super().validate_source()

        if not self.source.file_path:
            errors.append("file_path is required")
        else:
            path = Path(self.source.file_path)
            if not path.exists():
                errors.append(f"File not found: {self.source.file_path}")
            elif path.suffix.lower() not in SUPPORTED_SUFFIXES:
                errors.append(f"Unsupported file format: {path.suffix}")

        return errors
