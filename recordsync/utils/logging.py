"""Logging setup: console output plus a JSON-lines trail per level and day."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# File name suffix for each level; DEBUG is never written to the trail.
LEVEL_FILES = {
    SUCCESS: "success",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def log_success(logger: logging.Logger, message: str, **context: Any) -> None:
    """Log at the SUCCESS level with optional structured context."""
    logger.log(SUCCESS, message, extra={"context": context} if context else None)


class JsonLinesHandler(logging.Handler):
    """
    Append one JSON object per record to ``<dir>/<level>/<date>-<level>.log``.

    Structured context passed as ``extra={"context": {...}}`` is merged into
    the object; exception info is stored under ``error``.
    """

    def __init__(self, log_dir: Union[str, Path], clock=datetime.utcnow):
        super().__init__(level=logging.INFO)
        self.log_dir = Path(log_dir)
        self._clock = clock
        for name in set(LEVEL_FILES.values()):
            (self.log_dir / name).mkdir(parents=True, exist_ok=True)

    def path_for(self, levelno: int) -> Optional[Path]:
        """Log file for a level on the current day."""
        name = LEVEL_FILES.get(levelno)
        if name is None:
            return None
        date = self._clock().strftime("%Y-%m-%d")
        return self.log_dir / name / f"{date}-{name}.log"

    def format_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcfromtimestamp(record.created).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if isinstance(context, dict):
            entry.update(context)
        if record.exc_info and record.exc_info[1] is not None:
            entry["error"] = {
                "message": str(record.exc_info[1]),
                "stack": logging.Formatter().formatException(record.exc_info),
            }
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        path = self.path_for(record.levelno)
        if path is None:
            return
        try:
            line = json.dumps(self.format_entry(record), default=str)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except Exception:
            self.handleError(record)


def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    Configure the ``recordsync`` logger.

    Args:
        level: Console log level
        log_dir: Directory for the JSON-lines trail (None disables it)

    Returns:
        The configured package logger
    """
    root = logging.getLogger("recordsync")
    root.setLevel(min(level, logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if log_dir:
        root.addHandler(JsonLinesHandler(log_dir))

    return root
