import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from jarvis_voice.config.paths import log_dir
from jarvis_voice.core.config import get_config
from jarvis_voice.core.trace import get_cycle_id


class JsonFormatter(logging.Formatter):
    """Serialize records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "category": record.name,
            "message": record.getMessage(),
            "cycle_id": get_cycle_id(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


class SizeAndTimeRotatingFileHandler(TimedRotatingFileHandler):
    """Rotate on whichever comes first: size limit or midnight."""

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int = 0,
        backup_count: int = 0,
        when: str = "midnight",
        interval: int = 1,
        encoding: str | None = "utf-8",
        delay: bool = True,
        utc: bool = False,
    ) -> None:
        self.maxBytes = max_bytes
        super().__init__(
            str(filename),
            when=when,
            interval=interval,
            backupCount=backup_count,
            encoding=encoding,
            delay=delay,
            utc=utc,
        )

    def shouldRollover(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if self.maxBytes > 0:
            if self.stream is None:
                self.stream = self._open()
            msg = f"{self.format(record)}\n"
            enc = self.encoding or "utf-8"
            if (self.stream.tell() + len(msg.encode(enc))) >= self.maxBytes:
                return True
        return super().shouldRollover(record)


def _build_logger(name: str, file_path: Path | None = None) -> logging.Logger:
    logger = logging.getLogger(f"jarvis.{name}")
    if logger.handlers:
        return logger

    config = get_config()
    if file_path is None:
        file_path = log_dir() / f"{name}.jsonl"
    handler = SizeAndTimeRotatingFileHandler(
        file_path,
        max_bytes=config.log_rotate_mb * 1024 * 1024,
        backup_count=config.log_retention_days,
    )
    handler.setFormatter(JsonFormatter())
    logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    logger.addHandler(handler)
    return logger


_LOGGERS: dict[str, logging.Logger] = {}


def get_logger(name: str) -> logging.Logger:
    """Return the named logger, creating its JSON file handler on first use."""
    if name not in _LOGGERS:
        _LOGGERS[name] = _build_logger(name)
    return _LOGGERS[name]
