"""
Structured event logging.

Components log named events ("spot.move", "poly.snapshot", "arb.discard", ...)
with a payload dict. Events travel through stdlib logging, so threshold
filtering is the logger level, and can additionally be appended to a JSONL
file for offline tuning.
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import orjson

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def parse_log_level(name: str) -> int:
    """Map debug/info/warn/error (any case) to a logging level."""
    try:
        return _LEVELS[name.strip().lower()]
    except (KeyError, AttributeError):
        raise ValueError(f"Unknown log level: {name!r}")


def _dumps(data: object) -> bytes:
    return orjson.dumps(data, default=str, option=orjson.OPT_NON_STR_KEYS)


class EventLogger:
    """
    Four-level structured event sink over a stdlib logger.

    Each call carries an event type plus payload; the record gets `event` and
    `payload` attributes so handlers (and tests) can read them back.
    Never raises.
    """

    def __init__(self, logger: Union[logging.Logger, str]):
        if isinstance(logger, str):
            logger = logging.getLogger(logger)
        self._logger = logger

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def debug(self, event: str, payload: Optional[dict] = None, **fields) -> None:
        self._log(logging.DEBUG, event, payload, fields)

    def info(self, event: str, payload: Optional[dict] = None, **fields) -> None:
        self._log(logging.INFO, event, payload, fields)

    def warn(self, event: str, payload: Optional[dict] = None, **fields) -> None:
        self._log(logging.WARNING, event, payload, fields)

    def error(self, event: str, payload: Optional[dict] = None, **fields) -> None:
        self._log(logging.ERROR, event, payload, fields)

    def _log(self, level: int, event: str, payload: Optional[dict], fields: dict) -> None:
        try:
            if not self._logger.isEnabledFor(level):
                return

            data = dict(payload) if payload else {}
            data.update(fields)

            try:
                body = _dumps(data).decode()
            except TypeError:
                body = str(data)

            self._logger.log(
                level,
                f"{event} {body}",
                extra={"event": event, "payload": data},
            )
        except Exception:
            # Never propagate into feed callbacks
            pass


class JsonlEventHandler(logging.Handler):
    """
    Append-only JSONL sink.

    One line per record: {"timestamp", "type", "level", "payload"}.
    Records without an event type are written with the logger name as type.
    """

    def __init__(self, path: Union[str, Path], level: int = logging.NOTSET):
        super().__init__(level)
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._path, "ab")
        self._file_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, record: logging.LogRecord) -> None:
        try:
            payload = getattr(record, "payload", None)
            if payload is None:
                payload = {"message": record.getMessage()}

            line = {
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "type": getattr(record, "event", record.name),
                "level": _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
                "payload": payload,
            }

            with self._file_lock:
                if self._file is None:
                    return
                self._file.write(_dumps(line) + b"\n")
                self._file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        with self._file_lock:
            if self._file is not None:
                self._file.close()
                self._file = None
        super().close()


def setup_logging(
    level: str = "info",
    log_to_file: bool = False,
    log_dir: Union[str, Path] = "logs",
    format_str: Optional[str] = None,
) -> logging.Logger:
    """
    Set up console logging and the optional JSONL event file.

    Args:
        level: Log level (debug, info, warn, error)
        log_to_file: Append events to {log_dir}/events.jsonl
        log_dir: Directory for the events file
        format_str: Optional custom console format string

    Returns:
        The package logger
    """
    numeric_level = parse_log_level(level)

    logging.basicConfig(
        level=numeric_level,
        format=format_str or LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    pkg_logger = logging.getLogger("latencyarb")
    pkg_logger.setLevel(numeric_level)

    if log_to_file:
        events_path = Path(log_dir) / "events.jsonl"
        if not any(
            isinstance(h, JsonlEventHandler) and h.path == events_path
            for h in pkg_logger.handlers
        ):
            pkg_logger.addHandler(JsonlEventHandler(events_path))

    return pkg_logger
