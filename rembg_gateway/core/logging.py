import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

# Request ID available throughout request lifecycle
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Level names accepted on top of the stdlib ones
LEVEL_ALIASES = {
    "TRACE": logging.DEBUG,
    "WARN": logging.WARNING,
    "FATAL": logging.CRITICAL,
    "PANIC": logging.CRITICAL,
}


def get_request_id() -> str:
    """Get current request ID from context."""
    return request_id_var.get()


def parse_level(name: str) -> int | None:
    """Resolve a level name, or None if it is not recognised."""
    name = (name or "").strip().upper()
    if name in LEVEL_ALIASES:
        return LEVEL_ALIASES[name]
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else None


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_entry["request_id"] = request_id

        # Add extra fields
        if hasattr(record, "extra"):
            log_entry.update(record.extra)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        request_id = request_id_var.get()
        rid_str = f"[{request_id[:8]}] " if request_id else ""

        fields = ""
        extra = getattr(record, "extra", None)
        if extra:
            fields = " " + " ".join(
                f"{key}={value!r}"
                for key, value in extra.items()
                if key != "request_id" and value is not None
            )

        line = (
            f"{color}{record.levelname:8}{self.RESET} "
            f"{rid_str}"
            f"{record.name}:{record.lineno} - {record.getMessage()}{fields}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "info", fmt: str = "text") -> logging.Logger:
    """Configure root logging for the gateway process."""
    resolved = parse_level(level)
    if resolved is None:
        print(f"unable to parse level {level}", file=sys.stderr)
        resolved = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)

    # Remove existing handlers
    root_logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(DevelopmentFormatter())
    root_logger.addHandler(handler)

    # Set levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return root_logger


class ContextLogger:
    """Logger that automatically includes request context."""

    def __init__(self, name: str = "rembg_gateway"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, extra: dict = None, exc_info=None):
        record_extra = extra or {}
        record_extra["request_id"] = request_id_var.get()

        self._logger.log(level, msg, extra={"extra": record_extra}, exc_info=exc_info)

    def debug(self, msg: str, **kwargs):
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs):
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs):
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, exc_info=None, **kwargs):
        self._log(logging.ERROR, msg, kwargs, exc_info=exc_info)

    def critical(self, msg: str, **kwargs):
        self._log(logging.CRITICAL, msg, kwargs)


# Plain logger for process-level messages
logger = logging.getLogger("rembg_gateway")

# Default context-aware logger
ctx_logger = ContextLogger()
