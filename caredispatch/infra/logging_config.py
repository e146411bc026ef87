# caredispatch/infra/logging_config.py
import logging
import sys
import json
from datetime import datetime, timezone

# Identifiers a record may carry via ``extra`` / LogContext, in display order.
# Reporter phone numbers and exact coordinates are never among them.
CONTEXT_FIELDS = ("request_id", "complaint_id", "dispatch_id", "volunteer_id", "category")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shipping in staging/prod"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        log_data.update({name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)})

        if hasattr(record, "audit_action"):
            log_data["audit_action"] = record.audit_action
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable format for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    # request ids are noise on a dev console
    SHOWN = {"complaint_id": "complaint", "dispatch_id": "dispatch", "volunteer_id": "volunteer"}

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")

        context = " ".join(
            f"{label}={getattr(record, field)}"
            for field, label in self.SHOWN.items()
            if hasattr(record, field)
        )
        line = (
            f"{color}[{timestamp}] {record.levelname:8}{self.RESET} "
            f"{record.name}{f' [{context}]' if context else ''} - {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Configure the root logger with a single stdout handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: JSONFormatter when True (staging/prod), ConsoleFormatter otherwise
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())
    root_logger.addHandler(handler)

    # Audit events are kept even when the app log is turned down
    logging.getLogger("audit").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """Attach dispatch identifiers to every record logged through it"""

    def __init__(
            self,
            logger: logging.Logger,
            request_id: str | None = None,
            complaint_id: str | None = None,
            dispatch_id: str | None = None,
            volunteer_id: str | None = None,
    ):
        self.logger = logger
        self.context = {
            k: v for k, v in {
                "request_id": request_id,
                "complaint_id": complaint_id,
                "dispatch_id": dispatch_id,
                "volunteer_id": volunteer_id,
            }.items() if v is not None
        }

    def bind(self, **context) -> "LogContext":
        """Return a new LogContext with extra identifiers merged in"""
        merged = {**self.context, **{k: v for k, v in context.items() if v is not None}}
        return LogContext(self.logger, **merged)

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = {**kwargs.pop("extra", {}), **self.context}
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)


def mask_coordinates(lat: float, lon: float) -> str:
    """
    Coarsen a complaint location for log lines.

    Example: ``mask_coordinates(12.9716, 77.5946)`` → ``"13.0**, 77.6**"``

    One decimal (roughly 10 km) is enough to debug matching without writing
    where the reporter is.
    """
    return f"{lat:.1f}**, {lon:.1f}**"


def mask_phone(phone: str) -> str:
    """Mask a reporter phone number: ``+919876543210`` → ``+919****10``"""
    if len(phone) > 6:
        return phone[:4] + "****" + phone[-2:]
    return "***"
