import contextvars
import logging
import sys

from pythonjsonlogger import jsonlogger

# Context variables for correlation
ctx_category = contextvars.ContextVar("category", default=None)
ctx_request_id = contextvars.ContextVar("request_id", default=None)


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        category = ctx_category.get()
        if category:
            log_record["category"] = category

        request_id = ctx_request_id.get()
        if request_id is not None:
            log_record["request_id"] = request_id


class CorrelationTextFilter(logging.Filter):
    """Prefix text records with ``[category][req N]`` when known."""

    def filter(self, record: logging.LogRecord) -> bool:
        parts = []
        category = ctx_category.get()
        if category:
            parts.append(f"[{category}]")
        request_id = ctx_request_id.get()
        if request_id is not None:
            parts.append(f"[req {request_id}]")
        record.correlation = "".join(parts) + " " if parts else ""
        return True


def setup_logger(log_format: str = "text", log_level: str = "INFO"):
    """Configure the root logger."""
    root_logger = logging.getLogger()

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if log_format.lower() == "json":
        formatter = CorrelationJsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
    else:
        handler.addFilter(CorrelationTextFilter())
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(correlation)s%(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(numeric_level)

    # Silence third-party noise (httpx logs request URLs, which embed the bot token)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.WARNING)

    return root_logger
