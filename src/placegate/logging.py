import logging
from contextvars import ContextVar

from pythonjsonlogger import jsonlogger

# set per request by RequestIdMiddleware
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


class RequestIdFilter(logging.Filter):
    """Stamp every record with the id of the request being served, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()
        return True


def setup_logging(level: str) -> None:
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove default handlers to avoid duplicate logs
    while logger.handlers:
        logger.handlers.pop()

    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def key_prefix(key: str | None, length: int = 8) -> str | None:
    # never log a full credential
    if not key:
        return None
    return key[:length]
