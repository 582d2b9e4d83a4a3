import logging
from typing import Final

from opentelemetry import trace

from .config import ServiceSettings

_TRACE_PLACEHOLDER: Final = "-"
_LOG_FORMAT: Final = (
    "%(asctime)s | %(levelname)s | %(service)s | %(name)s | "
    "trace_id=%(trace_id)s span_id=%(span_id)s | %(message)s"
)
# Per-request chatter from the HTTP client and the SQLite driver.
_QUIET_LOGGERS: Final = ("httpx", "httpcore", "aiosqlite")


class TraceContextFilter(logging.Filter):
    """Tag records with the service name and the active trace/span ids."""

    def __init__(self, service: str = _TRACE_PLACEHOLDER) -> None:
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = _TRACE_PLACEHOLDER
            record.span_id = _TRACE_PLACEHOLDER
        return True


def configure_logging(settings: ServiceSettings) -> None:
    """Configure root logging level, format and trace context.

    Safe to call once per app factory; the filter is installed only once and
    is re-pointed at the latest service name.
    """

    logging.basicConfig(level=settings.log_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    context_filter = next(
        (f for f in root_logger.filters if isinstance(f, TraceContextFilter)),
        None,
    )
    if context_filter is None:
        context_filter = TraceContextFilter()
        root_logger.addFilter(context_filter)
    context_filter.service = settings.app_name
    for handler in root_logger.handlers:
        if context_filter not in handler.filters:
            handler.addFilter(context_filter)

    if settings.log_level != "DEBUG":
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
