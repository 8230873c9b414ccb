import logging
import sys
from enum import IntEnum

import structlog
from structlog.typing import EventDict, FilteringBoundLogger, WrappedLogger

TRACE_KEY = "trace"


class LogLevel(IntEnum):
    ERROR = logging.ERROR
    WARNING = logging.WARNING
    INFO = logging.INFO
    DEBUG = logging.DEBUG
    # Per-request oracle output. Emitted as debug events tagged trace=True.
    TRACE = 5


def level_from_verbosity(verbose: int) -> LogLevel:
    """Map the number of -v flags to a log level."""
    if verbose <= 0:
        return LogLevel.INFO
    if verbose == 1:
        return LogLevel.DEBUG
    return LogLevel.TRACE


class StderrProxy:
    """File-like object that writes to whatever sys.stderr is at call time.

    rich swaps sys.stderr while a live progress display is running.
    """

    def write(self, data: str) -> int:
        return sys.stderr.write(data)

    def flush(self) -> None:
        sys.stderr.flush()


def filter_trace(enabled: bool):
    """Drop events tagged trace=True unless trace output is enabled."""
    def processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        if event_dict.pop(TRACE_KEY, False) and not enabled:
            raise structlog.DropEvent
        return event_dict
    return processor


def configure_logging(level: LogLevel = LogLevel.INFO, *, file=None) -> None:
    """Render key/value events to the console (stderr by default)."""
    structlog.configure(
        processors=[
            filter_trace(level <= LogLevel.TRACE),
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(max(int(level), logging.DEBUG)),
        logger_factory=structlog.PrintLoggerFactory(file=file or StderrProxy()),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, log: FilteringBoundLogger | None = None) -> FilteringBoundLogger:
    """Return the injected logger, or the process logger bound to the component name."""
    if log is not None:
        return log
    return structlog.get_logger(component=component)
