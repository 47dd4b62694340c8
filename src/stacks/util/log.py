import functools
import logging
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager


@contextmanager
def elapsed_time_logging(
    *,
    log_method: Callable[[str], None],
    message_prefix: str | None = None,
    skip_start: bool = False,
) -> Generator[None]:
    """Log when a block starts and how long it took, including when it
    raised.

    :param log_method: e.g. `log.info`.
    :param message_prefix: Put in front of every message, e.g. "Overdue sweep".
    :param skip_start: Only log the completion message.
    """
    prefix = f"{message_prefix}: " if message_prefix else ""
    if not skip_start:
        log_method(f"{prefix}Starting...")
    started = time.perf_counter()
    outcome = "Completed"
    try:
        yield
    except Exception as e:
        outcome = f"Failed (raised {type(e).__name__})"
        raise
    finally:
        elapsed = time.perf_counter() - started
        log_method(f"{prefix}{outcome}. (elapsed time: {elapsed:0.4f} seconds)")


class LoggerMixin:
    """Gives a class a logger named `<module>.<class name>`."""

    @classmethod
    @functools.cache
    def logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @property
    def log(self) -> logging.Logger:
        return self.logger()


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    """`pluralize(2, "loan")` is "2 loans"."""
    return f"{count} {singular if count == 1 else (plural or singular + 's')}"
