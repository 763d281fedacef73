"""Decorator utilities for cross-cutting concerns."""
import time
import logging
import functools
from typing import Any, Callable, Optional, TypeVar, cast

from kudos_deploy.errors import DeploymentError

# Setup logging
logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])


def log_execution_time(func: F) -> F:
    """Log how long an adapter call took, tagged with its qualified name."""
    name = func.__qualname__

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.monotonic()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.warning(f"⏱️ {name} failed after {time.monotonic() - start_time:.2f}s: {e}")
            raise
        logger.info(f"⏱️ {name} took {time.monotonic() - start_time:.2f}s")
        return result
    return cast(F, wrapper)


def log_operation(description: str):
    """Decorator for timing and logging a named deployment operation."""
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger.info(f"Starting: {description}")
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                duration = time.time() - start_time
                logger.info(f"Completed: {description} in {duration:.2f}s")
                return result
            except Exception as e:
                duration = time.time() - start_time
                logger.error(f"Failed: {description} after {duration:.2f}s - {str(e)}")
                raise
        return cast(F, wrapper)
    return decorator


def retry(max_attempts: int = 3, delay: float = 1.0, backoff: str = "linear",
          before_retry: Optional[Callable[[int, Exception], None]] = None,
          sleep: Callable[[float], None] = time.sleep,
          logger_name: Optional[str] = None):
    """Decorator for retrying transient deployment failures.

    Only ``DeploymentError`` instances flagged ``transient`` are retried;
    permanent errors and every other exception propagate on the first attempt.

    Args:
        max_attempts: Maximum number of attempts, including the first
        delay: Base delay between attempts in seconds
        backoff: "linear" waits delay * attempt, "exponential" doubles each time
        before_retry: Optional hook called with (attempt, error) before sleeping
        sleep: Sleep function, replaceable in tests
        logger_name: Optional logger name (defaults to module logger)

    Returns:
        Decorator function. The wrapped function exposes the attempt count of
        its last call as ``wrapper.last_attempts``.
    """
    retry_logger = logging.getLogger(logger_name) if logger_name else logger

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 1
            while True:
                wrapper.last_attempts = attempt
                try:
                    return func(*args, **kwargs)
                except DeploymentError as e:
                    if not e.transient:
                        raise
                    if attempt >= max_attempts:
                        retry_logger.error(f"All {max_attempts} attempts failed for {func.__name__}: {str(e)}")
                        raise

                    if backoff == "exponential":
                        current_delay = delay * (2 ** (attempt - 1))
                    else:
                        current_delay = delay * attempt

                    retry_logger.warning(
                        f"Attempt {attempt}/{max_attempts} for {func.__name__} failed: {str(e)}. "
                        f"Retrying in {current_delay:.2f}s"
                    )
                    if before_retry is not None:
                        before_retry(attempt, e)
                    sleep(current_delay)
                    attempt += 1

        wrapper.last_attempts = 0
        return cast(F, wrapper)

    return decorator
