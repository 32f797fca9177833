"""Retry and polling helpers for external commands and health endpoints."""
import functools
import time
from typing import Callable, Optional, Tuple, Type

from hearth.core.logger import get_logger

logger = get_logger(__name__)


def retry(
    max_attempts: int = 3,
    delay: float = 2.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
):
    """Retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts
        delay: Initial delay in seconds between retries
        backoff: Backoff multiplier for each retry
        exceptions: Tuple of exception types to catch and retry

    Example:
        @retry(max_attempts=3, delay=1, exceptions=(requests.RequestException,))
        def server_state(self):
            ...
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: {e}"
                        )
                        raise

                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {e}"
                    )
                    logger.info(f"Retrying in {current_delay:.1f}s...")
                    time.sleep(current_delay)
                    current_delay *= backoff

            return None

        return wrapper

    return decorator


def poll_until(
    predicate: Callable[[], bool],
    attempts: int = 30,
    delay: float = 2.0,
    backoff: float = 1.0,
    max_delay: Optional[float] = None,
    description: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll ``predicate`` until it returns True or attempts run out.

    Args:
        predicate: Zero-argument callable; exceptions count as a failed attempt
        attempts: Maximum number of checks before giving up
        delay: Initial wait between checks in seconds
        backoff: Multiplier applied to the wait after each failed check
        max_delay: Upper bound for the wait between checks
        description: Human readable name used in log lines
        sleep: Sleep function (injectable for tests)

    Returns:
        True if the predicate succeeded within the attempt budget
    """
    current_delay = delay

    for attempt in range(1, attempts + 1):
        try:
            if predicate():
                logger.debug(f"{description} satisfied on attempt {attempt}")
                return True
        except Exception as e:
            logger.debug(f"{description} check raised: {e}")

        if attempt == attempts:
            break

        logger.info(f"Waiting for {description}... (attempt {attempt}/{attempts})")
        sleep(current_delay)
        current_delay *= backoff
        if max_delay is not None:
            current_delay = min(current_delay, max_delay)

    logger.warning(f"Gave up waiting for {description} after {attempts} attempts")
    return False
