import logging
import time
from typing import Callable, Tuple, Type


def with_retries(
    operation_to_retry: Callable,
    log: logging.Logger,
    max_attempts: int = 5,
    delay: float = 2,
    fatal: Tuple[Type[BaseException], ...] = (),
):
    """
    Retry an operation with exponential backoff on transient errors.

    :param operation_to_retry: The function/operation to retry.
    :param log: The logger used to report attempts and failures.
    :param max_attempts: Maximum number of attempts, including the first one.
    :param delay: Initial delay between retries (exponentially increased).
    :param fatal: Exception types that are not transient.
        These propagate immediately without further attempts.
    :return: The operation result.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            log.debug("Attempt: %s", attempt)
            return operation_to_retry()
        except fatal:
            raise
        except Exception as e:  # pylint: disable=broad-except
            if attempt == max_attempts:
                log.error("Giving up after %s attempts: %s", attempt, e)
                raise  # re-raise on final failure
            log.warning("Attempt %s/%s failed: %s", attempt, max_attempts, e)
            time.sleep(delay * 2 ** (attempt - 1))
