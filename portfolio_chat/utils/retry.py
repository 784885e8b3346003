"""Bounded retry with exponential backoff for external calls."""

from collections.abc import Callable
from typing import TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from portfolio_chat.logger import logger

T = TypeVar("T")


def call_with_retries(
    fn: Callable[[], T],
    *,
    label: str,
    retries: int,
    backoff: float,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """
    Run `fn`, retrying up to `retries` extra times with exponential backoff.

    The last exception is re-raised once attempts are exhausted.
    """
    retrying = Retrying(
        retry=retry_if_exception_type(retry_on),
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=backoff, max=8),
        before_sleep=lambda state: logger.warning(
            f"{label} - retry {state.attempt_number}/{retries} after error: {state.outcome.exception()}"
        ),
        reraise=True,
    )
    return retrying(fn)
