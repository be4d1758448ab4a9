"""Retry helpers for transient browser and scoring-service failures."""

import time
import random
from functools import wraps
from typing import Any, Callable, Iterator, Protocol, Tuple, Type, TypeVar

from utils.logger import get_logger
import config

logger = get_logger()

F = TypeVar('F', bound=Callable[..., Any])


def backoff_delays(initial_delay: float, backoff_factor: float, jitter: float) -> Iterator[float]:
    """Endless exponential schedule, each delay perturbed by +/- ``jitter`` of itself."""
    delay = initial_delay
    while True:
        yield max(0.0, delay * (1 + jitter * random.uniform(-1, 1)))
        delay *= backoff_factor


def retry_on_exception(
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    jitter: float = 0.1
) -> Callable[[F], F]:
    """Decorator that re-runs a call which raised one of ``exceptions``.

    Used at the two boundaries that talk to something outside the process:
    attaching to Chrome over CDP and the HTTP scoring service. Any other
    exception propagates on the first attempt.

    Args:
        exceptions: Exception types worth another attempt.
        max_attempts: Total attempts, the first one included.
        initial_delay: Seconds before the second attempt.
        backoff_factor: Growth of the delay between attempts.
        jitter: Relative random perturbation applied to each delay.

    Returns:
        The decorator.
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            delays = backoff_delays(initial_delay, backoff_factor, jitter)
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(f"{func.__name__} gave up after {attempt} attempt(s): {type(e).__name__}: {e}",
                                     exc_info=config.DEBUG)
                        raise
                    wait_time = next(delays)
                    logger.warning(f"{func.__name__} raised {type(e).__name__} "
                                   f"(attempt {attempt}/{max_attempts}); next try in {wait_time:.2f}s")
                    time.sleep(wait_time)
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")

        return wrapper  # type: ignore
    return decorator


class Outcome(Protocol):
    success: bool

    @property
    def terminal(self) -> bool: ...


O = TypeVar('O', bound=Outcome)


def _uniform_jitter(base: float, spread: float) -> float:
    return max(0.0, base + random.uniform(-spread, spread))


def retry_outcome(
    func: Callable[[], O],
    retries: int,
    delay: float,
    spread: float = 0.15,
    sleep: Callable[[float], None] = time.sleep,
    jitter: Callable[[float, float], float] = _uniform_jitter,
) -> O:
    """Re-invokes ``func`` while it returns a non-terminal failure outcome.

    Unlike ``retry_on_exception`` this never raises on failure: the last
    outcome is handed back to the caller, which owns the failure policy.

    Args:
        func: Zero-argument callable returning an object with ``success`` and ``terminal``.
        retries: Additional attempts after the first one.
        delay: Base delay between attempts in seconds.
        spread: Jitter spread passed to ``jitter``.
        sleep: Suspension function; the page surface passes its own.
        jitter: Callable ``(base, spread) -> seconds``.

    Returns:
        The first successful or terminal outcome, or the last failure.
    """
    outcome = func()
    remaining = retries
    while not outcome.success and not outcome.terminal and remaining > 0:
        wait_time = jitter(delay, spread)
        logger.info(f"{getattr(func, '__name__', 'operation')} failed ({getattr(outcome, 'error', '')}); "
                    f"retrying in {wait_time:.2f}s, {remaining} attempt(s) left")
        sleep(wait_time)
        remaining -= 1
        outcome = func()
    return outcome
