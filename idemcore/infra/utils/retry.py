import asyncio
import random
from functools import wraps


def backoff_delay(
    retry_index: int,
    *,
    initial_delay: float,
    multiplier: float,
    max_delay: float,
    jitter: float,
    rng: random.Random | None = None,
) -> float:
    """
    `min(max_delay, initial_delay * multiplier ** retry_index)` plus a uniform
    jitter drawn from `[0, jitter]`.
    """
    try:
        delay = initial_delay * multiplier**retry_index
    except OverflowError:
        delay = max_delay
    return min(max_delay, delay) + (rng or random).uniform(0, jitter)


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    max_delay: float = 30.0,
    jitter: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
):
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except retry_on:
                    if attempt >= max_attempts - 1:
                        raise
                    await asyncio.sleep(
                        backoff_delay(
                            attempt,
                            initial_delay=delay,
                            multiplier=backoff,
                            max_delay=max_delay,
                            jitter=jitter,
                        )
                    )

        return wrapper

    return decorator
