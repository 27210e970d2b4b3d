import random

from pydantic import Field, model_validator

from idemcore.domains.idempotency import AbortKind
from idemcore.infra.utils.retry import backoff_delay
from idemcore.schemas.base import BaseSchema


class Backoff(BaseSchema):
    """
    Retry budget and delay schedule for one family of aborts.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        initial_delay: Delay before the first retry, in seconds.
        backoff_multiplier: Growth factor of the delay per retry.
        max_delay: Cap on the computed delay, jitter excluded.
        jitter: Upper bound of the uniform random delay added to every retry.
    """

    max_retries: int = Field(default=20, ge=0)
    initial_delay: float = Field(default=0.5, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=3.0, ge=0)
    jitter: float = Field(default=0.1, ge=0)

    @model_validator(mode="after")
    def _check_delays(self) -> "Backoff":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must not be smaller than initial_delay")
        return self

    def compute_delay(
        self, retry_index: int, rng: random.Random | None = None
    ) -> float:
        """Delay before retry number `retry_index + 1` (0-based index)."""
        return backoff_delay(
            retry_index,
            initial_delay=self.initial_delay,
            multiplier=self.backoff_multiplier,
            max_delay=self.max_delay,
            jitter=self.jitter,
            rng=rng,
        )


def _default_unavailable_backoff() -> Backoff:
    return Backoff(
        max_retries=5,
        initial_delay=1.0,
        backoff_multiplier=2.0,
        max_delay=10.0,
        jitter=0.5,
    )


class RetryPolicy(Backoff):
    """
    How the conflict-retry controller reacts to aborted transactions.

    The inherited schedule applies to serialization failures and to any other
    retryable kind. An unreachable store is retried on its own schedule,
    `unavailable`, with its own budget: outages last longer than conflicts.

    Attributes:
        retryable_failures: Abort kinds that are retried.
        resolve_duplicates: On a constraint violation, look the key up again
            and return the stored response if there is one.
        unavailable: Schedule for `STORE_UNAVAILABLE` aborts.
    """

    retryable_failures: frozenset[AbortKind] = Field(
        default=frozenset(
            {AbortKind.SERIALIZATION_FAILURE, AbortKind.STORE_UNAVAILABLE}
        )
    )
    resolve_duplicates: bool = Field(default=True)
    unavailable: Backoff = Field(default_factory=_default_unavailable_backoff)

    def is_retryable(self, kind: AbortKind) -> bool:
        return kind in self.retryable_failures

    def backoff_for(self, kind: AbortKind) -> Backoff:
        if kind is AbortKind.STORE_UNAVAILABLE:
            return self.unavailable
        return self
