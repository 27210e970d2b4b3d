from pydantic import BaseModel, Field

from idemcore.domains.idempotency import AbortKind


class UnavailableRetrySettings(BaseModel):
    max_retries: int = Field(default=5, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=10.0, ge=0)
    jitter: float = Field(default=0.5, ge=0)


class RetrySettings(BaseModel):
    max_retries: int = Field(default=20, ge=0)
    initial_delay: float = Field(default=0.5, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=3.0, ge=0)
    jitter: float = Field(default=0.1, ge=0)
    retryable_failures: frozenset[AbortKind] = Field(
        default=frozenset(
            {AbortKind.SERIALIZATION_FAILURE, AbortKind.STORE_UNAVAILABLE}
        )
    )
    resolve_duplicates: bool = Field(default=True)
    unavailable: UnavailableRetrySettings = Field(
        default_factory=UnavailableRetrySettings
    )
