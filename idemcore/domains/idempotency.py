from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

ResultT = TypeVar("ResultT")


class IsolationLevel(StrEnum):
    """Transaction isolation levels, spelled the way SQLAlchemy expects them."""

    READ_COMMITTED = "READ COMMITTED"
    SERIALIZABLE = "SERIALIZABLE"


class AbortKind(StrEnum):
    SERIALIZATION_FAILURE = "serialization_failure"
    CONSTRAINT_VIOLATION = "constraint_violation"
    STORE_UNAVAILABLE = "store_unavailable"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class IdempotencyRecord:
    key: str
    request: str
    response: str | None = None

    @property
    def completed(self) -> bool:
        return self.response is not None


@dataclass(frozen=True, slots=True)
class Committed(Generic[ResultT]):
    result: ResultT


@dataclass(frozen=True, slots=True)
class AbortedSerializationFailure:
    cause: BaseException

    @property
    def kind(self) -> AbortKind:
        return AbortKind.SERIALIZATION_FAILURE


@dataclass(frozen=True, slots=True)
class AbortedConstraintViolation:
    cause: BaseException

    @property
    def kind(self) -> AbortKind:
        return AbortKind.CONSTRAINT_VIOLATION


@dataclass(frozen=True, slots=True)
class AbortedOther:
    """Any other abort. An unreachable store has kind `STORE_UNAVAILABLE`."""

    cause: BaseException
    kind: AbortKind = AbortKind.OTHER


Aborted = AbortedSerializationFailure | AbortedConstraintViolation | AbortedOther
TransactionOutcome = Committed[Any] | Aborted


@dataclass(frozen=True, slots=True)
class RetryAttempt:
    """
    One invocation of the executor on behalf of a logical call.

    `attempt_number` is 0 for the first invocation and grows by one per retry;
    `delay` is how long the controller slept before it (0 for the first).
    """

    attempt_number: int
    delay: float
    last_outcome: Aborted | None = None
