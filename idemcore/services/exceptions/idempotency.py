from collections.abc import Sequence

from idemcore.domains.idempotency import AbortKind, Aborted, RetryAttempt


class OperationAbortedError(RuntimeError):
    """The transaction running an idempotent operation did not commit."""

    def __init__(self, key: str, outcome: Aborted, message: str | None = None) -> None:
        if message is None:
            message = (
                f"Operation for idempotency key [{key}] aborted "
                f"({outcome.kind}): {outcome.cause}"
            )
        super().__init__(message)
        self.key = key
        self.outcome = outcome

    @property
    def kind(self) -> AbortKind:
        return self.outcome.kind

    @property
    def cause(self) -> BaseException:
        return self.outcome.cause

    def __str__(self) -> str:
        return str(self.args[0])


class RetriesExhaustedError(RuntimeError):
    def __init__(
        self,
        key: str,
        attempts: Sequence[RetryAttempt],
        last_error: OperationAbortedError,
        message: str | None = None,
    ) -> None:
        if message is None:
            message = (
                f"Gave up on idempotency key [{key}] after {len(attempts)} attempts: "
                f"{last_error}"
            )
        super().__init__(message)
        self.key = key
        self.attempts = tuple(attempts)
        self.last_error = last_error

    def __str__(self) -> str:
        return str(self.args[0])


class IncompleteRecordError(ValueError):
    def __init__(self, key: str, message: str | None = None) -> None:
        if message is None:
            message = f"Idempotency record with key [{key}] has no response."
        super().__init__(message)
        self.key = key

    def __str__(self) -> str:
        return str(self.args[0])
