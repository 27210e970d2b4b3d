class StoreError(Exception):
    """Base for failures raised by the idempotency store."""

    def __init__(self, message: str | None = None) -> None:
        if message is None:
            message = "Idempotency store operation failed."
        super().__init__(message)

    def __str__(self) -> str:
        return str(self.args[0])


class ConstraintViolationError(StoreError):
    """Another transaction already owns this key."""

    def __init__(self, key: str | None = None, message: str | None = None) -> None:
        if message is None and key is None:
            message = "Idempotency key already exists."
        elif message is None:
            message = f"Idempotency key [{key}] already exists."
        super().__init__(message)
        self.key = key


class SerializationFailureError(StoreError):
    """The store aborted the transaction to keep a serial-equivalent history."""

    def __init__(self, message: str | None = None) -> None:
        if message is None:
            message = "Could not serialize access due to concurrent update."
        super().__init__(message)


class RecordNotFoundError(StoreError, KeyError):
    def __init__(self, key: str, message: str | None = None) -> None:
        if message is None:
            message = f"Idempotency record with key [{key}] does not exist."
        super().__init__(message)
        self.key = key

    def __str__(self) -> str:
        return str(self.args[0])


class StoreUnavailableError(StoreError):
    def __init__(self, message: str | None = None) -> None:
        if message is None:
            message = "Idempotency store is unavailable."
        super().__init__(message)
