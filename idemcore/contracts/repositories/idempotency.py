from abc import ABC, abstractmethod

from idemcore.domains.idempotency import IdempotencyRecord


class IdempotencyRepository(ABC):
    """
    Keyed store of `IdempotencyRecord`s bound to one open transaction.

    The store enforces uniqueness of `key` itself: two transactions that both
    decide "key not found, insert it" produce exactly one winner, the other
    one observes `ConstraintViolationError` (or a serialization failure).
    """

    @abstractmethod
    async def lookup(self, key: str) -> IdempotencyRecord | None: ...

    @abstractmethod
    async def insert_request(self, key: str, request: str) -> None:
        """
        Raises:
            ConstraintViolationError
                If a record with `key` already exists.
        """

    @abstractmethod
    async def attach_response(self, key: str, response: str) -> None:
        """
        Raises:
            RecordNotFoundError
                If there is no record with `key`.
        """

    @abstractmethod
    async def count_entries(self) -> int:
        """Number of stored requests plus number of stored responses."""
