from datetime import datetime
from typing import Annotated
from uuid import UUID, uuid4

from sqlalchemy import DateTime, String, Text
from sqlalchemy.dialects.postgresql import UUID as SQLUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from idemcore.infra.database import constraints
from idemcore.infra.utils.time import now_utc

uuidpk = Annotated[
    UUID, mapped_column(SQLUUID(as_uuid=True), primary_key=True, default=uuid4)
]


class Base(DeclarativeBase):
    id: Mapped[uuidpk]


class IdempotencyRecord(Base):
    """
    One row per idempotency key.

    Attributes:
        key: Caller-supplied idempotency key.
        request: Serialized request payload, stored verbatim for audit and replay.
        response: Serialized result of the operation; NULL until it completes.
        created_at: Timestamp when the request was first recorded.
        completed_at: Timestamp when the response was attached, else None.

    Table Constraints
    -----------------
    - UniqueConstraint on ('key'). Concurrent inserts of the same key
      resolve to a single winner; losers fail with a unique violation.
    """

    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(255), nullable=False)
    request: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=now_utc,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (constraints.idempotency_key_unique,)

    def __str__(self) -> str:
        return self.key
