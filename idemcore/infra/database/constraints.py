from sqlalchemy import UniqueConstraint

idempotency_key_unique = UniqueConstraint(
    "key",
    name="uq_idempotency_key",
)
