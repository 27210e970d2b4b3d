from idemcore.schemas.base import BaseSchema


class InvocationOutcome(BaseSchema):
    index: int
    key: str
    response: str | None = None
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
