from pydantic import BaseModel, Field


class SentrySettings(BaseModel):
    dsn: str | None = Field(default=None)
    environment: str = Field(default="local")
    traces_sample_rate: float = Field(default=1.0, ge=0, le=1)
