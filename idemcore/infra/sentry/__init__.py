from typing import Any, Callable

import sentry_sdk

from idemcore.infra.config import settings


def init_sentry(*, traces_sampler: Callable[[Any], float] | None = None) -> bool:
    """Start tracing when a DSN is configured. Returns whether it did."""
    if not settings.sentry.dsn:
        return False

    traces_sample_rate = None
    if traces_sampler is None:
        traces_sample_rate = settings.sentry.traces_sample_rate

    sentry_sdk.init(
        dsn=settings.sentry.dsn,
        environment=settings.sentry.environment,
        traces_sampler=traces_sampler,
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
    )
    return True
