import pytest

from idemcore.container import Container
from idemcore.domains.idempotency import AbortKind, IsolationLevel
from idemcore.entrypoints.bench import main
from idemcore.infra.config import Settings, settings
from idemcore.infra.config.retry import RetrySettings
from idemcore.infra.config.store import StoreSettings
from idemcore.infra.database.uow import PgIdempotencyUnitOfWork
from idemcore.infra.memory.uow import MemoryIdempotencyUnitOfWork
from idemcore.infra.sentry import init_sentry
from idemcore.services.driver import unique_keys


def _container(backend: str) -> Container:
    container = Container()
    container.config.from_pydantic(Settings())
    container.config.store.backend.from_value(backend)
    return container


def test_store_backend_selects_unit_of_work():
    assert isinstance(_container("memory").uow(), MemoryIdempotencyUnitOfWork)
    assert isinstance(_container("postgres").uow(), PgIdempotencyUnitOfWork)


def test_retry_policy_comes_from_settings():
    container = _container("memory")
    container.config.retry.max_retries.from_value(4)

    assert container.retry_policy().max_retries == 4


@pytest.mark.asyncio
async def test_memory_wiring_runs_end_to_end():
    container = _container("memory")

    outcomes = await container.driver().run_concurrently(
        5, unique_keys(), IsolationLevel.SERIALIZABLE, with_retry=True
    )

    assert all(o.ok for o in outcomes)
    assert await container.uow().count_entries() == 10


def test_bench_reports_entries(capsys):
    exit_code = main(
        [
            "--runs",
            "10",
            "--isolation",
            "read-committed",
            "--no-retry",
            "--backend",
            "memory",
        ]
    )

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "succeeded:   10" in out
    assert "entries:     20" in out


def test_sentry_stays_off_without_dsn(monkeypatch):
    monkeypatch.setattr(settings.sentry, "dsn", None)

    assert init_sentry() is False


def test_retry_settings_reach_both_schedules():
    container = _container("memory")
    container.config.retry.retryable_failures.from_value(
        frozenset({AbortKind.SERIALIZATION_FAILURE})
    )
    container.config.retry.resolve_duplicates.from_value(False)
    container.config.retry.unavailable.max_retries.from_value(2)

    policy = container.retry_policy()

    assert not policy.is_retryable(AbortKind.STORE_UNAVAILABLE)
    assert policy.resolve_duplicates is False
    assert policy.unavailable.max_retries == 2
    defaults = RetrySettings().unavailable
    assert policy.unavailable.initial_delay == defaults.initial_delay


def test_postgres_is_the_default_store():
    assert StoreSettings().backend == "postgres"
