import asyncio

import pytest

from idemcore.domains.idempotency import AbortKind, IsolationLevel
from idemcore.services.exceptions.idempotency import (
    IncompleteRecordError,
    OperationAbortedError,
)
from idemcore.services.idempotency import IdempotentExecutor
from idemcore.services.retry import ConflictRetryController

RC = IsolationLevel.READ_COMMITTED
SER = IsolationLevel.SERIALIZABLE


class CountingOperation:
    def __init__(self) -> None:
        self.payloads: list[str] = []

    async def __call__(self, payload: str) -> str:
        self.payloads.append(payload)
        return f"charged-{payload}"


@pytest.mark.asyncio
@pytest.mark.parametrize("isolation_level", [RC, SER])
async def test_first_call_executes_and_records(
    executor, database, side_effects, isolation_level
):
    response = await executor.execute("order-1", "value-1", isolation_level)

    assert response == "response-value-1"
    record = database.records()["order-1"]
    assert record.request == "value-1"
    assert record.response == "response-value-1"
    assert side_effects.calls == [("order-1", "response-value-1")]


@pytest.mark.asyncio
async def test_replay_returns_stored_response_for_different_payload(
    uow, side_effects, logger
):
    operation = CountingOperation()
    executor = IdempotentExecutor(
        uow, operation, on_committed=side_effects.record, logger=logger
    )

    first = await executor.execute("order-1", "amount=10", SER)
    second = await executor.execute("order-1", "amount=99", SER)

    assert first == second == "charged-amount=10"
    assert operation.payloads == ["amount=10"]
    assert side_effects.keys() == ["order-1"]


@pytest.mark.asyncio
async def test_failing_operation_aborts_without_trace(
    uow, database, side_effects, logger
):
    async def _failing(payload: str) -> str:
        raise RuntimeError("payment provider down")

    executor = IdempotentExecutor(
        uow, _failing, on_committed=side_effects.record, logger=logger
    )

    with pytest.raises(OperationAbortedError) as exc_info:
        await executor.execute("order-1", "value", RC)

    assert exc_info.value.kind is AbortKind.OTHER
    assert isinstance(exc_info.value.cause, RuntimeError)
    assert database.records() == {}
    assert side_effects.calls == []


@pytest.mark.asyncio
async def test_record_without_response_is_reported(executor, uow):
    async with uow.begin(isolation_level=RC) as ctx:
        await ctx.records.insert_request("order-1", "value")

    with pytest.raises(OperationAbortedError) as exc_info:
        await executor.execute("order-1", "value", RC)

    assert isinstance(exc_info.value.cause, IncompleteRecordError)


@pytest.mark.asyncio
async def test_concurrent_duplicate_loses_on_unique_constraint(
    uow, database, side_effects, logger
):
    started = asyncio.Event()
    release = asyncio.Event()

    async def _slow(payload: str) -> str:
        started.set()
        await release.wait()
        return f"response-{payload}"

    executor = IdempotentExecutor(
        uow, _slow, on_committed=side_effects.record, logger=logger
    )

    winner = asyncio.create_task(executor.execute("order-1", "first", RC))
    await started.wait()
    loser = asyncio.create_task(executor.execute("order-1", "second", RC))
    await asyncio.sleep(0.01)
    assert not loser.done()

    release.set()
    results = await asyncio.gather(winner, loser, return_exceptions=True)

    assert results[0] == "response-first"
    assert isinstance(results[1], OperationAbortedError)
    assert results[1].kind is AbortKind.CONSTRAINT_VIOLATION
    assert database.records()["order-1"].request == "first"
    assert side_effects.calls == [("order-1", "response-first")]


@pytest.mark.asyncio
async def test_replay_lookup(executor):
    assert await executor.replay("order-1") is None

    await executor.execute("order-1", "value", RC)

    assert await executor.replay("order-1") == "response-value"


@pytest.mark.asyncio
async def test_failing_side_effect_still_returns_committed_response(
    uow, database, fast_policy, logger
):
    charges = []

    async def _charge(key: str, response: str) -> None:
        charges.append(key)
        raise RuntimeError("charge failed")

    executor = IdempotentExecutor(uow, on_committed=_charge, logger=logger)
    controller = ConflictRetryController(executor, policy=fast_policy, logger=logger)

    response = await controller.execute_with_retry("order-1", "value-1", SER)

    assert response == "response-value-1"
    assert database.records()["order-1"].response == response
    assert charges == ["order-1"]
