"""Unit tests for the transaction coordinator."""

import asyncio

import pytest
import pytest_asyncio

from polystore.core.errors import QueryError, QueryErrorKind, TransactionError
from polystore.core.pool import PooledConnection
from polystore.core.query_adapter import NumberedAdapter
from polystore.core.transaction import TransactionCoordinator, TransactionHandle
from polystore.models.query import FieldDescriptor, NativeResult
from tests.fixtures.fakes import FakeDriver, FakeIntegrityError


@pytest_asyncio.fixture
async def coordinator(fake_pool: PooledConnection) -> TransactionCoordinator:
    await fake_pool.open()
    return TransactionCoordinator(fake_pool, NumberedAdapter("relational-primary"))


class BoomError(Exception):
    """Raised by units of work under test."""


@pytest.mark.unit
@pytest.mark.asyncio
class TestTransactionCoordinator:
    """begin / commit / rollback / release."""

    async def test_commit_on_success(
        self,
        coordinator: TransactionCoordinator,
        fake_driver: FakeDriver,
        fake_pool: PooledConnection,
    ) -> None:
        fake_driver.responses["SELECT id FROM t WHERE a = $1"] = NativeResult(
            columns=(FieldDescriptor("id"),), records=[(7,)], status="SELECT 1"
        )

        async def work(tx: TransactionHandle) -> int:
            result = await tx.query("SELECT id FROM t WHERE a = ?", ("x",))
            return result.scalar()

        assert await coordinator.run(work) == 7
        assert fake_driver.calls[-2:] == ["begin", "commit"]
        assert len(fake_driver.released) == 1
        assert fake_driver.released[0][1] is False
        assert fake_pool.in_use_count == 0

    async def test_rollback_and_reraise_original(
        self,
        coordinator: TransactionCoordinator,
        fake_driver: FakeDriver,
    ) -> None:
        async def work(tx: TransactionHandle) -> None:
            await tx.query("SELECT 1")
            raise BoomError("unit of work failed")

        with pytest.raises(BoomError, match="unit of work failed"):
            await coordinator.run(work)

        assert "rollback" in fake_driver.calls
        assert "commit" not in fake_driver.calls
        assert len(fake_driver.released) == 1

    async def test_query_error_rolls_back(
        self,
        coordinator: TransactionCoordinator,
        fake_driver: FakeDriver,
    ) -> None:
        fake_driver.errors["INSERT INTO t VALUES ($1)"] = FakeIntegrityError("duplicate")

        async def work(tx: TransactionHandle) -> None:
            await tx.query("INSERT INTO t VALUES (?)", (1,))

        with pytest.raises(QueryError) as exc_info:
            await coordinator.run(work)

        assert exc_info.value.kind == QueryErrorKind.CONSTRAINT_VIOLATION
        assert fake_driver.calls[-1] == "rollback"

    async def test_rollback_failure_wraps_both_and_discards(
        self,
        coordinator: TransactionCoordinator,
        fake_driver: FakeDriver,
    ) -> None:
        fake_driver.rollback_error = ConnectionResetError("connection lost")
        original = BoomError("first")

        async def work(tx: TransactionHandle) -> None:
            raise original

        with pytest.raises(TransactionError) as exc_info:
            await coordinator.run(work)

        assert exc_info.value.original_error is original
        assert exc_info.value.rollback_error is not None
        assert len(fake_driver.released) == 1
        assert fake_driver.released[0][1] is True

    async def test_commit_failure_is_transaction_error(
        self,
        coordinator: TransactionCoordinator,
        fake_driver: FakeDriver,
    ) -> None:
        fake_driver.commit_error = FakeIntegrityError("deferred constraint")

        async def work(tx: TransactionHandle) -> str:
            return "done"

        with pytest.raises(TransactionError) as exc_info:
            await coordinator.run(work)

        assert isinstance(exc_info.value.original_error, QueryError)
        assert exc_info.value.rollback_error is None
        assert fake_driver.calls[-2:] == ["commit", "rollback"]
        assert len(fake_driver.released) == 1

    async def test_begin_failure(
        self,
        coordinator: TransactionCoordinator,
        fake_driver: FakeDriver,
        fake_pool: PooledConnection,
    ) -> None:
        fake_driver.begin_error = ConnectionResetError("gone")
        called = False

        async def work(tx: TransactionHandle) -> None:
            nonlocal called
            called = True

        with pytest.raises(TransactionError, match="begin failed"):
            await coordinator.run(work)

        assert called is False
        assert len(fake_driver.released) == 1
        assert fake_driver.released[0][1] is True
        assert fake_pool.in_use_count == 0

    async def test_cancellation_rolls_back(
        self,
        coordinator: TransactionCoordinator,
        fake_driver: FakeDriver,
        fake_pool: PooledConnection,
    ) -> None:
        started = asyncio.Event()

        async def work(tx: TransactionHandle) -> None:
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(coordinator.run(work))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert fake_driver.calls[-1] == "rollback"
        assert len(fake_driver.released) == 1
        assert fake_pool.in_use_count == 0

    async def test_handle_refuses_queries_after_scope(
        self, coordinator: TransactionCoordinator
    ) -> None:
        leaked: list[TransactionHandle] = []

        async def work(tx: TransactionHandle) -> None:
            leaked.append(tx)

        await coordinator.run(work)

        assert not leaked[0].active
        with pytest.raises(TransactionError, match="after its transaction ended"):
            await leaked[0].query("SELECT 1")

    async def test_execute_script(
        self, coordinator: TransactionCoordinator, fake_driver: FakeDriver
    ) -> None:
        async def work(tx: TransactionHandle) -> None:
            await tx.execute_script("CREATE TABLE a (id int); CREATE TABLE b (id int);")

        await coordinator.run(work)

        assert fake_driver.scripts == ["CREATE TABLE a (id int); CREATE TABLE b (id int);"]
        assert fake_driver.calls[-1] == "commit"
