"""Per-user locking and the optimistic retry loop."""

import asyncio

import pytest
from sqlalchemy.orm.exc import StaleDataError

from stride.progression.concurrency import UserLocks, run_serialized
from stride.progression.errors import ConcurrentUpdateConflict, InvalidAmount, LedgerUpdateFailed


class TestUserLocks:
    def test_same_user_shares_lock(self):
        locks = UserLocks()
        first = locks.for_user(1)
        assert locks.for_user(1) is first

    def test_different_users_get_different_locks(self):
        locks = UserLocks()
        first = locks.for_user(1)
        second = locks.for_user(2)
        assert first is not second

    @pytest.mark.asyncio
    async def test_same_user_calls_do_not_interleave(self):
        locks = UserLocks()
        trace: list[str] = []

        async def worker(name: str) -> None:
            async with locks.for_user(7):
                trace.append(f"{name}-in")
                await asyncio.sleep(0.01)
                trace.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert trace in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


class TestRunSerialized:
    """Retry on lost compare-and-swap, escalate after max attempts."""

    @pytest.mark.asyncio
    async def test_returns_operation_result(self, session_factory):
        async def op(db):
            return 42

        assert await run_serialized(session_factory, UserLocks(), 1, op, op_name="noop") == 42

    @pytest.mark.asyncio
    async def test_retries_stale_data_then_succeeds(self, session_factory):
        calls = 0

        async def op(db):
            nonlocal calls
            calls += 1
            if calls < 3:
                raise StaleDataError("lost race")
            return "ok"

        result = await run_serialized(
            session_factory, UserLocks(), 1, op, op_name="flaky", max_attempts=5, backoff_seconds=0
        )
        assert result == "ok"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_escalates_after_max_attempts(self, session_factory):
        calls = 0

        async def op(db):
            nonlocal calls
            calls += 1
            raise ConcurrentUpdateConflict("always loses")

        with pytest.raises(LedgerUpdateFailed):
            await run_serialized(
                session_factory, UserLocks(), 1, op, op_name="doomed", max_attempts=4, backoff_seconds=0
            )
        assert calls == 4

    @pytest.mark.asyncio
    async def test_domain_errors_are_not_retried(self, session_factory):
        calls = 0

        async def op(db):
            nonlocal calls
            calls += 1
            raise InvalidAmount("bad")

        with pytest.raises(InvalidAmount):
            await run_serialized(session_factory, UserLocks(), 1, op, op_name="bad", backoff_seconds=0)
        assert calls == 1
