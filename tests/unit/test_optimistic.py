"""Tests for the optimistic transaction helper."""

import pytest

from jobstream.pipeline.optimistic import OptimisticTransaction


class Box:
    """Holds one immutable value behind a getter/setter pair."""

    def __init__(self, value: frozenset[str]) -> None:
        self.value = value
        self.history: list[frozenset[str]] = []

    def get(self) -> frozenset[str]:
        return self.value

    def set(self, value: frozenset[str]) -> None:
        self.history.append(value)
        self.value = value


class TestOptimisticTransaction:
    async def test_applied_before_attempt_runs(self) -> None:
        box = Box(frozenset())
        seen: list[frozenset[str]] = []

        async def attempt() -> str:
            seen.append(box.value)
            return "ok"

        txn = OptimisticTransaction(box.get, box.set, lambda s: s | {"a"}, attempt)
        outcome = await txn.run()

        assert outcome.ok is True
        assert outcome.result == "ok"
        assert seen == [frozenset({"a"})]
        assert box.value == frozenset({"a"})

    async def test_failure_restores_snapshot(self) -> None:
        start = frozenset({"x"})
        box = Box(start)

        async def attempt() -> None:
            raise ValueError("rejected")

        txn = OptimisticTransaction(
            box.get, box.set, lambda s: s | {"a"}, attempt, expected=(ValueError,),
        )
        outcome = await txn.run()

        assert outcome.ok is False
        assert isinstance(outcome.error, ValueError)
        assert box.value is start
        assert txn.snapshot is start

    async def test_reconcile_sees_current_state(self) -> None:
        box = Box(frozenset())

        async def attempt() -> str:
            box.set(box.value | {"concurrent"})
            return "server"

        txn = OptimisticTransaction(
            box.get,
            box.set,
            lambda s: s | {"temp"},
            attempt,
            reconcile=lambda s, r: (s - {"temp"}) | {r},
        )
        await txn.run()

        assert box.value == frozenset({"concurrent", "server"})

    async def test_unexpected_error_reverts_and_propagates(self) -> None:
        start = frozenset()
        box = Box(start)

        async def attempt() -> None:
            raise RuntimeError("bug")

        txn = OptimisticTransaction(
            box.get, box.set, lambda s: s | {"a"}, attempt, expected=(ValueError,),
        )
        with pytest.raises(RuntimeError):
            await txn.run()
        assert box.value is start

    async def test_dead_owner_not_touched_on_failure(self) -> None:
        box = Box(frozenset())
        alive = True

        async def attempt() -> None:
            nonlocal alive
            alive = False
            raise ValueError("late")

        txn = OptimisticTransaction(
            box.get, box.set, lambda s: s | {"a"}, attempt, is_alive=lambda: alive,
        )
        outcome = await txn.run()

        assert outcome.ok is False
        assert len(box.history) == 1

    async def test_dead_owner_not_reconciled(self) -> None:
        box = Box(frozenset())
        alive = True

        async def attempt() -> str:
            nonlocal alive
            alive = False
            return "r"

        txn = OptimisticTransaction(
            box.get,
            box.set,
            lambda s: s | {"a"},
            attempt,
            reconcile=lambda s, r: s | {r},
            is_alive=lambda: alive,
        )
        outcome = await txn.run()

        assert outcome.ok is True
        assert box.value == frozenset({"a"})

    async def test_revert_applies_to_current_state(self) -> None:
        box = Box(frozenset())

        async def attempt() -> None:
            box.set(box.value | {"b"})
            raise ValueError("nope")

        txn = OptimisticTransaction(
            box.get,
            box.set,
            lambda s: s | {"a"},
            attempt,
            revert=lambda current, snap: current - {"a"} if "a" not in snap else current,
        )
        outcome = await txn.run()

        assert outcome.ok is False
        assert box.value == frozenset({"b"})
