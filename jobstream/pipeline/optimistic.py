"""Optimistic transaction: apply locally, attempt remotely, reconcile or revert.

Order within one transaction is fixed:
  1. snapshot = get_state()
  2. set_state(apply(snapshot))  # visible before any await
  3. result = await attempt()
  4a. success: set_state(reconcile(get_state(), result))
  4b. failure: set_state(revert(get_state(), snapshot)), or set_state(snapshot)

Without ``revert`` a failure restores the snapshot object itself, which also
discards whatever other transactions committed in the meantime. Pass a
``revert`` that undoes only this transaction's entity when transactions on
different entities of the same state can overlap. State must be immutable
(swapped, never mutated).
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S")
R = TypeVar("R")


class TransactionOutcome(Generic[R]):
    """Result of one optimistic transaction."""

    def __init__(
        self,
        ok: bool,
        result: R | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.ok = ok
        self.result = result
        self.error = error


class OptimisticTransaction(Generic[S, R]):
    """One optimistic change against state reached through a getter/setter pair.

    Usage::

        txn = OptimisticTransaction(
            get_state=lambda: self._state,
            set_state=self._set_state,
            apply=lambda s: s.with_saved(job_id),
            attempt=lambda: backend.save_job(user_id, job_id),
            reconcile=lambda s, saved: s.confirm(saved),
            revert=lambda s, snap: s.restore(job_id, snap),
        )
        outcome = await txn.run()
    """

    def __init__(
        self,
        get_state: Callable[[], S],
        set_state: Callable[[S], None],
        apply: Callable[[S], S],
        attempt: Callable[[], Awaitable[R]],
        reconcile: Callable[[S, R], S] | None = None,
        *,
        revert: Callable[[S, S], S] | None = None,
        is_alive: Callable[[], bool] | None = None,
        expected: tuple[type[BaseException], ...] = (Exception,),
    ) -> None:
        self._get_state = get_state
        self._set_state = set_state
        self._apply = apply
        self._attempt = attempt
        self._reconcile = reconcile
        self._revert = revert
        self._is_alive = is_alive or (lambda: True)
        self._expected = expected
        self.snapshot: S | None = None

    def _rollback(self, snapshot: S) -> None:
        if not self._is_alive():
            return
        if self._revert is None:
            self._set_state(snapshot)
        else:
            self._set_state(self._revert(self._get_state(), snapshot))

    async def run(self) -> TransactionOutcome[R]:
        """Run the transaction. Exceptions outside ``expected`` propagate after reverting."""
        snapshot = self._get_state()
        self.snapshot = snapshot
        self._set_state(self._apply(snapshot))

        try:
            result = await self._attempt()
        except self._expected as e:
            self._rollback(snapshot)
            logger.debug("Optimistic change reverted: %s", e)
            return TransactionOutcome(ok=False, error=e)
        except BaseException:
            self._rollback(snapshot)
            raise

        if self._is_alive() and self._reconcile is not None:
            self._set_state(self._reconcile(self._get_state(), result))
        return TransactionOutcome(ok=True, result=result)
