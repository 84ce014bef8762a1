"""
Gated execution of paid operations.

Runs an operation only after admission and debits its cost strictly after
the operation succeeds. A failed, cancelled or timed-out operation is never
charged. If the debit itself cannot be recorded the user still gets the
result; the missed charge is logged as DebitNotRecorded for reconciliation.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar, Union

from .catalog import OperationKind
from .quota import DEFAULT_POLICY, AdmissionDecision, DenialReason, can_admit, today_in
from scan_credits.config.loader import CreditPolicy
from scan_credits.errors import StorageUnavailable
from scan_credits.storage.models import DebitContext
from scan_credits.storage.repository import BalanceStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GatedStatus(Enum):
    """Terminal states of a gated execution that did not raise."""
    COMPLETED = "completed"
    DENIED = "denied"


@dataclass(frozen=True)
class GatedResult(Generic[T]):
    """Result of ``DebitExecutor.execute_gated``.

    ``debit_recorded`` is False for denials and for completed operations
    whose charge could not be committed.
    """
    status: GatedStatus
    value: Optional[T] = None
    denial: Optional[DenialReason] = None
    kind: Optional[OperationKind] = None
    cost: Optional[int] = None
    debit_recorded: bool = False

    @property
    def ok(self) -> bool:
        return self.status == GatedStatus.COMPLETED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DebitExecutor:
    """Sequences admission, the paid operation, and the debit.

    The balance is read before the operation and written after it. No
    lock is held while the operation runs, so concurrent scans from the
    same user proceed in parallel; only the debit itself is serialised
    by the store.
    """

    def __init__(
        self,
        store: BalanceStore,
        policy: CreditPolicy = DEFAULT_POLICY,
        clock: Callable[[], datetime] = _utcnow
    ):
        """Initialize the executor.

        Args:
            store: Balance store that owns all balance mutations
            policy: Costs, daily ceiling and reference timezone
            clock: Returns the current timezone-aware instant
        """
        self.store = store
        self.policy = policy
        self.clock = clock

    def execute_gated(
        self,
        user_id: str,
        operation_kind: Union[OperationKind, str],
        perform_operation: Callable[[], T],
        label: str = ""
    ) -> GatedResult[T]:
        """Run ``perform_operation`` if admitted and debit on success.

        Args:
            user_id: Verified user identifier
            operation_kind: Requested operation kind
            perform_operation: The paid work, e.g. the analysis call
            label: Free text stored with the usage entry

        Returns:
            DENIED result without calling the operation, or COMPLETED
            result carrying the operation's return value

        Raises:
            Anything raised by ``perform_operation``, unchanged. No debit
            happens in that case.
            StorageUnavailable: If the balance cannot be read for admission
        """
        decision = self._admit(user_id, operation_kind)
        if not decision.admit:
            return self._denied(decision)

        value = perform_operation()

        recorded = self._commit(user_id, decision, label)
        return GatedResult(
            status=GatedStatus.COMPLETED,
            value=value,
            kind=decision.kind,
            cost=decision.cost,
            debit_recorded=recorded
        )

    async def execute_gated_async(
        self,
        user_id: str,
        operation_kind: Union[OperationKind, str],
        perform_operation: Callable[[], Awaitable[T]],
        label: str = "",
        timeout: Optional[float] = None
    ) -> GatedResult[T]:
        """Async variant of ``execute_gated``.

        Cancellation of the calling task, or ``timeout`` expiring, raises
        out of the await and nothing is debited. Balance reads and the
        debit run in a worker thread, so a writer holding the
        store lock does not stall other coroutines.

        Args:
            user_id: Verified user identifier
            operation_kind: Requested operation kind
            perform_operation: Coroutine factory for the paid work
            label: Free text stored with the usage entry
            timeout: Optional seconds to wait for the operation

        Returns:
            Same as ``execute_gated``
        """
        # Store calls block on the SQLite write lock; keep them off the loop
        decision = await asyncio.to_thread(self._admit, user_id, operation_kind)
        if not decision.admit:
            return self._denied(decision)

        if timeout is None:
            value = await perform_operation()
        else:
            value = await asyncio.wait_for(perform_operation(), timeout)

        recorded = await asyncio.to_thread(self._commit, user_id, decision, label)
        return GatedResult(
            status=GatedStatus.COMPLETED,
            value=value,
            kind=decision.kind,
            cost=decision.cost,
            debit_recorded=recorded
        )

    def check(self, user_id: str, operation_kind: Union[OperationKind, str]) -> AdmissionDecision:
        """Admission check only, nothing is run or charged."""
        return self._evaluate(user_id, operation_kind)

    def _evaluate(
        self,
        user_id: str,
        operation_kind: Union[OperationKind, str]
    ) -> AdmissionDecision:
        record = self.store.get_balance(user_id)
        today = today_in(self.policy.timezone, self.clock())
        return can_admit(record, operation_kind, today, self.policy)

    def _admit(self, user_id: str, operation_kind: Union[OperationKind, str]) -> AdmissionDecision:
        decision = self._evaluate(user_id, operation_kind)
        if not decision.admit:
            logger.info("Denied %s for user %s: %s", operation_kind, user_id, decision.reason.value)
        return decision

    @staticmethod
    def _denied(decision: AdmissionDecision) -> GatedResult:
        return GatedResult(
            status=GatedStatus.DENIED,
            denial=decision.reason,
            kind=decision.kind,
            cost=decision.cost
        )

    def _commit(self, user_id: str, decision: AdmissionDecision, label: str) -> bool:
        now = self.clock()
        context = DebitContext(
            operation_kind=decision.kind.value,
            operation_date=today_in(self.policy.timezone, now),
            timestamp=now,
            label=label,
            daily_ceiling=self.policy.daily_ceiling
        )
        try:
            recorded = self.store.apply_delta(user_id, -decision.cost, context)
        except StorageUnavailable as e:
            logger.error(
                "DebitNotRecorded user_id=%s kind=%s cost=%d error=%s",
                user_id, decision.kind.value, decision.cost, e
            )
            return False

        if not recorded:
            # Balance or daily count changed between admission and commit
            logger.error(
                "DebitNotRecorded user_id=%s kind=%s cost=%d error=rejected at commit",
                user_id, decision.kind.value, decision.cost
            )
        return recorded
