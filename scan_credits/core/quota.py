"""
Scan admission policy.

Decides whether a user may spend credits on an operation. Pure: no I/O,
no clock reads. The caller passes the balance record and today's date.

Check order:
1. Operation kind must be known
2. Balance must cover the cost
3. Daily operation ceiling must not be reached
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from .catalog import OperationKind, resolve_operation_kind
from scan_credits.config.loader import CreditPolicy, resolve_timezone
from scan_credits.storage.models import BalanceRecord


class DenialReason(Enum):
    """Why an operation was not admitted."""
    UNKNOWN_OPERATION = "unknown_operation"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    DAILY_LIMIT_REACHED = "daily_limit_reached"

    @property
    def message(self) -> str:
        return _DENIAL_MESSAGES[self]

    @property
    def suggested_action(self) -> str:
        return _DENIAL_ACTIONS[self]


_DENIAL_MESSAGES = {
    DenialReason.UNKNOWN_OPERATION: "Unknown scan type",
    DenialReason.INSUFFICIENT_BALANCE: "Insufficient credits",
    DenialReason.DAILY_LIMIT_REACHED: "Daily scan limit reached",
}

_DENIAL_ACTIONS = {
    DenialReason.UNKNOWN_OPERATION: "Choose basic, deep or ultra",
    DenialReason.INSUFFICIENT_BALANCE: "Buy more credits",
    DenialReason.DAILY_LIMIT_REACHED: "Try again tomorrow",
}


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check."""
    admit: bool
    reason: Optional[DenialReason] = None
    kind: Optional[OperationKind] = None
    cost: Optional[int] = None

    @classmethod
    def admitted(cls, kind: OperationKind, cost: int) -> "AdmissionDecision":
        return cls(admit=True, kind=kind, cost=cost)

    @classmethod
    def denied(
        cls,
        reason: DenialReason,
        kind: Optional[OperationKind] = None,
        cost: Optional[int] = None
    ) -> "AdmissionDecision":
        return cls(admit=False, reason=reason, kind=kind, cost=cost)


DEFAULT_POLICY = CreditPolicy()


def today_in(timezone_name: str, now: Optional[datetime] = None) -> date:
    """Calendar date in the given timezone.

    Args:
        timezone_name: Reference timezone for the day boundary
        now: Timezone-aware instant to convert (defaults to the current time)

    Returns:
        The date at ``now`` in ``timezone_name``
    """
    tz = resolve_timezone(timezone_name)
    if now is None:
        return datetime.now(tz).date()
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return now.astimezone(tz).date()


def can_admit(
    record: BalanceRecord,
    operation_kind: Union[OperationKind, str],
    today: date,
    policy: CreditPolicy = DEFAULT_POLICY
) -> AdmissionDecision:
    """
    Decide whether an operation may proceed.

    Deterministic for a given (record, operation_kind, today, policy).

    Args:
        record: Freshly read balance record
        operation_kind: Requested operation, enum or string value
        today: Current date in the policy's reference timezone
        policy: Costs and limits to apply

    Returns:
        AdmissionDecision with the denial reason if not admitted
    """
    kind = resolve_operation_kind(operation_kind)
    if kind is None:
        return AdmissionDecision.denied(DenialReason.UNKNOWN_OPERATION)

    cost = policy.cost_of(kind)
    if record.balance < cost:
        return AdmissionDecision.denied(DenialReason.INSUFFICIENT_BALANCE, kind, cost)

    # The counter only applies to the day it was recorded on
    if (record.last_operation_date == today and
            record.daily_operation_count >= policy.daily_ceiling):
        return AdmissionDecision.denied(DenialReason.DAILY_LIMIT_REACHED, kind, cost)

    return AdmissionDecision.admitted(kind, cost)
