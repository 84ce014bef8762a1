"""
Data models for storage layer.

Defines balance records, usage entries and the grant ledger.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class UsageEntry:
    """Immutable record of one committed debit.

    Entries form an append-only history; once written they are never
    edited or removed.
    """
    timestamp: datetime
    operation_kind: str
    units_spent: int
    label: str = ""


@dataclass(frozen=True)
class BalanceRecord:
    """Snapshot of a user's credit balance as read from the store.

    Only the store mutates the underlying row; instances are read-only
    views used for admission decisions and display.
    """
    user_id: str
    balance: int
    lifetime_spent: float = 0.0
    daily_operation_count: int = 0
    last_operation_date: Optional[date] = None
    last_grant_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    usage_history: Tuple[UsageEntry, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DebitContext:
    """What a debit is for, recorded alongside the balance change.

    When ``daily_ceiling`` is set the store also refuses the debit if
    that many operations are already committed on ``operation_date``.
    """
    operation_kind: str
    operation_date: date
    timestamp: datetime
    label: str = ""
    daily_ceiling: Optional[int] = None


@dataclass(frozen=True)
class GrantEvent:
    """A confirmed payment to be converted into credits.

    Sourced from the billing provider. Only the effect is persisted,
    keyed by ``session_id`` in the applied grant ledger.
    """
    user_id: str
    units_granted: int
    amount_paid: float
    session_id: str
    event_id: Optional[str] = None


@dataclass(frozen=True)
class AppliedGrant:
    """Ledger row proving a payment session has been credited."""
    session_id: str
    user_id: str
    units_granted: int
    amount_paid: float
    source: str
    applied_at: datetime
    event_id: Optional[str] = None
