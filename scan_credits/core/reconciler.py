"""
Billing reconciliation.

Turns confirmed payments into credit grants. Events may arrive more than
once, and a webhook push may race an explicit sync for the same payment,
so every grant is keyed by checkout session id and applied at most once
through the store's grant ledger.

Credits are never clawed back: a cancelled subscription only stops future
renewal payments, which the provider stops sending.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from scan_credits.errors import MalformedEvent, SignatureVerificationFailed, StorageUnavailable
from scan_credits.storage.models import GrantEvent
from scan_credits.storage.repository import BalanceStore

logger = logging.getLogger(__name__)

# Checkout metadata keys written when the session is created
METADATA_USER_ID = "userId"
METADATA_CREDITS = "credits"

GRANT_EVENT_TYPES = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}
CANCELLATION_EVENT_TYPES = {"customer.subscription.deleted"}


class BillingProvider(Protocol):
    """What the reconciler needs from a billing provider."""

    def verify_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        ...

    def list_completed_sessions(self, limit: int = 100) -> List[Dict[str, Any]]:
        ...


class ReconcileOutcome(Enum):
    """What processing a billing event did."""
    GRANTED = "granted"
    DUPLICATE = "duplicate"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a single billing event."""
    outcome: ReconcileOutcome
    event_type: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    units_granted: int = 0


@dataclass
class SyncSummary:
    """Totals from one pull sync for a user."""
    user_id: str
    sessions_seen: int = 0
    sessions_applied: List[str] = field(default_factory=list)
    units_granted: int = 0
    amount_paid: float = 0.0
    balance: int = 0


def grant_from_session(session: Mapping[str, Any], event_id: Optional[str] = None) -> GrantEvent:
    """Extract a grant from a paid checkout session.

    Args:
        session: Checkout session object
        event_id: Provider event id, when the session came from a webhook

    Returns:
        GrantEvent for the session

    Raises:
        MalformedEvent: If the session id, user id or credit count is missing
            or invalid. Nothing is guessed.
    """
    session_id = session.get("id")
    if not session_id:
        raise MalformedEvent("Checkout session has no id")

    metadata = session.get("metadata") or {}
    user_id = metadata.get(METADATA_USER_ID)
    raw_credits = metadata.get(METADATA_CREDITS)
    if not user_id or raw_credits in (None, ""):
        raise MalformedEvent(f"Missing required metadata in session {session_id}", session_id)

    try:
        units = int(raw_credits)
    except (TypeError, ValueError):
        raise MalformedEvent(
            f"Invalid credits value {raw_credits!r} in session {session_id}", session_id
        )
    if units <= 0:
        raise MalformedEvent(f"Non-positive credits {units} in session {session_id}", session_id)

    # amount_total is in the smallest currency unit
    amount_total = session.get("amount_total") or 0
    return GrantEvent(
        user_id=str(user_id),
        units_granted=units,
        amount_paid=amount_total / 100,
        session_id=session_id,
        event_id=event_id
    )


class GrantReconciler:
    """Mirrors billing provider payments into spendable credits."""

    def __init__(
        self,
        store: BalanceStore,
        provider: Optional[BillingProvider] = None,
        sync_limit: int = 100
    ):
        """Initialize the reconciler.

        Args:
            store: Balance store that owns all balance mutations
            provider: Billing provider, required for webhooks and sync
            sync_limit: How many recent sessions a sync inspects
        """
        self.store = store
        self.provider = provider
        self.sync_limit = sync_limit

    def on_billing_event(self, event: Mapping[str, Any]) -> ReconcileResult:
        """Process one authenticated billing event.

        The event must already have passed signature verification.

        Args:
            event: Provider event with ``id``, ``type`` and ``data.object``

        Returns:
            ReconcileResult describing the effect

        Raises:
            MalformedEvent: If a payment event lacks user or credit metadata
            StorageUnavailable: If the grant could not be committed; the
                provider should redeliver
        """
        event_type = event.get("type") or ""
        event_id = event.get("id")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type in CANCELLATION_EVENT_TYPES:
            logger.info("Subscription %s cancelled; existing credits retained", obj.get("id"))
            return ReconcileResult(ReconcileOutcome.SUBSCRIPTION_CANCELLED, event_type)

        if event_type not in GRANT_EVENT_TYPES:
            logger.info("Ignoring billing event %s of type %s", event_id, event_type)
            return ReconcileResult(ReconcileOutcome.IGNORED, event_type)

        if obj.get("payment_status") != "paid":
            # Delayed payment methods complete checkout before money arrives
            logger.info("Session %s not paid yet (%s); waiting",
                        obj.get("id"), obj.get("payment_status"))
            return ReconcileResult(ReconcileOutcome.IGNORED, event_type, session_id=obj.get("id"))

        try:
            grant = grant_from_session(obj, event_id=event_id)
        except MalformedEvent as e:
            logger.error("Rejected billing event %s: %s", event_id, e)
            raise

        outcome = self._apply(grant, source="webhook")
        return ReconcileResult(
            outcome,
            event_type,
            session_id=grant.session_id,
            user_id=grant.user_id,
            units_granted=grant.units_granted if outcome == ReconcileOutcome.GRANTED else 0
        )

    def sync_from_provider(self, user_id: str) -> SyncSummary:
        """Apply any of the user's recent paid sessions not yet credited.

        Covers missed or delayed webhooks. Safe to call repeatedly: once
        everything is applied, a sync changes nothing.

        Args:
            user_id: Verified user identifier

        Returns:
            SyncSummary with what was applied and the resulting balance

        Raises:
            StorageUnavailable: If a grant could not be committed
        """
        if self.provider is None:
            raise ValueError("A billing provider is required to sync")

        summary = SyncSummary(user_id=user_id)
        for session in self._user_sessions(user_id):
            summary.sessions_seen += 1
            try:
                grant = grant_from_session(session)
            except MalformedEvent as e:
                logger.warning("Skipping session during sync for %s: %s", user_id, e)
                continue

            if self._apply(grant, source="sync") == ReconcileOutcome.GRANTED:
                summary.sessions_applied.append(grant.session_id)
                summary.units_granted += grant.units_granted
                summary.amount_paid += grant.amount_paid

        summary.balance = self.store.get_balance(user_id).balance
        logger.info(
            "Sync complete for user %s: %d sessions seen, %d applied, %d credits added",
            user_id, summary.sessions_seen, len(summary.sessions_applied), summary.units_granted
        )
        return summary

    def grant_manually(
        self,
        user_id: str,
        units: int,
        session_id: str,
        amount_paid: float = 0.0
    ) -> bool:
        """Apply an operator-issued grant through the same idempotent ledger.

        Returns:
            True if applied, False if ``session_id`` was already applied
        """
        grant = GrantEvent(
            user_id=user_id,
            units_granted=units,
            amount_paid=amount_paid,
            session_id=session_id
        )
        return self._apply(grant, source="manual") == ReconcileOutcome.GRANTED

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Tuple[int, Dict[str, Any]]:
        """Verify and process a raw webhook delivery.

        Returns an HTTP status and JSON body for the web layer to relay.
        Non-2xx statuses make the provider redeliver; the grant ledger
        keeps a redelivery from granting twice.
        """
        if self.provider is None:
            raise ValueError("A billing provider is required to handle webhooks")

        try:
            event = self.provider.verify_event(payload, signature)
        except SignatureVerificationFailed as e:
            logger.warning("Rejected webhook delivery: %s", e)
            return 400, {"error": "Invalid signature"}

        try:
            result = self.on_billing_event(event)
        except MalformedEvent:
            return 400, {"error": "Missing metadata"}
        except StorageUnavailable as e:
            logger.error("Grant for event %s not recorded: %s", event.get("id"), e)
            return 500, {"error": "Failed to add credits"}

        return 200, {"received": True, "outcome": result.outcome.value}

    def _user_sessions(self, user_id: str) -> Iterable[Mapping[str, Any]]:
        for session in self.provider.list_completed_sessions(limit=self.sync_limit):
            metadata = session.get("metadata") or {}
            if metadata.get(METADATA_USER_ID) != user_id:
                continue
            if session.get("payment_status") != "paid":
                continue
            yield session

    def _apply(self, grant: GrantEvent, source: str) -> ReconcileOutcome:
        if self.store.apply_grant(grant, source=source):
            logger.info("Added %d credits to user %s from session %s (%s)",
                        grant.units_granted, grant.user_id, grant.session_id, source)
            return ReconcileOutcome.GRANTED

        logger.info("Session %s already applied; skipping duplicate (%s)", grant.session_id, source)
        return ReconcileOutcome.DUPLICATE
