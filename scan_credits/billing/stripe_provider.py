"""
Stripe billing provider.

Verifies webhook signatures and lists completed checkout sessions.
Returns plain dictionaries so the reconciler never depends on Stripe types.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from ..config.loader import ENV_STRIPE_SECRET_KEY, ENV_STRIPE_WEBHOOK_SECRET, env_secret
from ..errors import SignatureVerificationFailed

logger = logging.getLogger(__name__)


def _to_plain(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


class StripeBillingProvider:
    """Stripe-backed source of payment truth.

    Never creates charges, refunds or disputes.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE
    ):
        """Initialize the provider.

        Args:
            api_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Endpoint signing secret (defaults to STRIPE_WEBHOOK_SECRET)
            tolerance: Maximum age in seconds of a signed webhook
        """
        self.api_key = api_key or env_secret(ENV_STRIPE_SECRET_KEY)
        self.webhook_secret = webhook_secret or env_secret(ENV_STRIPE_WEBHOOK_SECRET)
        self.tolerance = tolerance

    def verify_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Check a webhook's signature and decode it.

        Args:
            payload: Raw request body, exactly as received
            signature: Value of the Stripe-Signature header

        Returns:
            The event as a plain dictionary

        Raises:
            SignatureVerificationFailed: If the signature is missing, invalid
                or stale, no secret is configured, or the body is not JSON
        """
        if not self.webhook_secret:
            raise SignatureVerificationFailed("Webhook secret is not configured")
        if not signature:
            raise SignatureVerificationFailed("Missing Stripe signature")

        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning("Webhook payload is not valid UTF-8: %s", e)
                raise SignatureVerificationFailed(f"Invalid payload encoding: {e}") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed: %s", e)
            raise SignatureVerificationFailed(str(e)) from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise SignatureVerificationFailed(f"Invalid payload: {e}") from e
        if not isinstance(event, dict):
            raise SignatureVerificationFailed("Invalid payload: not an object")
        return event

    def list_completed_sessions(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent completed checkout sessions, newest first.

        Stripe cannot filter sessions by metadata, so ownership is left
        to the caller.

        Args:
            limit: Number of sessions to fetch (1-100)

        Returns:
            Sessions as plain dictionaries
        """
        if not self.api_key:
            raise ValueError(f"{ENV_STRIPE_SECRET_KEY} is not configured")

        page = stripe.checkout.Session.list(
            limit=limit,
            status="complete",
            api_key=self.api_key
        )
        return [_to_plain(session) for session in page.data]
