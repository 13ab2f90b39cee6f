"""
Stripe integration: subscription management and webhook dispatch.

Webhook events are verified with the signing secret and then routed by their
`type` through `EVENT_HANDLERS`. Unknown event types are acknowledged without
action so Stripe does not keep redelivering them.
"""
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import stripe

from models.account import UserRole
from services.backend import BackendError
from utils.config import get_env, require_env
from utils.errors import NotFound, UpstreamError, ValidationFailed

logger = logging.getLogger("services.billing")

LOGGED_ONLY_EVENTS = (
    "customer.subscription.updated",
    "customer.subscription.pending_update_applied",
    "customer.subscription.pending_update_expired",
    "customer.subscription.trial_will_end",
)


class BillingError(UpstreamError):
    pass


class WebhookRejected(ValidationFailed):
    pass


_stripe_client: Optional[stripe.StripeClient] = None
_stripe_lock = threading.Lock()


def get_stripe() -> stripe.StripeClient:
    """Return the process-wide Stripe client; the key is only required when first used."""
    global _stripe_client
    if _stripe_client is None:
        with _stripe_lock:
            if _stripe_client is None:
                _stripe_client = stripe.StripeClient(require_env("STRIPE_SECRET_KEY"))
    return _stripe_client


def set_stripe(client) -> None:
    global _stripe_client
    with _stripe_lock:
        _stripe_client = client


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _iso_from_epoch(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def _current_period_end(subscription: Dict[str, Any]) -> Optional[int]:
    # Newer API versions moved the period onto subscription items
    if subscription.get("current_period_end") is not None:
        return subscription["current_period_end"]
    items = (subscription.get("items") or {}).get("data") or []
    return items[0].get("current_period_end") if items else None


def _price_id(subscription: Dict[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


def _call_stripe(label: str, subscription_id: str, fn: Callable[[], Any]) -> Dict[str, Any]:
    try:
        return _as_dict(fn())
    except stripe.InvalidRequestError as exc:
        if getattr(exc, "code", None) == "resource_missing":
            raise NotFound("Subscription not found", details=str(exc)) from exc
        raise BillingError(f"Failed to {label} subscription", details=str(exc)) from exc
    except stripe.StripeError as exc:
        logger.error("stripe_call_failed", extra={"operation": label, "subscription_id": subscription_id, "error": str(exc)})
        raise BillingError(f"Failed to {label} subscription", details=str(exc)) from exc


def cancel_subscription(subscription_id: str) -> Dict[str, Any]:
    client = get_stripe()
    current = _call_stripe("cancel", subscription_id, lambda: client.subscriptions.retrieve(subscription_id))
    status = current.get("status")
    if status == "canceled":
        return {"status": "success", "alreadyCanceled": True}
    if status not in ("active", "trialing"):
        raise ValidationFailed("Subscription cannot be canceled in its current state")

    subscription = _call_stripe(
        "cancel",
        subscription_id,
        lambda: client.subscriptions.update(subscription_id, params={"cancel_at_period_end": True}),
    )
    logger.info(
        "subscription_canceled",
        extra={
            "subscription_id": subscription_id,
            "cancel_at_period_end": subscription.get("cancel_at_period_end"),
            "current_period_end": _iso_from_epoch(_current_period_end(subscription)),
        },
    )
    return {"status": "success", "subscription": subscription}


def reactivate_subscription(subscription_id: str) -> Dict[str, Any]:
    client = get_stripe()
    subscription = _call_stripe(
        "reactivate",
        subscription_id,
        lambda: client.subscriptions.update(subscription_id, params={"cancel_at_period_end": False}),
    )
    logger.info(
        "subscription_reactivated",
        extra={
            "subscription_id": subscription_id,
            "subscription_status": subscription.get("status"),
            "cancel_at_period_end": subscription.get("cancel_at_period_end"),
        },
    )
    return {"status": "success", "subscription": subscription}


def sync_subscription(subscription_id: str) -> Dict[str, Any]:
    client = get_stripe()
    subscription = _call_stripe("sync", subscription_id, lambda: client.subscriptions.retrieve(subscription_id))
    customer = subscription.get("customer")
    summary = {
        "id": subscription.get("id"),
        "customer_id": customer.get("id") if isinstance(customer, dict) else customer,
        "status": subscription.get("status"),
        "cancel_at_period_end": subscription.get("cancel_at_period_end"),
        "current_period_end": _iso_from_epoch(_current_period_end(subscription)),
        "price_id": _price_id(subscription),
    }
    logger.info("subscription_synced", extra={"subscription_id": subscription_id, "subscription_status": summary["status"]})
    return {"status": "success", "subscription": summary}


def key_prefix() -> str:
    return (get_env("STRIPE_SECRET_KEY") or "")[:8] + "..."


def check_connection() -> Dict[str, Any]:
    get_stripe().balance.retrieve()
    logger.info("stripe_connection_ok")
    return {"status": "success", "message": "Stripe connection successful", "keyPrefix": key_prefix()}


# Webhooks

def verify_webhook(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """Check the Stripe-Signature header and return the decoded event."""
    secret = get_env("STRIPE_WEBHOOK_SECRET")
    if not secret:
        logger.error("webhook_secret_missing")
        raise WebhookRejected("Webhook handler failed")
    if not signature:
        raise WebhookRejected("Webhook handler failed")
    body = payload.decode("utf-8", errors="replace")
    try:
        stripe.WebhookSignature.verify_header(body, signature, secret, stripe.Webhook.DEFAULT_TOLERANCE)
        event = json.loads(body)
    except stripe.SignatureVerificationError as exc:
        logger.warning("webhook_signature_invalid", extra={"error": str(exc)})
        raise WebhookRejected("Webhook handler failed") from exc
    except ValueError as exc:
        logger.warning("webhook_payload_invalid", extra={"error": str(exc)})
        raise WebhookRejected("Webhook handler failed") from exc
    if not isinstance(event, dict) or "type" not in event:
        raise WebhookRejected("Webhook handler failed")
    return event


def _set_role(backend, user_id: str, role: UserRole, event_type: str) -> None:
    try:
        backend.update_user_role(user_id, role.value)
    except BackendError:
        logger.error("webhook_role_update_failed", extra={"event_type": event_type, "user_id": user_id, "role": role.value})
        return
    logger.info("webhook_role_updated", extra={"event_type": event_type, "user_id": user_id, "role": role.value})


def _metadata_user_id(obj: Dict[str, Any]) -> Optional[str]:
    return (obj.get("metadata") or {}).get("userId")


def handle_checkout_completed(backend, event: Dict[str, Any], obj: Dict[str, Any]) -> None:
    user_id = obj.get("client_reference_id")
    if not user_id or not obj.get("customer") or not obj.get("subscription"):
        logger.warning(
            "webhook_session_incomplete",
            extra={"session_id": obj.get("id"), "has_reference": bool(user_id), "has_customer": bool(obj.get("customer")), "has_subscription": bool(obj.get("subscription"))},
        )
        raise WebhookRejected("Invalid session data")
    _set_role(backend, user_id, UserRole.PAID, event["type"])


def handle_subscription_created(backend, event: Dict[str, Any], obj: Dict[str, Any]) -> None:
    user_id = _metadata_user_id(obj)
    if user_id:
        _set_role(backend, user_id, UserRole.PAID, event["type"])


def handle_subscription_deleted(backend, event: Dict[str, Any], obj: Dict[str, Any]) -> None:
    user_id = _metadata_user_id(obj)
    if user_id:
        _set_role(backend, user_id, UserRole.FREE, event["type"])


def log_subscription_event(backend, event: Dict[str, Any], obj: Dict[str, Any]) -> None:
    logger.info(
        "webhook_subscription_event",
        extra={
            "event_type": event["type"],
            "subscription_id": obj.get("id"),
            "subscription_status": obj.get("status"),
            "cancel_at_period_end": obj.get("cancel_at_period_end"),
        },
    )


EVENT_HANDLERS: Dict[str, Callable[[Any, Dict[str, Any], Dict[str, Any]], None]] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.deleted": handle_subscription_deleted,
    **{event_type: log_subscription_event for event_type in LOGGED_ONLY_EVENTS},
}


def dispatch_event(backend, event: Dict[str, Any]) -> bool:
    """Run the handler for an event; returns False when the type is not handled."""
    event_type = event.get("type")
    obj = ((event.get("data") or {}).get("object")) or {}
    handler = EVENT_HANDLERS.get(event_type)
    logger.info("webhook_event_received", extra={"event_type": event_type, "event_id": event.get("id"), "handled": handler is not None})
    if handler is None:
        return False
    handler(backend, event, obj)
    return True
