from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from models.account import SubscriptionRequest
from services import billing
from services.backend import get_backend
from utils.errors import ConfigurationError
import logging
import stripe

router = APIRouter(prefix="/stripe", tags=["billing"])
logger = logging.getLogger("api.billing")


@router.post("/cancel")
def cancel(body: SubscriptionRequest):
	return billing.cancel_subscription(body.subscriptionId)


@router.post("/reactivate")
def reactivate(body: SubscriptionRequest):
	return billing.reactivate_subscription(body.subscriptionId)


@router.post("/sync")
def sync(body: SubscriptionRequest):
	return billing.sync_subscription(body.subscriptionId)


@router.get("/test")
def test_connection():
	logger.info("stripe_connection_check", extra={"key_prefix": billing.key_prefix()})
	try:
		return billing.check_connection()
	except (stripe.StripeError, ConfigurationError) as exc:
		logger.error("stripe_connection_failed", extra={"error": str(exc)})
		return JSONResponse(status_code=500, content={"status": "error", "message": str(exc)})


@router.post("/webhook")
async def webhook(request: Request):
	"""Stripe webhook receiver; the raw body is needed for signature checks."""
	payload = await request.body()
	event = billing.verify_webhook(payload, request.headers.get("stripe-signature"))
	backend = get_backend()
	try:
		await run_in_threadpool(billing.dispatch_event, backend, event)
	except billing.WebhookRejected:
		raise
	except Exception as exc:
		logger.error("webhook_dispatch_failed", extra={"event_type": event.get("type"), "event_id": event.get("id")}, exc_info=True)
		raise billing.WebhookRejected("Webhook handler failed") from exc
	return {"received": True}
