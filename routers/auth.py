from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from typing import Optional
from urllib.parse import quote
from services.backend import BackendError, get_backend
from utils.config import app_url
import logging

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("api.auth")

DEFAULT_NEXT = "/dashboard"


def _safe_next(next_path: Optional[str]) -> Optional[str]:
	# Only same-site relative paths; "//host" would redirect off-site
	if next_path and next_path.startswith("/") and not next_path.startswith("//"):
		return next_path
	return None


def _redirect(request: Request, path: str) -> RedirectResponse:
	base = app_url() or str(request.base_url).rstrip("/")
	return RedirectResponse(url=f"{base}{path}", status_code=302)


@router.get("/callback")
def callback(request: Request, code: Optional[str] = None, next: Optional[str] = None, backend=Depends(get_backend)):
	"""Finish an OAuth / magic-link sign-in and send the browser on."""
	if not code:
		logger.info("auth_callback_no_code")
		return _redirect(request, "/login")

	next_path = _safe_next(next)
	try:
		user_id = backend.exchange_code_for_session(code)
	except BackendError:
		logger.warning("auth_callback_exchange_failed")
		return _redirect(request, "/login?error=auth-failed")

	if user_id:
		try:
			profile = backend.get_user_profile(user_id)
		except BackendError:
			profile = None
		if not profile:
			logger.info("auth_callback_needs_profile", extra={"user_id": user_id})
			return _redirect(request, f"/onboarding?next={quote(next_path or DEFAULT_NEXT, safe='')}")

	logger.info("auth_callback_success", extra={"user_id": user_id, "next": next_path or DEFAULT_NEXT})
	return _redirect(request, next_path or DEFAULT_NEXT)
