from fastapi import APIRouter, Depends
from models.account import DeleteUserRequest
from services.backend import BackendError, get_backend
from utils.errors import UpstreamError
import logging

router = APIRouter(prefix="/user", tags=["user"])
logger = logging.getLogger("api.user")


@router.post("/delete")
def delete_user(body: DeleteUserRequest, backend=Depends(get_backend)):
	logger.info("user_delete_requested", extra={"user_id": body.userId})
	try:
		backend.delete_auth_user(body.userId)
	except BackendError as exc:
		raise UpstreamError("Failed to delete user account", details=exc.message) from exc
	logger.info("user_deleted", extra={"user_id": body.userId})
	return {"status": "success", "message": "User account deleted successfully"}
