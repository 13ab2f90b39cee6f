import logging
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from typing import Any, Dict, List

from utils.errors import AppError
from utils.response import error_response

logger = logging.getLogger("api.errors")


def _summarize_validation_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
	# ctx may hold exception instances which are not JSON serializable
	return [
		{
			"loc": [str(part) for part in err.get("loc", ())],
			"msg": err.get("msg", ""),
			"type": err.get("type", ""),
		}
		for err in errors
	]


def install_exception_handlers(app: FastAPI) -> None:
	@app.exception_handler(AppError)
	async def app_error_handler(request: Request, exc: AppError):
		log = logger.error if exc.status_code >= 500 else logger.warning
		log(
			"app_error",
			extra={
				"path": request.url.path,
				"method": request.method,
				"status_code": exc.status_code,
				"error": exc.message,
				"error_type": type(exc).__name__,
			}
		)
		return error_response(exc.message, status_code=exc.status_code, details=exc.details)

	@app.exception_handler(HTTPException)
	async def http_exception_handler(request: Request, exc: HTTPException):
		logger.warning(
			"http_exception",
			extra={
				"path": request.url.path,
				"method": request.method,
				"status_code": exc.status_code,
			}
		)
		return error_response(str(exc.detail or "HTTP error"), status_code=exc.status_code)

	@app.exception_handler(RequestValidationError)
	async def validation_exception_handler(request: Request, exc: RequestValidationError):
		errors = _summarize_validation_errors(exc.errors())
		logger.warning(
			"validation_error",
			extra={
				"path": request.url.path,
				"method": request.method,
				"status_code": status.HTTP_400_BAD_REQUEST,
				"error_count": len(errors),
			}
		)
		if errors:
			first = errors[0]
			field = ".".join(part for part in first["loc"] if part not in ("body", "query", "path"))
			message = f"Invalid request: {field}: {first['msg']}" if field else f"Invalid request: {first['msg']}"
		else:
			message = "Invalid request"
		return error_response(message, status_code=status.HTTP_400_BAD_REQUEST, details=errors)

	@app.exception_handler(Exception)
	async def generic_exception_handler(request: Request, exc: Exception):
		# Do not expose internal details to clients
		logger.error(
			"unhandled_exception",
			exc_info=True,
			extra={
				"path": request.url.path,
				"method": request.method,
				"status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
			}
		)
		return error_response("Internal server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
