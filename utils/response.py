from typing import Any, Optional

from fastapi.responses import JSONResponse
from models.response import ErrorResponse


def error_response(message: str, status_code: int = 500, details: Optional[Any] = None) -> JSONResponse:
	return JSONResponse(
		status_code=status_code,
		content=ErrorResponse(error=message, details=details).model_dump(exclude_none=True)
	)
