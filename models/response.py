from pydantic import BaseModel
from typing import Any, Optional

class ErrorResponse(BaseModel):
    error: str
    details: Optional[Any] = None
