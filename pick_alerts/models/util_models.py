from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from pick_alerts.utils.datetime_utils import utc_now


class ResponseStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ApiResponse(BaseModel):
    """Envelope shared by every JSON response of the API"""

    success: bool
    status: ResponseStatus
    message: str
    data: Optional[Any] = None
    meta: Optional[Dict[str, Any]] = None
    errors: Optional[List[Dict[str, Any]]] = None
    request_id: Optional[str] = None
    path: Optional[str] = None
    timestamp: str = Field(default_factory=lambda: utc_now().isoformat())
