"""
Standard Response Models

Portal endpoints answer with a consistent envelope:
- success: boolean indicating operation success
- data: the actual response payload
- message: optional human-readable message
- error: error details when success=False

Account flows (login, password change, registration) return a FlowResult
that the routes translate into that envelope.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class APIResponse(BaseModel):
    """Standard API response wrapper."""
    success: bool = True
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "data": {"locked": False},
                "message": "Operation completed"
            }
        }


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class Redirect(BaseModel):
    """Navigation the caller should perform, with optional navigation state."""
    to: str
    state: Dict[str, Any] = Field(default_factory=dict)


class FlowResult(BaseModel):
    """Outcome of an account flow.

    message is always safe to show to the user. field_errors maps form
    field names to messages; toast carries an optional notification record.
    """
    success: bool
    message: Optional[str] = None
    status: Optional[str] = None
    field_errors: Dict[str, str] = Field(default_factory=dict)
    redirect: Optional[Redirect] = None
    toast: Optional[Dict[str, Any]] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failure(cls, message: str, status: str = "error", field: Optional[str] = None, **kwargs: Any) -> "FlowResult":
        field_errors = {field: message} if field else {}
        return cls(success=False, message=message, status=status, field_errors=field_errors, **kwargs)


# Helper functions for creating responses
def success_response(data: Any = None, message: str = None) -> dict:
    """Create a standard success response dict."""
    response = {"success": True}
    if data is not None:
        response["data"] = data
    if message:
        response["message"] = message
    return response


def error_response(error: str, detail: str = None, code: str = None) -> dict:
    """Create a standard error response dict."""
    response = {"success": False, "error": error}
    if detail:
        response["detail"] = detail
    if code:
        response["code"] = code
    return response


def flow_response(result: FlowResult) -> dict:
    """Translate a FlowResult into the standard envelope."""
    data: Dict[str, Any] = dict(result.data)
    if result.status:
        data["status"] = result.status
    if result.field_errors:
        data["fieldErrors"] = result.field_errors
    if result.redirect:
        data["redirect"] = result.redirect.model_dump()
    if result.toast:
        data["toast"] = result.toast

    if result.success:
        return success_response(data=data, message=result.message)

    response = error_response(result.message or "Request failed")
    response["data"] = data
    return response
