# utils/errors.py - Error taxonomy for the chat endpoint
"""
Every failure on /api/chat maps to one of these, and every one of them
renders to the same JSON envelope: {ok: false, error, message, requestId}.
"""

from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base class for errors that are reported to the caller."""

    status_code = 500
    error = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[int] = None,
        reason: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        """
        Args:
            message: Human-readable text the widget may show as-is
            retry_after: Seconds for the Retry-After header, if any
            reason: Machine-readable sub-code (429 responses)
            detail: Internal detail, only exposed in debug mode
        """
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after
        self.reason = reason
        self.detail = detail
        # Origin to echo on the error response, set once the origin has been validated
        self.allow_origin: Optional[str] = None

    def to_dict(self, request_id: str, debug: bool = False) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "ok": False,
            "error": self.error,
            "message": self.message,
            "requestId": request_id,
        }
        if self.reason:
            body["reason"] = self.reason
        if debug and self.detail:
            body["detail"] = self.detail
        return body

    def headers(self) -> Dict[str, str]:
        if self.retry_after is None:
            return {}
        return {"Retry-After": str(max(1, int(self.retry_after)))}


class BadRequest(ChatError):
    status_code = 400
    error = "bad_request"


class Unauthorized(ChatError):
    status_code = 401
    error = "unauthorized"


class OriginNotAllowed(ChatError):
    status_code = 403
    error = "origin_not_allowed"


class BotNotFound(ChatError):
    status_code = 404
    error = "unknown_bot"


class RateLimited(ChatError):
    status_code = 429
    error = "rate_limited"


class BudgetExceeded(ChatError):
    status_code = 429
    error = "budget_exceeded"


class UpstreamError(ChatError):
    status_code = 502
    error = "upstream_failed"
