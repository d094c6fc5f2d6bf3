"""Exceptions raised by the studychat client.

Connection-level failures are reported to ``on_error`` callbacks rather than
raised; REST failures are raised to the caller of the failing operation.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class StudyChatError(Exception):
    """Base exception for all studychat errors."""

    def __init__(
        self,
        message: str,
        code: str = "CLIENT_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotAuthenticatedError(StudyChatError):
    """No usable bearer token is available."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message, code="NOT_AUTHENTICATED")


class ApiError(StudyChatError):
    """A REST call failed or returned a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: str = "API_ERROR"):
        super().__init__(message, code=code, details={"status_code": status_code})
        self.status_code = status_code


class UploadError(ApiError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, code="UPLOAD_FAILED")


class DownloadError(ApiError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, code="DOWNLOAD_FAILED")


class StompError(StudyChatError):
    """The broker answered with a STOMP ERROR frame or broke the protocol."""

    def __init__(self, message: str, body: str = ""):
        super().__init__(message, code="STOMP_ERROR", details={"body": body} if body else None)
        self.body = body
