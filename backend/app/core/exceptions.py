"""Domain exception hierarchy rendered as ``{"error": ..., "details": ...}`` bodies."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``status_code`` and a default ``error`` at the class level;
    callers provide ``details`` and, for configuration problems, a ``debug``
    dict of non-secret diagnostics.
    """

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(
        self,
        details: str = "",
        *,
        error: str | None = None,
        debug: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(details or error or self.error)
        if error is not None:
            self.error = error
        self.details = details
        self.debug = debug

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.details:
            body["details"] = self.details
        if self.debug:
            body["debug"] = self.debug
        return body


class ValidationException(AppException):
    status_code = 400
    error = "Invalid request"


class UnauthorizedException(AppException):
    status_code = 401
    error = "Unauthorized"


class ForbiddenException(AppException):
    status_code = 403
    error = "Forbidden"


class ConfigurationException(AppException):
    status_code = 500
    error = "Server configuration error"


class UpstreamLLMException(AppException):
    status_code = 500
    error = "Assistant error"


class AssistantRunException(UpstreamLLMException):
    error = "Assistant run failed"
