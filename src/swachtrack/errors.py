from datetime import datetime, timezone
from typing import Any, Dict


class SwachTrackError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code: int = 500
    error: str = "Internal Server Error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Render as the JSON error body shared by both entry points."""
        return {
            "error": self.error,
            "message": self.message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


class ValidationError(SwachTrackError):
    """A required request field is missing or empty."""

    status_code = 400
    error = "Bad Request"

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"{field} is required")
        self.field = field


class MethodNotAllowedError(SwachTrackError):
    status_code = 405
    error = "Method Not Allowed"

    def __init__(self, allowed: str = "POST") -> None:
        super().__init__(f"Only {allowed} method is allowed for this endpoint")
        self.allowed = allowed


class NotFoundError(SwachTrackError):
    status_code = 404
    error = "Not Found"

    def __init__(self, path: str) -> None:
        super().__init__(f"Route {path} not found")
        self.path = path


class UpstreamError(SwachTrackError):
    """The model gateway failed or returned content we could not use."""

    status_code = 500
    error = "Upstream Error"

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.details:
            body["details"] = self.details
        return body


class DispatchError(SwachTrackError):
    """A model-issued tool call could not be resolved.

    Recovered inside the chat agent; never rendered as an HTTP error.
    """
