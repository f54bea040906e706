"""Exception hierarchy with structured context and HTTP status mapping"""

from datetime import datetime
from typing import Any


class TurnstreamError(Exception):
    """Base exception with context, a user-facing message and an HTTP status"""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
        user_message: str | None = None,
    ):
        """
        Initialize exception with context.

        Args:
            message: Technical error message for logs
            details: Additional context (dict for structured logging)
            recoverable: Whether the caller can fix the problem and resubmit
            user_message: User-friendly error message
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        self.user_message = user_message or message
        self.timestamp = datetime.now()

    def __str__(self) -> str:
        parts = [self.message]

        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({details_str})")

        if self.recoverable:
            parts.append("[recoverable]")

        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "user_message": self.user_message,
            "status_code": self.status_code,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(TurnstreamError):
    """Malformed or missing request fields; the user must resubmit"""

    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None, error: str | None = None):
        super().__init__(message=message, details=details, recoverable=True)
        self.error = error or message

    @classmethod
    def from_pydantic(cls, message: str, error: Exception) -> "ValidationError":
        """Wrap a pydantic ValidationError, keeping field locations for the client"""
        return cls(
            message,
            details={"errors": [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in error.errors()
            ]},
        )


class AuthenticationError(TurnstreamError):
    """Operation requires an authenticated caller"""

    status_code = 401

    def __init__(self, message: str = "Authentication required", details: dict[str, Any] | None = None):
        super().__init__(message=message, details=details)


class AuthorizationError(TurnstreamError):
    """Caller does not own the resource or is not entitled to the feature"""

    status_code = 403

    def __init__(
        self,
        message: str = "Access denied",
        details: dict[str, Any] | None = None,
        user_message: str | None = None,
    ):
        super().__init__(message=message, details=details, user_message=user_message)


class NotFoundError(TurnstreamError):
    """Conversation, message or persona does not exist"""

    status_code = 404

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} not found",
            details={"resource": resource, "id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class CapacityError(TurnstreamError):
    """Anonymous message limit reached"""

    status_code = 429

    def __init__(self, limit: int, count: int):
        super().__init__(
            message="Message limit reached",
            details={"limit": limit, "count": count},
            user_message=(
                f"You've reached the limit of {limit} free messages. "
                "Please sign up to continue."
            ),
        )
        self.limit = limit
        self.count = count


class UpstreamError(TurnstreamError):
    """Model or tool provider failure"""

    status_code = 502

    IMAGE_ERROR_MARKERS = ("Invalid image", "image data")

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        provider_status: int | None = None,
    ):
        super().__init__(
            message=message,
            details=details,
            recoverable=provider_status == 429,
        )
        self.provider_status = provider_status

    @property
    def is_image_error(self) -> bool:
        """Provider rejected the request, most often because of the attached image"""
        if self.provider_status == 400:
            return True
        return any(marker in self.message for marker in self.IMAGE_ERROR_MARKERS)


class PersistenceError(TurnstreamError):
    """Storage write or read failed after the turn started"""

    status_code = 500


class ToolExecutionError(TurnstreamError):
    """Tool execution errors; degrade the turn, never abort it"""

    def __init__(self, message: str, tool_name: str, details: dict[str, Any] | None = None):
        details = details or {}
        details["tool_name"] = tool_name

        super().__init__(
            message=message,
            details=details,
            recoverable=True,
            user_message=f"Tool '{tool_name}' execution failed.",
        )
        self.tool_name = tool_name


class StreamClosedError(RuntimeError):
    """An event was emitted after the stream reached a terminal state"""
