"""Error taxonomy shared by managers and blueprints."""


class SupportDeskError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "ServerError"
    status_code = 500

    def to_dict(self) -> dict:
        return {"error": self.kind, "details": str(self)}


class ValidationError(SupportDeskError, ValueError):
    """Input rejected before any write was attempted."""

    kind = "ValidationError"
    status_code = 400


def text_field(value, name: str, required: bool = True):
    """Stripped string for a JSON field; ValidationError when missing or not a string."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"Missing required field: {name}")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Field '{name}' must be a string")
    return value.strip()


class NotFoundError(SupportDeskError, LookupError):
    kind = "NotFound"
    status_code = 404


class PermissionDenied(SupportDeskError):
    kind = "Forbidden"
    status_code = 403


class RemoteError(SupportDeskError):
    """The storage layer rejected or failed a read/write."""

    kind = "RemoteError"
    status_code = 502
    fallback_message = "Storage operation failed"

    def __init__(self, message: str = None, cause: Exception = None):
        super().__init__(message or (str(cause) if cause else None) or self.fallback_message)
        self.cause = cause
