"""
Error taxonomy for paste operations.

Each error carries the HTTP status it maps to and a message that is safe to
show to clients. Internal faults keep their details in the logs only.
"""
from typing import Optional


class PasteError(Exception):
    """Base class for errors surfaced to the HTTP layer."""

    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class ClientError(PasteError):
    status_code = 400
    detail = "Bad request"


class PayloadTooLarge(ClientError):
    status_code = 413
    detail = "Content too large"


class MissingDeleteToken(ClientError):
    status_code = 401
    detail = "Missing token"


class Forbidden(ClientError):
    status_code = 403
    detail = "Forbidden"


class HotlinkBlocked(Forbidden):
    detail = "Hotlinking is not allowed"


class NotFound(PasteError):
    status_code = 404
    detail = "Paste not found"


class Gone(PasteError):
    status_code = 410
    detail = "Paste has expired"


class Conflict(PasteError):
    status_code = 409
    detail = "Paste ID already exists"


class InternalFault(PasteError):
    status_code = 500
    detail = "Internal server error"


class MetadataDecodeError(InternalFault):
    """A stored metadata envelope could not be decoded."""


class StoreUnavailable(InternalFault):
    """The backing store failed or could not be reached."""
