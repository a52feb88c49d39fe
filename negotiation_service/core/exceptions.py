# negotiation_service/core/exceptions.py
"""
Exception hierarchy for the negotiation service.
All exceptions inherit from NegotiationServiceError for consistent handling,
on the server (mapped to HTTP responses) and in the client (raised from
error envelopes by error_code).
"""

from typing import Optional


class NegotiationServiceError(Exception):
    """Base exception for all negotiation service errors."""

    status_code: int = 400
    default_code: str = "NEGOTIATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    @classmethod
    def from_payload(cls, message: str, details: Optional[dict] = None):
        """Rebuild an error from a serialized error envelope."""
        exc = cls.__new__(cls)
        NegotiationServiceError.__init__(exc, message, details=details)
        return exc

    def to_payload(self) -> dict:
        return {"code": self.error_code, "details": self.details}


# ===========================================
# State Transition Exceptions
# ===========================================


class InvalidTransitionError(NegotiationServiceError):
    """Action attempted on an offer or negotiation whose state forbids it."""

    status_code = 409
    default_code = "INVALID_TRANSITION"

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        message_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", None) or {}
        if reason:
            details["reason"] = reason
        if message_id:
            details["message_id"] = message_id
        self.reason = reason
        super().__init__(message, details=details, **kwargs)

    @classmethod
    def from_payload(cls, message: str, details: Optional[dict] = None):
        exc = super().from_payload(message, details)
        exc.reason = exc.details.get("reason")
        return exc


class NegotiationClosedError(NegotiationServiceError):
    """Write attempted after the negotiation reached a terminal state."""

    status_code = 409
    default_code = "NEGOTIATION_CLOSED"

    def __init__(self, negotiation_id: str, status: Optional[str] = None):
        super().__init__(
            message=f"Negotiation {negotiation_id} is {status or 'closed'} and accepts no further messages",
            details={"negotiation_id": negotiation_id, "status": status},
        )


class NotAcceptedYetError(NegotiationServiceError):
    """Purchase order requested before the negotiation was accepted."""

    status_code = 409
    default_code = "NOT_ACCEPTED_YET"

    def __init__(self, negotiation_id: str, status: Optional[str] = None):
        super().__init__(
            message=f"Negotiation {negotiation_id} has not been closed by an accepted offer",
            details={"negotiation_id": negotiation_id, "status": status},
        )


# ===========================================
# Lookup / Authorization Exceptions
# ===========================================


class NegotiationNotFoundError(NegotiationServiceError):
    status_code = 404
    default_code = "NEGOTIATION_NOT_FOUND"

    def __init__(self, negotiation_id: str):
        super().__init__(
            message=f"Negotiation {negotiation_id} not found",
            details={"negotiation_id": negotiation_id},
        )


class BidNotFoundError(NegotiationServiceError):
    status_code = 404
    default_code = "BID_NOT_FOUND"

    def __init__(self, bid_id: str):
        super().__init__(
            message=f"Bid {bid_id} not found",
            details={"bid_id": bid_id},
        )


class NotParticipantError(NegotiationServiceError):
    """Acting user is not allowed to act on this negotiation."""

    status_code = 403
    default_code = "NOT_PARTICIPANT"

    def __init__(self, actor_id: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"User {actor_id} is not allowed to act on this negotiation",
            details={"actor_id": actor_id},
        )


class MessageValidationError(NegotiationServiceError):
    """Message draft does not match the shape required by its type."""

    status_code = 422
    default_code = "MESSAGE_VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details={"field": field} if field else {})


class ValidationFailedError(NegotiationServiceError):
    """Request body or parameters other than a message draft failed validation."""

    status_code = 422
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details={"field": field} if field else {})


# ===========================================
# Client-side Exceptions
# ===========================================


class TransportError(NegotiationServiceError):
    """The negotiation API could not be reached or did not answer in time."""

    status_code = 503
    default_code = "NETWORK_OR_TRANSPORT"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, details=details)


class MalformedPayloadError(NegotiationServiceError):
    """A server payload failed schema validation."""

    status_code = 502
    default_code = "MALFORMED_PAYLOAD"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, details=details)


# error_code -> exception class, used by the client to re-raise server errors
ERROR_CODE_MAP = {
    cls.default_code: cls
    for cls in (
        InvalidTransitionError,
        NegotiationClosedError,
        NotAcceptedYetError,
        NegotiationNotFoundError,
        BidNotFoundError,
        NotParticipantError,
        MessageValidationError,
        ValidationFailedError,
    )
}
