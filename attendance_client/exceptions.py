from __future__ import annotations

from enum import Enum


class AttendanceError(Exception):
    """Base exception for the attendance client."""


class PreconditionReason(str, Enum):
    ROSTER_NOT_LOADED = "roster_not_loaded"
    ROSTER_EMPTY = "roster_empty"
    EXTRACTOR_NOT_READY = "extractor_not_ready"


class PreconditionNotMet(AttendanceError):
    """Raised when a capture is refused before any state change."""

    def __init__(self, reason: PreconditionReason, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or f"Cannot start capture: {reason.value}")


class InvalidTransition(AttendanceError):
    """Raised when an operation is not legal in the current session state."""


class CaptureError(AttendanceError):
    """Raised when taking a still from the camera fails."""


class NoFaceDetected(AttendanceError):
    """The extractor found no face in the captured image."""


class BelowThreshold(AttendanceError):
    """A face was found but no enrolled embedding is close enough."""

    def __init__(self, distance: float, threshold: float) -> None:
        self.distance = distance
        self.threshold = threshold
        super().__init__(f"Nearest distance {distance:.4f} is not below threshold {threshold:.4f}")


class ChannelError(AttendanceError):
    """Raised when the detection channel or the extractor fails."""


class ExtractorNotReady(ChannelError):
    """Raised when detect is called before the extractor signalled readiness."""


class ProtocolError(ChannelError):
    """Raised when an extractor message cannot be decoded."""


class RosterUnavailable(AttendanceError):
    """Raised when the roster cannot be fetched from the server."""


class AuthenticationError(AttendanceError):
    """Raised when the server refuses the supplied credentials."""


class ConfirmationError(AttendanceError):
    """Raised when the server does not confirm attendance."""


class SessionExpired(AttendanceError):
    """Raised on a 401 response; the user must log in again."""


class RequestTimeout(AttendanceError):
    """Raised when a network call exceeds its bounded wait."""
