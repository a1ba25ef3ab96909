from __future__ import annotations

import math
import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable

from .channel import DetectionChannel
from .exceptions import (
    AttendanceError,
    BelowThreshold,
    CaptureError,
    ChannelError,
    ConfirmationError,
    InvalidTransition,
    NoFaceDetected,
    PreconditionNotMet,
    PreconditionReason,
    SessionExpired,
)
from .logger import setup_logger
from .matcher import RosterMatcher, accept_candidate
from .types import ConfirmationRecord, DetectionOutcome, EmbeddingResult, MatchResult, Roster


class SessionState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    AWAITING_DETECTION = "awaiting_detection"
    MATCHED = "matched"
    REJECTED = "rejected"
    FAILED = "failed"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"


class RejectionReason(str, Enum):
    NO_FACE = "no_face"
    BELOW_THRESHOLD = "below_threshold"


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    request_id: str | None = None
    match: MatchResult | None = None
    rejection: RejectionReason | None = None
    nearest_distance: float | None = None
    error: AttendanceError | None = None
    confirmation: ConfirmationRecord | None = None


class CaptureSession:
    """State machine for one attendance attempt.

    Flow: idle -> capturing -> awaiting_detection -> matched | rejected | failed,
    then matched -> confirming -> confirmed. ``reset`` is legal from any state
    and invalidates the outstanding correlation id, so a detection response
    that arrives afterwards never touches the session.

    Listeners receive a :class:`SessionSnapshot` after every transition.
    """

    def __init__(
        self,
        channel: DetectionChannel,
        gateway: Any,
        matcher: RosterMatcher | None = None,
        roster: Roster | None = None,
        on_session_expired: Callable[[], None] | None = None,
    ) -> None:
        self.channel = channel
        self.gateway = gateway
        self.matcher = matcher or RosterMatcher()
        self.on_session_expired = on_session_expired
        self.logger = setup_logger(self.__class__.__name__)

        self._lock = threading.RLock()
        self._listeners: list[Callable[[SessionSnapshot], None]] = []
        self._roster = roster
        self._epoch = 0
        self._clear()

    def _clear(self) -> None:
        self._state = SessionState.IDLE
        self._attempt_roster: Roster | None = None
        self._image: bytes | str | None = None
        self._request_id: str | None = None
        self._match: MatchResult | None = None
        self._rejection: RejectionReason | None = None
        self._nearest_distance: float | None = None
        self._error: AttendanceError | None = None
        self._confirmation: ConfirmationRecord | None = None

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def roster(self) -> Roster | None:
        with self._lock:
            return self._roster

    @property
    def image(self) -> bytes | str | None:
        with self._lock:
            return self._image

    @property
    def match(self) -> MatchResult | None:
        with self._lock:
            return self._match

    @property
    def threshold(self) -> float:
        return self.matcher.threshold

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                state=self._state,
                request_id=self._request_id,
                match=self._match,
                rejection=self._rejection,
                nearest_distance=self._nearest_distance,
                error=self._error,
                confirmation=self._confirmation,
            )

    def subscribe(self, listener: Callable[[SessionSnapshot], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def load_roster(self, roster: Roster) -> None:
        """Swap the roster snapshot; an attempt already running keeps its own."""
        with self._lock:
            self._roster = roster
        self.logger.info("Roster loaded with %d identities", len(roster))

    def start_capture(self) -> None:
        with self._lock:
            if self._state is not SessionState.IDLE:
                raise InvalidTransition(f"Cannot start capture while {self._state.value}")
            if self._roster is None:
                raise PreconditionNotMet(PreconditionReason.ROSTER_NOT_LOADED, "Employee roster has not been loaded")
            if self._roster.is_empty:
                raise PreconditionNotMet(PreconditionReason.ROSTER_EMPTY, "No employees registered yet")
            if not self.channel.is_ready:
                raise PreconditionNotMet(
                    PreconditionReason.EXTRACTOR_NOT_READY,
                    "Face detection models are still loading",
                )
            self._attempt_roster = self._roster
            snapshot = self._transition(SessionState.CAPTURING)
        self._notify(snapshot)

    def capture_failed(self, error: Exception) -> None:
        with self._lock:
            if self._state is not SessionState.CAPTURING:
                raise InvalidTransition(f"No capture in progress ({self._state.value})")
            if not isinstance(error, CaptureError):
                error = CaptureError(f"Failed to capture photo: {error}")
            snapshot = self._fail(error)
        self._notify(snapshot)

    def image_ready(self, image: bytes | str) -> Future | None:
        """Send the captured image for detection.

        Returns the pending future, or ``None`` when the request could not be
        issued and the session moved to ``failed``.
        """
        with self._lock:
            if self._state is not SessionState.CAPTURING:
                raise InvalidTransition(f"No capture in progress ({self._state.value})")
            if self._request_id is not None:
                self.channel.supersede(self._request_id)

            request_id = uuid.uuid4().hex
            self._image = image
            try:
                future = self.channel.detect(image, request_id=request_id)
            except ChannelError as exc:
                snapshot = self._fail(exc)
                future = None
            else:
                self._request_id = request_id
                snapshot = self._transition(SessionState.AWAITING_DETECTION)
        self._notify(snapshot)

        if future is not None:
            future.add_done_callback(partial(self._on_detection_done, request_id))
        return future

    def capture(self, camera: Any) -> Future | None:
        self.start_capture()
        try:
            image = camera.capture()
        except Exception as exc:
            self.capture_failed(exc)
            return None
        return self.image_ready(image)

    def _on_detection_done(self, request_id: str, future: Future) -> None:
        if future.cancelled():
            return
        with self._lock:
            if request_id != self._request_id or self._state is not SessionState.AWAITING_DETECTION:
                self.logger.debug("Dropping stale detection response %s", request_id)
                return
            error = future.exception()
            if error is not None:
                if not isinstance(error, AttendanceError):
                    error = ChannelError(str(error))
                snapshot = self._fail(error)
            else:
                snapshot = self._evaluate(future.result())
        self._notify(snapshot)

    def _evaluate(self, result: EmbeddingResult) -> SessionSnapshot:
        if result.outcome is DetectionOutcome.ERROR:
            return self._fail(ChannelError(result.reason or "Extractor error"))
        if result.outcome is DetectionOutcome.NO_FACE:
            self._rejection = RejectionReason.NO_FACE
            self._error = NoFaceDetected("No face detected in the captured image")
            self.logger.info("Rejected: no face in capture %s", self._request_id)
            return self._transition(SessionState.REJECTED)

        candidate = self.matcher.nearest(result.embedding, self._attempt_roster)
        accepted = accept_candidate(candidate, self.threshold)
        if accepted is not None:
            self._match = accepted
            self.logger.info(
                "Matched %s (%s) distance=%.4f confidence=%.1f%%",
                accepted.identity.name,
                accepted.identity.identity_id,
                accepted.distance,
                accepted.confidence_percent,
            )
            return self._transition(SessionState.MATCHED)

        distance = candidate.distance if candidate is not None else math.inf
        self._rejection = RejectionReason.BELOW_THRESHOLD
        self._nearest_distance = distance
        self._error = BelowThreshold(distance, self.threshold)
        self.logger.info("Rejected: nearest distance %.4f, threshold %.4f", distance, self.threshold)
        return self._transition(SessionState.REJECTED)

    def confirm(self) -> ConfirmationRecord:
        with self._lock:
            if self._state is not SessionState.MATCHED or self._match is None:
                raise InvalidTransition(f"Nothing to confirm while {self._state.value}")
            match = self._match
            epoch = self._epoch
            self._error = None
            snapshot = self._transition(SessionState.CONFIRMING)
        self._notify(snapshot)

        try:
            record = self.gateway.confirm_attendance(match.identity.identity_id)
        except SessionExpired as exc:
            self._confirmation_failed(epoch, exc)
            if self.on_session_expired is not None:
                self.on_session_expired()
            raise
        except AttendanceError as exc:
            self._confirmation_failed(epoch, exc)
            raise
        except Exception as exc:
            error = ConfirmationError(f"Failed to mark attendance: {exc}")
            self._confirmation_failed(epoch, error)
            raise error from exc

        with self._lock:
            if epoch != self._epoch or self._state is not SessionState.CONFIRMING:
                self.logger.info("Confirmation for %s arrived after reset", match.identity.identity_id)
                return record
            self._confirmation = record
            snapshot = self._transition(SessionState.CONFIRMED)
        self._notify(snapshot)
        return record

    def _confirmation_failed(self, epoch: int, error: AttendanceError) -> None:
        self.logger.warning("Confirmation failed: %s", error)
        with self._lock:
            if epoch != self._epoch or self._state is not SessionState.CONFIRMING:
                return
            self._error = error
            snapshot = self._transition(SessionState.MATCHED)
        self._notify(snapshot)

    def reset(self) -> None:
        with self._lock:
            if self._request_id is not None and self._state is SessionState.AWAITING_DETECTION:
                self.channel.supersede(self._request_id)
            self._epoch += 1
            previous = self._state
            self._clear()
            self.logger.info("Session %s -> %s (reset)", previous.value, self._state.value)
            snapshot = self.snapshot()
        self._notify(snapshot)

    def _fail(self, error: AttendanceError) -> SessionSnapshot:
        self._error = error
        self.logger.warning("Attempt failed: %s", error)
        return self._transition(SessionState.FAILED)

    def _transition(self, state: SessionState) -> SessionSnapshot:
        previous = self._state
        self._state = state
        if state not in (SessionState.MATCHED, SessionState.CONFIRMING):
            self._match = None
        self.logger.info("Session %s -> %s", previous.value, state.value)
        return self.snapshot()

    def _notify(self, snapshot: SessionSnapshot) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                self.logger.exception("Session listener failed")
