from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Any, Callable

from .channel import ChannelEvent, ChannelEventKind, DetectionChannel
from .exceptions import CaptureError, RequestTimeout, RosterUnavailable, SessionExpired
from .logger import setup_logger
from .matcher import RosterMatcher
from .session import CaptureSession, RejectionReason, SessionSnapshot, SessionState
from .types import ConfirmationRecord, Roster

READY_STATUS = "Ready To Mark Attendance"
LOADING_MODELS_STATUS = "Loading AI models..."
EMPTY_ROSTER_STATUS = "No employees registered yet. Add them from the web app."
SESSION_EXPIRED_STATUS = "Session expired. Please login again."

_IN_PROGRESS = (SessionState.CAPTURING, SessionState.AWAITING_DETECTION, SessionState.CONFIRMING)


def describe(snapshot: SessionSnapshot) -> str:
    """User-facing text for a session snapshot."""
    state = snapshot.state
    if state is SessionState.CAPTURING:
        return "Scanning face..."
    if state is SessionState.AWAITING_DETECTION:
        return "Analyzing..."
    if state is SessionState.MATCHED and snapshot.match is not None:
        if snapshot.error is not None:
            return f"Matched: {snapshot.match.identity.name} ({snapshot.error})"
        return f"Matched: {snapshot.match.identity.name}"
    if state is SessionState.CONFIRMING:
        return "Marking attendance..."
    if state is SessionState.CONFIRMED and snapshot.confirmation is not None:
        record = snapshot.confirmation
        return f"Attendance marked: {record.name} {record.date} at {record.time}"
    if state is SessionState.REJECTED:
        if snapshot.rejection is RejectionReason.NO_FACE:
            return "No face detected. Position your face clearly in the oval guide and try again."
        return "Face not recognized. Face does not match any registered employee."
    if state is SessionState.FAILED:
        if isinstance(snapshot.error, CaptureError):
            return "Capture failed. Try again."
        return f"Error: {snapshot.error}"
    return READY_STATUS


class AttendanceKiosk:
    """Drives one attendance screen: roster loading, capture and confirmation.

    Holds the status line shown to the user and logs out when the server
    reports the session expired.
    """

    def __init__(
        self,
        api: Any,
        channel: DetectionChannel,
        camera: Any,
        matcher: RosterMatcher | None = None,
        on_logout: Callable[[], None] | None = None,
    ) -> None:
        self.api = api
        self.channel = channel
        self.camera = camera
        self.on_logout = on_logout
        self.logger = setup_logger(self.__class__.__name__)
        self.status = "Initializing..."
        self._settled = threading.Condition()
        self._status_listeners: list[Callable[[str], None]] = []

        self.session = CaptureSession(
            channel=channel,
            gateway=api,
            matcher=matcher,
            on_session_expired=self._session_expired,
        )
        self.session.subscribe(self._on_session_change)
        channel.add_listener(self._on_channel_event)

    @property
    def is_ready(self) -> bool:
        roster = self.session.roster
        return self.channel.is_ready and roster is not None and not roster.is_empty

    def add_status_listener(self, callback: Callable[[str], None]) -> None:
        self._status_listeners.append(callback)

    def _set_status(self, status: str) -> None:
        self.status = status
        for callback in list(self._status_listeners):
            callback(status)

    def _idle_status(self) -> str:
        roster = self.session.roster
        if roster is not None and roster.is_empty:
            return EMPTY_ROSTER_STATUS
        if not self.channel.is_ready:
            return LOADING_MODELS_STATUS
        return READY_STATUS

    def load_roster(self) -> Roster:
        self._set_status("Loading registered employees...")
        try:
            roster = self.api.fetch_roster()
        except SessionExpired:
            self._session_expired()
            raise
        except (RosterUnavailable, RequestTimeout):
            self._set_status("Failed to load employees")
            raise
        self.session.load_roster(roster)
        self._set_status(self._idle_status())
        return roster

    def mark(self) -> Future | None:
        if self.session.state in (SessionState.REJECTED, SessionState.FAILED, SessionState.CONFIRMED):
            self.session.reset()
        return self.session.capture(self.camera)

    def wait_until_settled(self, timeout: float | None = None) -> SessionSnapshot:
        with self._settled:
            self._settled.wait_for(lambda: self.session.state not in _IN_PROGRESS, timeout=timeout)
        return self.session.snapshot()

    def confirm(self) -> ConfirmationRecord:
        record = self.session.confirm()
        self.logger.info("Attendance marked for %s on %s at %s", record.name, record.date, record.time)
        self.session.reset()
        return record

    def retake(self) -> None:
        self.session.reset()

    def _on_session_change(self, snapshot: SessionSnapshot) -> None:
        if snapshot.state is SessionState.IDLE:
            self._set_status(self._idle_status())
        else:
            self._set_status(describe(snapshot))
        with self._settled:
            self._settled.notify_all()

    def _on_channel_event(self, event: ChannelEvent) -> None:
        if event.kind is ChannelEventKind.READY:
            if self.session.state is SessionState.IDLE:
                self._set_status(self._idle_status())
        elif event.kind is ChannelEventKind.STATUS and event.message:
            self._set_status(event.message)
        elif event.kind is ChannelEventKind.ERROR:
            if self.session.state is SessionState.IDLE:
                self._set_status(f"Error: {event.message}")

    def _session_expired(self) -> None:
        self.logger.warning("Server session expired; logging out")
        self.api.logout()
        self._set_status(SESSION_EXPIRED_STATUS)
        if self.on_logout is not None:
            self.on_logout()
