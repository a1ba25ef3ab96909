from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict, deque
from concurrent.futures import Future, InvalidStateError
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .exceptions import ChannelError, ExtractorNotReady, ProtocolError
from .logger import setup_logger
from .protocol import ExtractorMessage, MessageType, decode_message, encode_detect_request
from .types import EmbeddingResult


class ChannelEventKind(str, Enum):
    READY = "ready"
    STATUS = "status"
    ERROR = "error"


@dataclass(frozen=True)
class ChannelEvent:
    kind: ChannelEventKind
    message: str | None = None


@dataclass
class _PendingRequest:
    request_id: str
    future: Future
    created_at: float = field(default_factory=time.monotonic)


class DetectionChannel:
    """Request/response bridge to the embedding extractor.

    Every ``detect`` call returns a future that is resolved exactly once with
    an :class:`EmbeddingResult`, or fails with :class:`ChannelError` when the
    transport drops. Superseded requests are cancelled and their late
    responses are discarded, as are duplicate deliveries for an id that has
    already been resolved. Responses must echo the request id; unlabelled
    replies never resolve a request.
    """

    def __init__(self, send: Callable[[str], None] | None = None, recent_limit: int = 64) -> None:
        self._send = send
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._pending: OrderedDict[str, _PendingRequest] = OrderedDict()
        self._recent: deque[str] = deque(maxlen=max(1, recent_limit))
        self._listeners: list[Callable[[ChannelEvent], None]] = []
        self.last_error: str | None = None
        self.logger = setup_logger(self.__class__.__name__)

    def attach(self, send: Callable[[str], None]) -> None:
        self._send = send

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def wait_ready(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._pending)

    def add_listener(self, callback: Callable[[ChannelEvent], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def _remove() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return _remove

    def detect(self, image: bytes | str, request_id: str | None = None) -> Future:
        if not self._ready.is_set():
            raise ExtractorNotReady("Face detection models are not loaded yet")
        if self._send is None:
            raise ChannelError("No extractor transport attached")

        request_id = request_id or uuid.uuid4().hex
        entry = _PendingRequest(request_id=request_id, future=Future())
        with self._lock:
            if request_id in self._pending or request_id in self._recent:
                raise ChannelError(f"Correlation id {request_id} already used")
            self._pending[request_id] = entry

        try:
            self._send(encode_detect_request(request_id, image))
        except Exception as exc:
            with self._lock:
                self._pending.pop(request_id, None)
            if isinstance(exc, ChannelError):
                raise
            raise ChannelError(f"Failed to send detect request: {exc}") from exc

        self.logger.debug("Sent detect request %s", request_id)
        return entry.future

    def supersede(self, request_id: str) -> bool:
        """Cancel ``request_id``; a response arriving later is dropped."""
        with self._lock:
            entry = self._take_locked(request_id)
        if entry is None:
            return False
        entry.future.cancel()
        self.logger.debug("Superseded detect request %s", request_id)
        return True

    def handle_message(self, raw: str | bytes) -> None:
        try:
            message = decode_message(raw)
        except ProtocolError as exc:
            self.logger.warning("Ignoring extractor message: %s", exc)
            return

        if message.type is MessageType.MODELS_LOADED:
            self._mark_ready()
        elif message.type is MessageType.STATUS:
            self._emit(ChannelEvent(ChannelEventKind.STATUS, message.message))
        else:
            self._resolve(message)

    def handle_transport_error(self, reason: str) -> None:
        # Readiness is re-announced by modelsLoaded after a reconnect.
        self._ready.clear()
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
            self._recent.extend(entry.request_id for entry in entries)
        for entry in entries:
            self._settle(entry, error=ChannelError(reason))
        if entries:
            self.logger.warning("Transport failure with %d request(s) in flight: %s", len(entries), reason)
        else:
            self.logger.info("Extractor connection lost: %s", reason)

    def _mark_ready(self) -> None:
        if self._ready.is_set():
            return
        self._ready.set()
        self.last_error = None
        self.logger.info("Extractor signalled readiness")
        self._emit(ChannelEvent(ChannelEventKind.READY))

    def _take_locked(self, request_id: str) -> _PendingRequest | None:
        entry = self._pending.pop(request_id, None)
        if entry is not None:
            self._recent.append(request_id)
        return entry

    def _resolve(self, message: ExtractorMessage) -> None:
        if message.request_id is None:
            # Unlabelled replies cannot be told apart from stale or duplicated ones.
            if message.type is MessageType.ERROR:
                self.last_error = message.message
                self.logger.warning("Extractor error: %s", message.message)
                self._emit(ChannelEvent(ChannelEventKind.ERROR, message.message))
            else:
                self.logger.warning("Dropping %s without correlation id", message.type.value)
            return

        with self._lock:
            entry = self._take_locked(message.request_id)
        if entry is None:
            self.logger.debug("Dropping stale or duplicate %s for %s", message.type.value, message.request_id)
            return

        if message.type is MessageType.FACE_DETECTED:
            result = EmbeddingResult.face(message.descriptor or [])
        elif message.type is MessageType.NO_FACE:
            result = EmbeddingResult.no_face()
        else:
            result = EmbeddingResult.failure(message.message or "Extractor error")
        self._settle(entry, result=result)

    def _settle(
        self,
        entry: _PendingRequest,
        result: EmbeddingResult | None = None,
        error: Exception | None = None,
    ) -> None:
        try:
            if error is not None:
                entry.future.set_exception(error)
            else:
                entry.future.set_result(result)
        except InvalidStateError:
            self.logger.debug("Request %s already settled", entry.request_id)

    def _emit(self, event: ChannelEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)
