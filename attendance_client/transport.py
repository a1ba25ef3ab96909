from __future__ import annotations

import threading

import websocket

from .channel import DetectionChannel
from .exceptions import ChannelError
from .logger import setup_logger


class WebSocketTransport:
    """Carries extractor messages over a WebSocket and feeds them to a channel.

    Runs ``run_forever`` on a daemon thread and reconnects until stopped. A
    dropped connection fails every request still in flight.
    """

    def __init__(self, url: str, channel: DetectionChannel, reconnect_seconds: int = 3) -> None:
        self.url = url
        self.channel = channel
        self.reconnect_seconds = max(1, reconnect_seconds)
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._connected = threading.Event()
        self._app: websocket.WebSocketApp | None = None
        self.logger = setup_logger(self.__class__.__name__)
        channel.attach(self.send)

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="extractor-transport")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        app = self._app
        if app is not None:
            app.close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)

    def send(self, message: str) -> None:
        app = self._app
        if app is None or not self._connected.is_set():
            raise ChannelError(f"Extractor at {self.url} is not connected")
        try:
            app.send(message)
        except websocket.WebSocketException as exc:
            raise ChannelError(f"Extractor send failed: {exc}") from exc

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.logger.info("Connecting to extractor %s", self.url)

            def _on_open(_ws) -> None:
                self._connected.set()
                self.logger.info("Extractor connected")

            def _on_message(_ws, message: str) -> None:
                self.channel.handle_message(message)

            def _on_error(_ws, error) -> None:
                self.logger.warning("Extractor transport error: %s", error)

            def _on_close(_ws, status_code, msg) -> None:
                self._connected.clear()
                self.logger.info("Extractor connection closed code=%s msg=%s", status_code, msg)
                self.channel.handle_transport_error(f"Extractor connection closed ({status_code})")

            self._app = websocket.WebSocketApp(
                self.url,
                on_open=_on_open,
                on_message=_on_message,
                on_error=_on_error,
                on_close=_on_close,
            )
            self._app.run_forever(ping_interval=20, ping_timeout=5)
            self._app = None
            self._connected.clear()

            if not self._stop_event.is_set():
                self._stop_event.wait(self.reconnect_seconds)
