"""JSON messages exchanged with the out-of-process embedding extractor.

Requests::

    {"type": "detect", "id": "<correlation id>", "image": "<base64 jpeg>"}

Responses::

    {"type": "modelsLoaded"}
    {"type": "status", "message": "..."}
    {"type": "faceDetected", "descriptor": [0.01, ...], "id": "..."}
    {"type": "noFace", "id": "..."}
    {"type": "error", "message": "...", "id": "..."}

Terminal responses (``faceDetected``, ``noFace``, ``error``) must echo ``id``.
An ``error`` without ``id`` is an extractor-wide failure, not a reply.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .exceptions import ProtocolError


class MessageType(str, Enum):
    DETECT = "detect"
    MODELS_LOADED = "modelsLoaded"
    STATUS = "status"
    FACE_DETECTED = "faceDetected"
    NO_FACE = "noFace"
    ERROR = "error"


TERMINAL_TYPES = frozenset({MessageType.FACE_DETECTED, MessageType.NO_FACE, MessageType.ERROR})


@dataclass(frozen=True)
class ExtractorMessage:
    type: MessageType
    request_id: str | None = None
    message: str | None = None
    descriptor: list[float] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_TYPES


def encode_image(image: bytes | str) -> str:
    if isinstance(image, str):
        return image
    return base64.b64encode(image).decode("ascii")


def encode_detect_request(request_id: str, image: bytes | str) -> str:
    payload = {"type": MessageType.DETECT.value, "id": request_id, "image": encode_image(image)}
    return json.dumps(payload, separators=(",", ":"))


def decode_message(raw: str | bytes) -> ExtractorMessage:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Malformed extractor message: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("Extractor message must be a JSON object")

    try:
        kind = MessageType(payload.get("type"))
    except ValueError as exc:
        raise ProtocolError(f"Unknown extractor message type: {payload.get('type')!r}") from exc
    if kind is MessageType.DETECT:
        raise ProtocolError("Extractor must not send detect requests")

    request_id = payload.get("id")
    if request_id is not None:
        request_id = str(request_id)

    message = payload.get("message")
    if message is not None:
        message = str(message)

    descriptor: list[float] | None = None
    if kind is MessageType.FACE_DETECTED:
        descriptor = _decode_descriptor(payload.get("descriptor"))

    return ExtractorMessage(type=kind, request_id=request_id, message=message, descriptor=descriptor)


def _decode_descriptor(raw: Any) -> list[float]:
    if isinstance(raw, dict):
        # Float32Array serialised without Array.from() arrives as {"0": .., "1": ..}.
        try:
            raw = [raw[key] for key in sorted(raw, key=int)]
        except (TypeError, ValueError) as exc:
            raise ProtocolError("Descriptor object has non-numeric keys") from exc
    if not isinstance(raw, list) or not raw:
        raise ProtocolError("faceDetected message carries no descriptor")
    try:
        return [float(value) for value in raw]
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Descriptor contains non-numeric values: {exc}") from exc
