from __future__ import annotations

import json
import os
import tempfile

import pytest

os.environ.setdefault("ATTENDANCE_LOG_DIR", tempfile.mkdtemp(prefix="attendance-logs-"))

from attendance_client.channel import DetectionChannel  # noqa: E402
from attendance_client.exceptions import CaptureError  # noqa: E402
from attendance_client.types import ConfirmationRecord, EnrolledIdentity, Roster  # noqa: E402


class FakeExtractor:
    """Stands in for the out-of-process extractor on the other end of the channel."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.channel = DetectionChannel(send=self.sent.append)

    def load_models(self) -> None:
        self.push({"type": "modelsLoaded"})

    def push(self, payload: dict) -> None:
        self.channel.handle_message(json.dumps(payload))

    @property
    def requests(self) -> list[dict]:
        return [json.loads(raw) for raw in self.sent]

    @property
    def last_id(self) -> str:
        return self.requests[-1]["id"]

    def face(self, descriptor, request_id: str | None = None) -> None:
        self.push({"type": "faceDetected", "descriptor": list(descriptor), "id": request_id or self.last_id})

    def no_face(self, request_id: str | None = None) -> None:
        self.push({"type": "noFace", "id": request_id or self.last_id})

    def error(self, message: str, request_id: str | None = None) -> None:
        self.push({"type": "error", "message": message, "id": request_id or self.last_id})


class FakeGateway:
    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    def confirm_attendance(self, identity_id: str) -> ConfirmationRecord:
        self.calls.append(identity_id)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(identity_id)
        return outcome or ConfirmationRecord(identity_id=identity_id, name="Alice", date="2026-10-19", time="09:00")


class FakeCamera:
    def __init__(self, image: str = "aW1hZ2U=", error: Exception | None = None) -> None:
        self.image = image
        self.error = error
        self.shots = 0

    def capture(self) -> str:
        self.shots += 1
        if self.error is not None:
            raise self.error
        return self.image


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def ready_extractor(extractor: FakeExtractor) -> FakeExtractor:
    extractor.load_models()
    return extractor


@pytest.fixture
def roster() -> Roster:
    # Probe (0, 0) sits 0.3 from Alice and 0.8 from Bob.
    return Roster(
        identities=(
            EnrolledIdentity("1", "Alice", ((0.3, 0.0),)),
            EnrolledIdentity("2", "Bob", ((0.8, 0.0),)),
        )
    )


@pytest.fixture
def camera() -> FakeCamera:
    return FakeCamera()


@pytest.fixture
def broken_camera() -> FakeCamera:
    return FakeCamera(error=CaptureError("lens cap on"))


@pytest.fixture
def make_gateway():
    return FakeGateway
