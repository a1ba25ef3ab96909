import base64

import numpy as np
import pytest

from attendance_client import camera as camera_module
from attendance_client.camera import StillCamera, encode_jpeg_base64
from attendance_client.exceptions import CaptureError


class FakeCapture:
    def __init__(self, index, opened=True, frames=True):
        self.index = index
        self.opened = opened
        self.frames = frames
        self.released = False

    def isOpened(self):
        return self.opened

    def read(self):
        if not self.frames:
            return False, None
        return True, np.full((16, 16, 3), 128, dtype=np.uint8)

    def release(self):
        self.released = True


def test_encode_jpeg_base64():
    encoded = encode_jpeg_base64(np.zeros((8, 8, 3), dtype=np.uint8), quality=50)

    assert base64.b64decode(encoded)[:2] == b"\xff\xd8"


def test_encoder_failure_becomes_capture_error():
    with pytest.raises(CaptureError):
        encode_jpeg_base64(np.zeros((0, 0, 3), dtype=np.uint8))


def test_capture_returns_jpeg(monkeypatch):
    captures = []

    def _factory(index):
        cap = FakeCapture(index)
        captures.append(cap)
        return cap

    monkeypatch.setattr(camera_module.cv2, "VideoCapture", _factory)

    with StillCamera(camera_index=2, jpeg_quality=60) as cam:
        image = cam.capture()

    assert base64.b64decode(image)[:2] == b"\xff\xd8"
    assert captures[0].index == 2
    assert captures[0].released


@pytest.mark.parametrize("opened, frames", [(False, True), (True, False)])
def test_unusable_camera_raises(monkeypatch, opened, frames):
    monkeypatch.setattr(camera_module.cv2, "VideoCapture", lambda index: FakeCapture(index, opened, frames))
    monkeypatch.setattr(camera_module.time, "sleep", lambda _seconds: None)

    with pytest.raises(CaptureError):
        StillCamera().capture()


def test_read_without_open_raises():
    with pytest.raises(CaptureError):
        StillCamera().read()
