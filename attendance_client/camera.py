from __future__ import annotations

import base64
import time

import cv2
import numpy as np

from .exceptions import CaptureError


def open_camera_capture(camera_index: int, warmup_reads: int = 6) -> cv2.VideoCapture:
    cap = cv2.VideoCapture(camera_index)
    if cap.isOpened():
        # Some backends report opened=True but never deliver frames.
        for _ in range(max(1, warmup_reads)):
            ok, frame = cap.read()
            if ok and frame is not None:
                return cap
            time.sleep(0.03)
    cap.release()
    raise CaptureError(f"Unable to open camera index {camera_index}.")


def encode_jpeg_base64(frame: np.ndarray, quality: int = 50) -> str:
    try:
        ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    except cv2.error as exc:
        raise CaptureError(f"Failed to encode captured frame as JPEG: {exc}") from exc
    if not ok:
        raise CaptureError("Failed to encode captured frame as JPEG.")
    return base64.b64encode(buffer.tobytes()).decode("ascii")


class StillCamera:
    """Takes single stills for the extractor, as base64 JPEG."""

    def __init__(self, camera_index: int = 0, jpeg_quality: int = 50):
        self.camera_index = camera_index
        self.jpeg_quality = jpeg_quality
        self.cap = None

    def __enter__(self) -> "StillCamera":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        if self.cap is None:
            self.cap = open_camera_capture(self.camera_index)

    def read(self) -> np.ndarray:
        if self.cap is None:
            raise CaptureError("Camera is not initialized.")
        success, frame = self.cap.read()
        if not success or frame is None:
            raise CaptureError("Failed to read frame from camera.")
        return frame

    def capture(self) -> str:
        self.open()
        return encode_jpeg_base64(self.read(), quality=self.jpeg_quality)

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
