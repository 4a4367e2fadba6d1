from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from photomap.common.types import CapturedImage
from photomap.common.utils import iso_now_ms


log = logging.getLogger(__name__)


class CameraError(RuntimeError):
    """Camera could not be opened or read."""


def encode_jpeg(img: np.ndarray, quality: int = 80) -> bytes:
    """Encode a BGR/gray frame to JPEG bytes."""
    ok, buf = cv2.imencode(".jpg", img, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise CameraError("JPEG encoding failed")
    return buf.tobytes()


@dataclass
class CameraSession:
    """
    Live camera stream with still capture.

    Args:
        preferred_index: device index of the rear/environment camera
        fallback_indices: tried in order when the preferred device is unavailable
        size: ideal (width, height); the driver may pick something else
        jpeg_quality: 0..100 (80 ~ 0.8)
        warmup_frames: frames discarded after open so exposure can settle

    The stream must be released when the session ends; use it as a context
    manager or call release() on every path (commit and cancel alike).
    """
    preferred_index: int = 0
    fallback_indices: Sequence[int] = (1, 2)
    size: Optional[Tuple[int, int]] = (1280, 720)
    jpeg_quality: int = 80
    warmup_frames: int = 3
    _cap: Any = field(default=None, init=False, repr=False)
    _index: Optional[int] = field(default=None, init=False)
    _pending: Optional[CapturedImage] = field(default=None, init=False, repr=False)

    # -------- stream lifecycle --------

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    @property
    def device_index(self) -> Optional[int]:
        return self._index

    def open(self) -> "CameraSession":
        if self._cap is not None:
            return self
        candidates = [self.preferred_index] + [i for i in self.fallback_indices if i != self.preferred_index]
        for idx in candidates:
            cap = cv2.VideoCapture(idx)
            if cap is not None and cap.isOpened():
                if self.size:
                    w, h = self.size
                    cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
                    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
                for _ in range(max(0, self.warmup_frames)):
                    cap.read()
                self._cap, self._index = cap, idx
                if idx != self.preferred_index:
                    log.warning("Preferred camera %s unavailable; using %s", self.preferred_index, idx)
                return self
            if cap is not None:
                cap.release()
        raise CameraError(f"Unable to access camera (tried {candidates})")

    def release(self) -> None:
        """Stop the stream. Safe to call more than once."""
        if self._cap is not None:
            self._cap.release()
            log.debug("Camera %s released", self._index)
        self._cap = None
        self._index = None
        self._pending = None

    def __enter__(self) -> "CameraSession":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.release()

    # -------- stills --------

    @property
    def pending(self) -> Optional[CapturedImage]:
        return self._pending

    def capture(self) -> CapturedImage:
        """Grab one frame and encode it; replaces any pending still."""
        if self._cap is None:
            raise CameraError("Camera is not open")
        ok, img = self._cap.read()
        if not ok or img is None:
            raise CameraError("Failed to read frame from camera")
        h, w = img.shape[:2]
        self._pending = CapturedImage(
            data=encode_jpeg(img, self.jpeg_quality),
            width=int(w),
            height=int(h),
            timestamp=iso_now_ms(),
        )
        return self._pending

    def retake(self) -> None:
        """Discard the pending still; the stream stays open."""
        self._pending = None

    def commit(self) -> CapturedImage:
        """Hand over the pending still and clear it."""
        if self._pending is None:
            raise CameraError("No photo captured")
        out, self._pending = self._pending, None
        return out


def camera_from_config(cfg: Dict[str, Any]) -> CameraSession:
    c = cfg.get("camera", {})
    return CameraSession(
        preferred_index=int(c.get("preferred_index", 0)),
        fallback_indices=tuple(int(i) for i in c.get("fallback_indices", (1, 2))),
        size=(int(c.get("width", 1280)), int(c.get("height", 720))),
        jpeg_quality=int(c.get("jpeg_quality", 80)),
        warmup_frames=int(c.get("warmup_frames", 3)),
    )
