from __future__ import annotations

"""
Locate -> open camera -> capture (-> retake) -> save locally or upload.

The camera is released after every commit and on cancel, so the device is
never held once a capture attempt ends.
"""

import logging
from typing import Optional

from photomap.client.api_client import PhotoApiClient
from photomap.client.camera import CameraSession
from photomap.client.geolocation import Geolocator
from photomap.client.record_store import LocalRecordStore, generate_id
from photomap.common.types import CapturedImage, PhotoRecord, Position
from photomap.common.utils import epoch_ms, iso_now_ms


log = logging.getLogger(__name__)


class CaptureStateError(RuntimeError):
    """Workflow step invoked out of order (e.g. camera before location)."""


class CaptureWorkflow:
    def __init__(
        self,
        geolocator: Geolocator,
        camera: CameraSession,
        store: LocalRecordStore,
        api: Optional[PhotoApiClient] = None,
    ):
        self.geolocator = geolocator
        self.camera = camera
        self.store = store
        self.api = api
        self.current_position: Optional[Position] = None
        self.captured: Optional[CapturedImage] = None

    def locate(self) -> Position:
        self.current_position = self.geolocator.get_current_position()
        return self.current_position

    def start_camera(self) -> None:
        if self.current_position is None:
            raise CaptureStateError("Locate yourself first to get your current position")
        self.camera.open()

    def capture(self) -> CapturedImage:
        self.captured = self.camera.capture()
        return self.captured

    def retake(self) -> None:
        self.camera.retake()
        self.captured = None

    def save_locally(self, description: str = "") -> PhotoRecord:
        image, pos = self._ready()
        try:
            record = PhotoRecord(
                id=generate_id(),
                filename=f"photo-{epoch_ms()}.jpg",
                latitude=pos.latitude,
                longitude=pos.longitude,
                timestamp=iso_now_ms(),
                description=description or "",
                image_data=image.to_data_url(),
            )
            return self.store.create(record)
        finally:
            self.reset()

    def upload(self, description: str = "") -> PhotoRecord:
        if self.api is None:
            raise CaptureStateError("No API client configured for upload")
        image, pos = self._ready()
        try:
            record = self.api.upload(image, pos, description=description,
                                     filename=f"photo-{epoch_ms()}.jpg")
            log.info("Photo uploaded", extra={"extra": {"id": record.id}})
            return record
        finally:
            self.reset()

    def cancel(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.camera.release()
        self.captured = None

    def _ready(self) -> tuple[CapturedImage, Position]:
        if self.captured is None or self.current_position is None:
            raise CaptureStateError("No photo captured or location not available")
        self.camera.commit()
        return self.captured, self.current_position

    def __enter__(self) -> "CaptureWorkflow":
        return self

    def __exit__(self, *exc) -> None:
        self.reset()
