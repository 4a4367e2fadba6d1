"""
Unit tests for the capture workflow
"""

import pytest
from unittest.mock import Mock

from photomap.client.geolocation import Geolocator, StaticPositionProvider
from photomap.client.record_store import LocalRecordStore
from photomap.client.workflow import CaptureStateError, CaptureWorkflow
from photomap.common.types import CapturedImage, PhotoRecord


IMG = CapturedImage(data=b"\xff\xd8jpegbytes", width=4, height=3, timestamp="2024-05-01T10:00:00.000Z")


@pytest.fixture
def camera():
    cam = Mock()
    cam.capture.return_value = IMG
    cam.commit.return_value = IMG
    return cam


@pytest.fixture
def workflow(tmp_path, camera):
    return CaptureWorkflow(
        geolocator=Geolocator(StaticPositionProvider(48.85, 2.35)),
        camera=camera,
        store=LocalRecordStore(str(tmp_path / "kv.json")),
    )


class TestCaptureWorkflow:
    def test_camera_requires_location(self, workflow, camera):
        with pytest.raises(CaptureStateError, match="Locate"):
            workflow.start_camera()
        camera.open.assert_not_called()

    def test_save_locally(self, workflow, camera):
        workflow.locate()
        workflow.start_camera()
        workflow.capture()
        rec = workflow.save_locally("cafe")

        assert rec.latitude == 48.85 and rec.longitude == 2.35
        assert rec.description == "cafe"
        assert rec.filename.startswith("photo-") and rec.filename.endswith(".jpg")
        assert rec.image_bytes() == IMG.data
        assert workflow.store.get(rec.id) == rec
        camera.release.assert_called_once()
        assert workflow.captured is None

    def test_commit_without_capture(self, workflow, camera):
        workflow.locate()
        workflow.start_camera()
        with pytest.raises(CaptureStateError, match="No photo captured"):
            workflow.save_locally()
        assert workflow.store.list() == []

    def test_retake_discards(self, workflow, camera):
        workflow.locate()
        workflow.start_camera()
        workflow.capture()
        workflow.retake()
        camera.retake.assert_called_once()
        assert workflow.captured is None

    def test_release_when_store_fails(self, workflow, camera):
        workflow.store = Mock()
        workflow.store.create.side_effect = OSError("disk full")
        workflow.locate()
        workflow.start_camera()
        workflow.capture()
        with pytest.raises(OSError):
            workflow.save_locally()
        camera.release.assert_called_once()

    def test_cancel_and_context_release(self, workflow, camera):
        with workflow:
            workflow.locate()
            workflow.start_camera()
            workflow.cancel()
        assert camera.release.call_count == 2

    def test_upload(self, workflow, camera):
        api = Mock()
        api.upload.return_value = PhotoRecord(
            id="srv-1", filename="srv-1-photo.jpg", latitude=48.85, longitude=2.35,
            timestamp="2024-05-01T10:00:00.000Z",
        )
        workflow.api = api
        workflow.locate()
        workflow.start_camera()
        workflow.capture()
        rec = workflow.upload("tower")

        assert rec.id == "srv-1"
        args, kwargs = api.upload.call_args
        assert args[0] is IMG
        assert args[1].latitude == 48.85
        assert kwargs["description"] == "tower"
        camera.release.assert_called_once()
        assert workflow.store.list() == []

    def test_upload_without_api(self, workflow):
        with pytest.raises(CaptureStateError, match="No API client"):
            workflow.upload()
