"""
Unit tests for the local and cloud storage backends
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from photomap.common.types import PhotoRecord
from photomap.server.storage import (
    CloudStorageBackend,
    LocalStorageBackend,
    StorageError,
    select_backend,
    wants_cloud,
)


def _rec(rid, ts="2024-05-01T10:00:00.000Z", desc=""):
    return PhotoRecord(id=rid, filename=f"{rid}-photo.jpg", latitude=40.7128, longitude=-74.006,
                       timestamp=ts, description=desc)


def _client_error(code, op="Op"):
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


class TestLocalStorageBackend:
    def test_save_writes_file_and_record(self, tmp_path):
        b = LocalStorageBackend(str(tmp_path))
        rec = b.save(_rec("a"), b"img", "image/jpeg")
        assert (tmp_path / "a-photo.jpg").read_bytes() == b"img"
        assert b.get("a") == rec
        assert b.image_location("a-photo.jpg").path == (tmp_path / "a-photo.jpg").resolve()

    def test_list_newest_first(self, tmp_path):
        b = LocalStorageBackend(str(tmp_path))
        b.save(_rec("old", "2024-05-01T10:00:00.000Z"), b"1", "image/jpeg")
        b.save(_rec("new", "2024-05-02T10:00:00.000Z"), b"2", "image/jpeg")
        assert [r.id for r in b.list()] == ["new", "old"]

    def test_update_description(self, tmp_path):
        b = LocalStorageBackend(str(tmp_path))
        b.save(_rec("a"), b"1", "image/jpeg")
        assert b.update("a", description="moved").description == "moved"
        assert b.get("a").description == "moved"
        assert b.update("missing", description="x") is None
        with pytest.raises(ValueError):
            b.update("a", latitude=1.0)

    def test_delete_removes_file(self, tmp_path):
        b = LocalStorageBackend(str(tmp_path))
        b.save(_rec("a"), b"1", "image/jpeg")
        assert b.delete("a") is True
        assert b.get("a") is None
        assert not (tmp_path / "a-photo.jpg").exists()
        assert b.delete("a") is False

    def test_path_traversal_rejected(self, tmp_path):
        b = LocalStorageBackend(str(tmp_path / "up"))
        (tmp_path / "secret.txt").write_text("x")
        assert b.image_location("../secret.txt") is None
        with pytest.raises(StorageError):
            b.save(PhotoRecord(id="x", filename="../x.jpg", latitude=0, longitude=0, timestamp="t"),
                   b"1", "image/jpeg")

    def test_not_durable(self, tmp_path):
        b = LocalStorageBackend(str(tmp_path))
        b.save(_rec("a"), b"1", "image/jpeg")
        assert LocalStorageBackend(str(tmp_path)).list() == []


@pytest.fixture
def cloud():
    s3, table = MagicMock(), MagicMock()
    return CloudStorageBackend(s3, table, bucket="pics", region="eu-west-1")


class TestCloudStorageBackend:
    def test_blob_url(self, cloud):
        assert cloud.blob_url("k.jpg") == "https://pics.s3.eu-west-1.amazonaws.com/k.jpg"
        local = CloudStorageBackend(MagicMock(), MagicMock(), bucket="pics", endpoint_url="http://localhost:4566/")
        assert local.blob_url("k.jpg") == "http://localhost:4566/pics/k.jpg"

    def test_save(self, cloud):
        stored = cloud.save(_rec("a", desc="hi"), b"img", "image/png")
        cloud.s3.put_object.assert_called_once_with(Bucket="pics", Key="a-photo.jpg", Body=b"img",
                                                    ContentType="image/png")
        item = cloud.table.put_item.call_args.kwargs["Item"]
        assert item["id"] == "a"
        assert item["latitude"] == Decimal("40.7128")
        assert item["blob_url"] == stored.blob_url == "https://pics.s3.eu-west-1.amazonaws.com/a-photo.jpg"

    def test_blob_failure_skips_document(self, cloud):
        cloud.s3.put_object.side_effect = _client_error("AccessDenied", "PutObject")
        with pytest.raises(StorageError, match="upload photo"):
            cloud.save(_rec("a"), b"img", "image/jpeg")
        cloud.table.put_item.assert_not_called()

    def test_document_failure_removes_orphan_blob(self, cloud):
        cloud.table.put_item.side_effect = _client_error("ProvisionedThroughputExceededException", "PutItem")
        with pytest.raises(StorageError, match="database"):
            cloud.save(_rec("a"), b"img", "image/jpeg")
        cloud.s3.delete_object.assert_called_once_with(Bucket="pics", Key="a-photo.jpg")

    def test_serializer_failure_removes_orphan_blob(self, cloud):
        cloud.table.put_item.side_effect = TypeError("Infinity and NaN not supported")
        with pytest.raises(StorageError, match="database") as ei:
            cloud.save(_rec("a"), b"img", "image/jpeg")
        assert isinstance(ei.value.__cause__, TypeError)
        cloud.s3.delete_object.assert_called_once_with(Bucket="pics", Key="a-photo.jpg")

    def test_list_paginates_and_sorts(self, cloud):
        older = {"id": "o", "filename": "o.jpg", "latitude": Decimal("1.5"), "longitude": Decimal("2"),
                 "timestamp": "2024-05-01T10:00:00.000Z", "description": ""}
        newer = dict(older, id="n", filename="n.jpg", timestamp="2024-05-02T10:00:00.000Z")
        cloud.table.scan.side_effect = [
            {"Items": [older], "LastEvaluatedKey": {"id": "o"}},
            {"Items": [newer]},
        ]
        recs = cloud.list()
        assert [r.id for r in recs] == ["n", "o"]
        assert isinstance(recs[1].latitude, float) and recs[1].latitude == 1.5
        assert cloud.table.scan.call_args_list[1].kwargs == {"ExclusiveStartKey": {"id": "o"}}

    def test_get(self, cloud):
        cloud.table.get_item.return_value = {}
        assert cloud.get("missing") is None
        cloud.table.get_item.return_value = {"Item": {"id": "a", "filename": "a.jpg", "latitude": Decimal("1"),
                                                      "longitude": Decimal("2"), "timestamp": "t"}}
        assert cloud.get("a").filename == "a.jpg"
        cloud.table.get_item.assert_called_with(Key={"id": "a"})

    def test_update(self, cloud):
        cloud.table.update_item.return_value = {"Attributes": {"id": "a", "filename": "a.jpg", "latitude": 1,
                                                               "longitude": 2, "timestamp": "t",
                                                               "description": "new"}}
        assert cloud.update("a", description="new").description == "new"
        kw = cloud.table.update_item.call_args.kwargs
        assert kw["ExpressionAttributeNames"] == {"#f0": "description"}
        assert kw["ExpressionAttributeValues"] == {":v0": "new"}

        cloud.table.update_item.side_effect = _client_error("ConditionalCheckFailedException", "UpdateItem")
        assert cloud.update("missing", description="x") is None

    def test_delete(self, cloud):
        cloud.table.delete_item.return_value = {"Attributes": {"id": "a", "filename": "a-photo.jpg"}}
        assert cloud.delete("a") is True
        cloud.s3.delete_object.assert_called_once_with(Bucket="pics", Key="a-photo.jpg")

        cloud.table.delete_item.return_value = {}
        assert cloud.delete("a") is False

    def test_image_location(self, cloud):
        assert cloud.image_location("a.jpg").url == "https://pics.s3.eu-west-1.amazonaws.com/a.jpg"
        cloud.s3.head_object.side_effect = _client_error("404", "HeadObject")
        assert cloud.image_location("gone.jpg") is None
        cloud.s3.head_object.side_effect = _client_error("403", "HeadObject")
        with pytest.raises(StorageError):
            cloud.image_location("a.jpg")

    def test_from_config_requires_bucket_and_table(self):
        with pytest.raises(ValueError, match="S3_BUCKET"):
            CloudStorageBackend.from_config({"s3_bucket": "pics"})


class TestSelectBackend:
    def test_wants_cloud(self):
        assert wants_cloud({"mode": "auto"}) is False
        assert wants_cloud({"mode": "auto", "s3_bucket": "b", "dynamodb_table": "t"}) is True
        assert wants_cloud({"mode": "local", "s3_bucket": "b", "dynamodb_table": "t"}) is False
        assert wants_cloud({"mode": "cloud"}) is True

    def test_local_when_unconfigured(self, tmp_path):
        assert isinstance(select_backend({"mode": "auto", "upload_dir": str(tmp_path)}), LocalStorageBackend)

    @patch("photomap.server.storage.CloudStorageBackend.from_config")
    def test_cloud_when_configured(self, mock_from_config, tmp_path):
        sentinel = MagicMock()
        mock_from_config.return_value = sentinel
        cfg = {"mode": "auto", "upload_dir": str(tmp_path), "s3_bucket": "b", "dynamodb_table": "t"}
        assert select_backend(cfg) is sentinel

    @patch("photomap.server.storage.CloudStorageBackend.from_config")
    def test_falls_back_to_local_on_init_failure(self, mock_from_config, tmp_path):
        mock_from_config.side_effect = RuntimeError("no credentials")
        cfg = {"mode": "cloud", "upload_dir": str(tmp_path)}
        assert isinstance(select_backend(cfg), LocalStorageBackend)
