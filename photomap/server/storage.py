from __future__ import annotations

"""
Storage backends for the API server.

    LocalStorageBackend  image bytes in a flat directory, records in process memory
                         (lost on restart)
    CloudStorageBackend  image bytes in an S3 bucket, one DynamoDB item per record

select_backend() picks one at start-up from the `storage` config section.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from photomap.common.types import PhotoRecord
from photomap.common.utils import newest_first


log = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("description",)


class StorageError(RuntimeError):
    """Backend failure (I/O, SDK or service error)."""


@dataclass(frozen=True)
class ImageLocation:
    """Where /uploads/<filename> should be served from: a local file or a URL."""
    path: Optional[Path] = None
    url: Optional[str] = None


class StorageBackend(ABC):
    name: str = "abstract"

    @abstractmethod
    def save(self, record: PhotoRecord, image: bytes, content_type: str) -> PhotoRecord:
        """Persist image bytes and record; returns the stored record."""

    @abstractmethod
    def list(self) -> List[PhotoRecord]:
        """All records, newest first."""

    @abstractmethod
    def get(self, photo_id: str) -> Optional[PhotoRecord]:
        ...

    @abstractmethod
    def update(self, photo_id: str, **fields: Any) -> Optional[PhotoRecord]:
        """Overwrite metadata fields; None if the record does not exist."""

    @abstractmethod
    def delete(self, photo_id: str) -> bool:
        """Remove record and image; False if the record does not exist."""

    @abstractmethod
    def image_location(self, filename: str) -> Optional[ImageLocation]:
        ...

    def stats(self) -> Dict[str, Any]:
        return {"backend": self.name}


def _check_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    bad = set(fields) - set(UPDATABLE_FIELDS)
    if bad:
        raise ValueError(f"Fields not updatable: {sorted(bad)}")
    return fields


# -------------------------
# Local
# -------------------------
class LocalStorageBackend(StorageBackend):
    name = "local"

    def __init__(self, upload_dir: str = "uploads"):
        self.upload_dir = Path(upload_dir).resolve()
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self._records: List[PhotoRecord] = []
        self._lock = threading.Lock()

    def save(self, record: PhotoRecord, image: bytes, content_type: str) -> PhotoRecord:
        target = self._resolve(record.filename)
        if target is None:
            raise StorageError(f"Invalid filename: {record.filename!r}")
        try:
            target.write_bytes(image)
        except OSError as e:
            raise StorageError(f"Failed to write image: {e}") from e
        with self._lock:
            self._records.append(record)
        return record

    def list(self) -> List[PhotoRecord]:
        with self._lock:
            return newest_first(self._records)

    def get(self, photo_id: str) -> Optional[PhotoRecord]:
        with self._lock:
            return next((r for r in self._records if r.id == photo_id), None)

    def update(self, photo_id: str, **fields: Any) -> Optional[PhotoRecord]:
        _check_fields(fields)
        with self._lock:
            for i, r in enumerate(self._records):
                if r.id == photo_id:
                    self._records[i] = replace(r, **fields)
                    return self._records[i]
        return None

    def delete(self, photo_id: str) -> bool:
        with self._lock:
            rec = next((r for r in self._records if r.id == photo_id), None)
            if rec is None:
                return False
            self._records = [r for r in self._records if r.id != photo_id]
        path = self._resolve(rec.filename)
        if path is not None:
            path.unlink(missing_ok=True)
        return True

    def image_location(self, filename: str) -> Optional[ImageLocation]:
        path = self._resolve(filename)
        if path is None or not path.is_file():
            return None
        return ImageLocation(path=path)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            n = len(self._records)
        return {"backend": self.name, "records": n, "upload_dir": str(self.upload_dir)}

    def _resolve(self, filename: str) -> Optional[Path]:
        # reject anything that escapes the upload directory
        p = (self.upload_dir / filename).resolve()
        if p.parent != self.upload_dir:
            return None
        return p


# -------------------------
# Cloud (S3 + DynamoDB)
# -------------------------
def _to_item(record: PhotoRecord) -> Dict[str, Any]:
    item = record.to_dict()
    item.pop("image_data", None)
    # DynamoDB rejects float; numbers travel as Decimal
    item["latitude"] = Decimal(str(record.latitude))
    item["longitude"] = Decimal(str(record.longitude))
    return item


def _from_item(item: Dict[str, Any]) -> PhotoRecord:
    return PhotoRecord.from_dict(item)


def _is_not_found(e: ClientError) -> bool:
    code = str(e.response.get("Error", {}).get("Code", ""))
    return code in ("404", "NoSuchKey", "NotFound")


class CloudStorageBackend(StorageBackend):
    name = "cloud"

    def __init__(
        self,
        s3_client: Any,
        table: Any,
        *,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
    ):
        self.s3 = s3_client
        self.table = table
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None

    @classmethod
    def from_config(cls, storage: Dict[str, Any]) -> "CloudStorageBackend":
        bucket = storage.get("s3_bucket")
        table_name = storage.get("dynamodb_table")
        if not bucket or not table_name:
            raise ValueError(
                "Cloud storage configuration missing. "
                "Set S3_BUCKET and DYNAMODB_TABLE (or storage.s3_bucket / storage.dynamodb_table)."
            )
        region = storage.get("s3_region") or "us-east-1"
        endpoint_url = storage.get("s3_endpoint_url")
        kw: Dict[str, Any] = {"region_name": region}
        if storage.get("aws_access_key_id") and storage.get("aws_secret_access_key"):
            kw["aws_access_key_id"] = storage["aws_access_key_id"]
            kw["aws_secret_access_key"] = storage["aws_secret_access_key"]
        s3 = boto3.client("s3", endpoint_url=endpoint_url, **kw)
        table = boto3.resource("dynamodb", endpoint_url=endpoint_url, **kw).Table(table_name)
        # fail fast on bad credentials / missing table
        table.load()
        return cls(s3, table, bucket=bucket, region=region, endpoint_url=endpoint_url)

    def blob_url(self, key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def save(self, record: PhotoRecord, image: bytes, content_type: str) -> PhotoRecord:
        key = record.filename
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=image, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            log.error("Error uploading photo to blob storage: %s", e)
            raise StorageError("Failed to upload photo to storage") from e

        stored = replace(record, blob_url=self.blob_url(key), image_data=None)
        try:
            self.table.put_item(Item=_to_item(stored), ConditionExpression="attribute_not_exists(id)")
        except Exception as e:
            # serializer errors (TypeError/ValueError) leave the blob orphaned too
            log.error("Error saving photo document: %s; removing orphan blob %s", e, key)
            self._delete_blob(key)
            raise StorageError("Failed to save photo to database") from e
        return stored

    def list(self) -> List[PhotoRecord]:
        items: List[Dict[str, Any]] = []
        kw: Dict[str, Any] = {}
        try:
            while True:
                page = self.table.scan(**kw)
                items.extend(page.get("Items", []))
                last = page.get("LastEvaluatedKey")
                if not last:
                    break
                kw["ExclusiveStartKey"] = last
        except (ClientError, BotoCoreError) as e:
            log.error("Error listing photo documents: %s", e)
            raise StorageError("Failed to retrieve photos from database") from e
        return newest_first(_from_item(i) for i in items)

    def get(self, photo_id: str) -> Optional[PhotoRecord]:
        try:
            item = self.table.get_item(Key={"id": photo_id}).get("Item")
        except (ClientError, BotoCoreError) as e:
            log.error("Error getting photo document %s: %s", photo_id, e)
            raise StorageError("Failed to retrieve photo from database") from e
        return _from_item(item) if item else None

    def update(self, photo_id: str, **fields: Any) -> Optional[PhotoRecord]:
        _check_fields(fields)
        if not fields:
            return self.get(photo_id)
        names = {f"#f{i}": k for i, k in enumerate(fields)}
        values = {f":v{i}": v for i, v in enumerate(fields.values())}
        expr = "SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(fields)))
        try:
            out = self.table.update_item(
                Key={"id": photo_id},
                UpdateExpression=expr,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression="attribute_exists(id)",
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return None
            log.error("Error updating photo document %s: %s", photo_id, e)
            raise StorageError("Failed to update photo in database") from e
        except BotoCoreError as e:
            raise StorageError("Failed to update photo in database") from e
        return _from_item(out["Attributes"])

    def delete(self, photo_id: str) -> bool:
        try:
            out = self.table.delete_item(Key={"id": photo_id}, ReturnValues="ALL_OLD")
        except (ClientError, BotoCoreError) as e:
            log.error("Error deleting photo document %s: %s", photo_id, e)
            raise StorageError("Failed to delete photo from database") from e
        old = out.get("Attributes")
        if not old:
            return False
        self._delete_blob(str(old["filename"]))
        return True

    def image_location(self, filename: str) -> Optional[ImageLocation]:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=filename)
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise StorageError("Failed to get photo URL") from e
        except BotoCoreError as e:
            raise StorageError("Failed to get photo URL") from e
        return ImageLocation(url=self.blob_url(filename))

    def stats(self) -> Dict[str, Any]:
        return {"backend": self.name, "bucket": self.bucket, "table": getattr(self.table, "name", None)}

    def _delete_blob(self, key: str) -> None:
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            log.error("Error deleting blob %s: %s", key, e)


# -------------------------
# Selection
# -------------------------
def wants_cloud(storage: Dict[str, Any]) -> bool:
    mode = str(storage.get("mode", "auto")).lower()
    if mode == "local":
        return False
    if mode == "cloud":
        return True
    return bool(storage.get("s3_bucket") and storage.get("dynamodb_table"))


def select_backend(storage: Dict[str, Any]) -> StorageBackend:
    """
    Cloud when configured (or forced), else local. A cloud backend that
    fails to initialise logs the error and falls back to local.
    """
    upload_dir = storage.get("upload_dir", "uploads")
    if not wants_cloud(storage):
        log.info("Using local storage mode", extra={"extra": {"upload_dir": upload_dir}})
        return LocalStorageBackend(upload_dir)
    try:
        backend = CloudStorageBackend.from_config(storage)
        log.info("Connected to cloud storage", extra={"extra": backend.stats()})
        return backend
    except Exception:
        log.exception("Failed to initialize cloud storage; falling back to local storage mode")
        return LocalStorageBackend(upload_dir)
