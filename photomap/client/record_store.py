from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from photomap.common.types import PhotoRecord
from photomap.common.utils import base36_token, newest_first


log = logging.getLogger(__name__)


def generate_id() -> str:
    return base36_token(9)


class LocalRecordStore:
    """
    Photo records kept as one JSON array under a single key of a JSON
    key-value file:

        { "photoMapPhotos": [ {record}, {record}, ... ], "<other key>": ... }

    Every mutation rewrites the whole array (read-modify-write), so this is
    only meant for small personal collections.
    """

    def __init__(self, path: str = "data/photos.json", key: str = "photoMapPhotos"):
        self.path = Path(path)
        self.key = key

    # -------- public API --------

    def list(self) -> List[PhotoRecord]:
        return newest_first(self._read())

    def get(self, record_id: str) -> Optional[PhotoRecord]:
        for r in self._read():
            if r.id == record_id:
                return r
        return None

    def create(self, record: PhotoRecord) -> PhotoRecord:
        records = self._read()
        records.append(record)
        self._write(records)
        log.info("Photo saved locally", extra={"extra": {"id": record.id, "filename": record.filename}})
        return record

    def delete_one(self, record_id: str) -> bool:
        records = self._read()
        kept = [r for r in records if r.id != record_id]
        if len(kept) == len(records):
            return False
        self._write(kept)
        return True

    def delete_all(self) -> None:
        kv = self._read_kv()
        if kv.pop(self.key, None) is not None:
            self._write_kv(kv)

    # -------- internals --------

    def _read_kv(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        kv = json.loads(text)
        if not isinstance(kv, dict):
            raise ValueError(f"Record store is not a JSON object: {self.path}")
        return kv

    def _write_kv(self, kv: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".photos-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(kv, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _read(self) -> List[PhotoRecord]:
        raw = self._read_kv().get(self.key) or []
        return [PhotoRecord.from_dict(d) for d in raw]

    def _write(self, records: List[PhotoRecord]) -> None:
        kv = self._read_kv()
        kv[self.key] = [r.to_dict() for r in records]
        self._write_kv(kv)
