from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from photomap.common.types import CapturedImage, PhotoRecord, Position


log = logging.getLogger(__name__)


class ApiError(RuntimeError):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code


class PhotoApiClient:
    def __init__(self, base_url: str = "http://localhost:3000", session: Optional[requests.Session] = None,
                 timeout: float = 30.0):
        """
        Thin client for the PhotoMap HTTP API.

        Params:
            base_url: server root, e.g. http://localhost:3000
            session: optional requests.Session for connection reuse
            timeout: per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    # ----------------------------
    # Public API
    # ----------------------------
    def upload(
        self,
        image: CapturedImage,
        position: Position,
        *,
        description: str = "",
        filename: str = "photo.jpg",
    ) -> PhotoRecord:
        files = {"photo": (filename, image.data, image.mime_type)}
        data = {
            "latitude": repr(position.latitude),
            "longitude": repr(position.longitude),
            "description": description,
        }
        body = self._request("POST", "/api/photos", files=files, data=data)
        return PhotoRecord.from_dict(body["photo"])

    def list(self) -> List[PhotoRecord]:
        return [PhotoRecord.from_dict(d) for d in self._request("GET", "/api/photos")]

    def get(self, photo_id: str) -> Optional[PhotoRecord]:
        try:
            return PhotoRecord.from_dict(self._request("GET", f"/api/photos/{photo_id}"))
        except ApiError as e:
            if e.status_code == 404:
                return None
            raise

    def update_description(self, photo_id: str, description: str) -> PhotoRecord:
        body = self._request("PATCH", f"/api/photos/{photo_id}", json={"description": description})
        return PhotoRecord.from_dict(body)

    def delete(self, photo_id: str) -> bool:
        try:
            self._request("DELETE", f"/api/photos/{photo_id}")
        except ApiError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    def fetch_image(self, filename: str) -> bytes:
        """Image bytes; follows the redirect to blob storage in cloud mode."""
        r = self.session.get(f"{self.base_url}/uploads/{filename}", timeout=self.timeout, allow_redirects=True)
        if r.status_code != 200:
            raise ApiError(r.status_code, _error_text(r))
        return r.content

    # ----------------------------
    # internals
    # ----------------------------
    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        r = self.session.request(method, url, timeout=self.timeout, **kwargs)
        if r.status_code >= 400:
            log.warning("API %s %s failed: %s", method, path, r.status_code)
            raise ApiError(r.status_code, _error_text(r))
        return r.json()


def _error_text(r: requests.Response) -> str:
    try:
        body: Dict[str, Any] = r.json()
    except ValueError:
        return r.text[:200]
    return str(body.get("error") or body.get("detail") or body)
