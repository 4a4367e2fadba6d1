from __future__ import annotations

import math
import re
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from photomap.common.config import load_config
from photomap.common.logging_setup import get_logger, setup_logging
from photomap.common.types import PhotoRecord
from photomap.common.utils import iso_now_ms
from photomap.server.storage import StorageBackend, select_backend


log = get_logger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


class PhotoUpdate(BaseModel):
    description: str


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


def _parse_coord(raw: Optional[str]) -> Optional[float]:
    """Float value of a form coordinate; None when missing, unparseable or non-finite."""
    if raw is None or not str(raw).strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    # nan/inf cannot be rendered as JSON
    return value if math.isfinite(value) else None


def safe_filename(name: Optional[str]) -> str:
    """Basename of an uploaded file with anything outside [A-Za-z0-9._-] replaced."""
    base = Path(name or "").name
    base = _SAFE_NAME.sub("_", base).strip("._")
    return base or "photo.jpg"


def create_app(cfg: Optional[Dict[str, Any]] = None, backend: Optional[StorageBackend] = None) -> FastAPI:
    """
    Build the API. `cfg` defaults to load_config(); `backend` defaults to
    select_backend(cfg["storage"]), decided once here.
    """
    cfg = cfg or load_config()
    setup_logging(cfg.get("logging", {}).get("level"), service="photomap-server")
    storage = backend or select_backend(cfg["storage"])
    max_bytes = int(cfg["server"].get("max_upload_bytes", 10 * 1024 * 1024))

    app = FastAPI(title="PhotoMap API", version="1.0.0")
    app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        log.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return _error(500, "Internal server error")

    @app.get("/health")
    def health():
        return {"status": "ok", "storage": storage.stats()}

    @app.post("/api/photos")
    def upload_photo(
        photo: Optional[UploadFile] = File(None),
        latitude: Optional[str] = Form(None),
        longitude: Optional[str] = Form(None),
        description: Optional[str] = Form(None),
    ):
        """
        Multipart upload: `photo` file plus `latitude`, `longitude` and an
        optional `description`. Everything is validated before storage is touched.
        """
        if photo is None or not photo.filename:
            raise HTTPException(status_code=400, detail="No photo uploaded")

        lat, lon = _parse_coord(latitude), _parse_coord(longitude)
        if lat is None or lon is None:
            raise HTTPException(status_code=400, detail="Latitude and longitude are required")

        content_type = photo.content_type or ""
        if not content_type.startswith("image/"):
            raise HTTPException(status_code=400, detail="Only image files are allowed")

        data = photo.file.read(max_bytes + 1)
        if len(data) > max_bytes:
            raise HTTPException(status_code=413, detail=f"File too large (limit {max_bytes} bytes)")
        if not data:
            raise HTTPException(status_code=400, detail="No photo uploaded")

        photo_id = str(uuid.uuid4())
        record = PhotoRecord(
            id=photo_id,
            filename=f"{photo_id}-{safe_filename(photo.filename)}",
            latitude=lat,
            longitude=lon,
            timestamp=iso_now_ms(),
            description=description or "",
        )
        try:
            stored = storage.save(record, data, content_type)
        except Exception:
            log.exception("Error uploading photo")
            raise HTTPException(status_code=500, detail="Failed to upload photo")

        log.info("Photo stored", extra={"extra": {"id": stored.id, "backend": storage.name}})
        return {"success": True, "photo": stored.to_dict()}

    @app.get("/api/photos")
    def list_photos():
        try:
            return [r.to_dict() for r in storage.list()]
        except Exception:
            log.exception("Error getting photos")
            raise HTTPException(status_code=500, detail="Failed to retrieve photos")

    @app.get("/api/photos/{photo_id}")
    def get_photo(photo_id: str):
        try:
            rec = storage.get(photo_id)
        except Exception:
            log.exception("Error getting photo %s", photo_id)
            raise HTTPException(status_code=500, detail="Failed to retrieve photo")
        if rec is None:
            raise HTTPException(status_code=404, detail="Photo not found")
        return rec.to_dict()

    @app.patch("/api/photos/{photo_id}")
    def update_photo(photo_id: str, body: PhotoUpdate):
        try:
            rec = storage.update(photo_id, description=body.description)
        except Exception:
            log.exception("Error updating photo %s", photo_id)
            raise HTTPException(status_code=500, detail="Failed to update photo")
        if rec is None:
            raise HTTPException(status_code=404, detail="Photo not found")
        return rec.to_dict()

    @app.delete("/api/photos/{photo_id}")
    def delete_photo(photo_id: str):
        try:
            removed = storage.delete(photo_id)
        except Exception:
            log.exception("Error deleting photo %s", photo_id)
            raise HTTPException(status_code=500, detail="Failed to delete photo")
        if not removed:
            raise HTTPException(status_code=404, detail="Photo not found")
        return {"success": True, "id": photo_id}

    @app.get("/uploads/{filename}")
    def serve_image(filename: str):
        """Image bytes in local mode; redirect to the blob URL in cloud mode."""
        try:
            loc = storage.image_location(filename)
        except Exception:
            log.exception("Error locating image %s", filename)
            raise HTTPException(status_code=500, detail="Failed to get photo URL")
        if loc is None:
            raise HTTPException(status_code=404, detail="Image not found")
        if loc.url:
            return RedirectResponse(loc.url, status_code=302)
        return FileResponse(str(loc.path))

    return app


# -------- local dev entrypoint --------
def main() -> None:
    cfg = load_config()
    srv = cfg["server"]
    uvicorn.run(
        "photomap.server.app:create_app",
        factory=True,
        host=str(srv.get("host", "0.0.0.0")),
        port=int(srv.get("port", 3000)),
    )


if __name__ == "__main__":
    main()
