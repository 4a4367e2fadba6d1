from __future__ import annotations

import base64
from dataclasses import dataclass, asdict
from typing import Optional, Any, Dict


IsoTime = str


@dataclass(slots=True)
class Position:
    """
    Single geolocation fix.

    Attributes:
        latitude, longitude: WGS84 degrees.
        accuracy_m: reported horizontal accuracy in meters (None if unknown).
        timestamp: ISO-8601 (UTC) time the fix was obtained.
        source: provider name that produced the fix.
    """
    latitude: float
    longitude: float
    accuracy_m: Optional[float]
    timestamp: IsoTime
    source: str = "unknown"

    def __post_init__(self) -> None:
        self.latitude = float(self.latitude)
        self.longitude = float(self.longitude)
        if self.accuracy_m is not None:
            self.accuracy_m = float(self.accuracy_m)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CapturedImage:
    """
    A still frame encoded for storage.

    Attributes:
        data: encoded image bytes (JPEG by default).
        width, height: frame dimensions in pixels.
        mime_type: content type of `data`.
        timestamp: ISO-8601 (UTC) capture time.
    """
    data: bytes
    width: int
    height: int
    timestamp: IsoTime
    mime_type: str = "image/jpeg"

    def __post_init__(self) -> None:
        if not self.data:
            raise ValueError("captured image is empty")
        if not self.mime_type.startswith("image/"):
            raise ValueError("mime_type must be an image/* type")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"

    def to_meta(self) -> Dict[str, Any]:
        """Metadata without image bytes (safe to log/serialize)."""
        return {
            "timestamp": self.timestamp,
            "width": self.width,
            "height": self.height,
            "mime_type": self.mime_type,
            "bytes": len(self.data),
        }


@dataclass(slots=True)
class PhotoRecord:
    """
    Stored metadata for one photo plus a reference to its image bytes.

    The image is carried inline as a data URL (`image_data`, client store)
    or as a blob-store URL (`blob_url`, cloud mode). Local server mode
    carries neither; the bytes are served from /uploads/<filename>.
    """
    id: str
    filename: str
    latitude: float
    longitude: float
    timestamp: IsoTime
    description: str = ""
    image_data: Optional[str] = None
    blob_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("id must be non-empty")
        self.latitude = float(self.latitude)
        self.longitude = float(self.longitude)
        if self.description is None:
            self.description = ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        # image fields are mutually optional; omit the unset one(s)
        for k in ("image_data", "blob_url"):
            if d[k] is None:
                del d[k]
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PhotoRecord":
        return cls(
            id=str(d["id"]),
            filename=str(d["filename"]),
            latitude=float(d["latitude"]),
            longitude=float(d["longitude"]),
            timestamp=str(d["timestamp"]),
            description=d.get("description") or "",
            image_data=d.get("image_data"),
            blob_url=d.get("blob_url"),
        )

    def image_bytes(self) -> Optional[bytes]:
        """Decode inline `image_data`; None when the record has no inline image."""
        if not self.image_data:
            return None
        _, _, payload = self.image_data.partition(",")
        return base64.b64decode(payload)
