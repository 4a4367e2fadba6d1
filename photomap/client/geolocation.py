from __future__ import annotations

"""
Single-shot geolocation.

Usage:
    loc = Geolocator(IpGeolocationProvider())
    pos = loc.get_current_position()   # Position(latitude=..., longitude=...)

A fix younger than `maximum_age_s` is reused without asking the provider
again. There is no retry: on PositionError the caller re-invokes.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import requests

from photomap.common.types import Position
from photomap.common.utils import iso_now_ms


log = logging.getLogger(__name__)


PERMISSION_DENIED = "PERMISSION_DENIED"
POSITION_UNAVAILABLE = "POSITION_UNAVAILABLE"
TIMEOUT = "TIMEOUT"


class UnsupportedError(RuntimeError):
    """No location capability is available on this platform/config."""


class PositionError(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


class PositionProvider(Protocol):
    name: str

    def request_position(self, *, timeout_s: float, high_accuracy: bool) -> Position:
        ...


@dataclass
class StaticPositionProvider:
    """Returns a fixed, configured position (fixed installs, demos, tests)."""
    latitude: float
    longitude: float
    accuracy_m: Optional[float] = None
    name: str = "static"

    def request_position(self, *, timeout_s: float, high_accuracy: bool) -> Position:
        return Position(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy_m=self.accuracy_m,
            timestamp=iso_now_ms(),
            source=self.name,
        )


class IpGeolocationProvider:
    """
    Coarse position from an IP geolocation JSON endpoint.

    Understands the common response shapes:
      {"latitude": .., "longitude": ..}            (ipapi.co)
      {"lat": .., "lon": ..}                       (ip-api.com)
      {"loc": "lat,lon"}                           (ipinfo.io)
    """
    name = "ip"

    # city-level accuracy; these services do not report one
    DEFAULT_ACCURACY_M = 5000.0
    MAX_BODY_BYTES = 64 * 1024

    def __init__(
        self,
        url: str = "https://ipapi.co/json/",
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.session = session or requests.Session()
        self.clock = clock

    def request_position(self, *, timeout_s: float, high_accuracy: bool) -> Position:
        if high_accuracy:
            log.debug("High-accuracy hint ignored by IP provider")
        # requests applies its timeout per connect/read; the deadline bounds the whole exchange
        deadline = self.clock() + timeout_s
        try:
            r = self.session.get(self.url, timeout=(timeout_s, timeout_s), stream=True)
        except requests.Timeout as e:
            raise PositionError(TIMEOUT, f"Position request timed out after {timeout_s}s") from e
        except requests.RequestException as e:
            raise PositionError(POSITION_UNAVAILABLE, f"Position request failed: {e}") from e

        try:
            if r.status_code in (401, 403, 429):
                raise PositionError(PERMISSION_DENIED, f"Position request denied ({r.status_code})")
            if r.status_code != 200:
                raise PositionError(POSITION_UNAVAILABLE, f"Position request failed ({r.status_code})")
            body = self._read_body(r, deadline, timeout_s)
        finally:
            r.close()

        try:
            lat, lon = self._parse(json.loads(body))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise PositionError(POSITION_UNAVAILABLE, f"Malformed position response: {e}") from e

        return Position(
            latitude=lat,
            longitude=lon,
            accuracy_m=self.DEFAULT_ACCURACY_M,
            timestamp=iso_now_ms(),
            source=self.name,
        )

    def _read_body(self, r: requests.Response, deadline: float, timeout_s: float) -> bytes:
        chunks = []
        size = 0
        try:
            if self.clock() > deadline:
                raise PositionError(TIMEOUT, f"Position request timed out after {timeout_s}s")
            for chunk in r.iter_content(chunk_size=4096):
                chunks.append(chunk)
                size += len(chunk)
                if size > self.MAX_BODY_BYTES:
                    raise PositionError(POSITION_UNAVAILABLE, "Position response too large")
                if self.clock() > deadline:
                    raise PositionError(TIMEOUT, f"Position request timed out after {timeout_s}s")
        except requests.Timeout as e:
            raise PositionError(TIMEOUT, f"Position request timed out after {timeout_s}s") from e
        except requests.RequestException as e:
            raise PositionError(POSITION_UNAVAILABLE, f"Position request failed: {e}") from e
        return b"".join(chunks)

    @staticmethod
    def _parse(body: Dict[str, Any]) -> tuple[float, float]:
        if body.get("error"):
            raise ValueError(str(body.get("reason") or body.get("message") or "provider error"))
        if "latitude" in body and "longitude" in body:
            return float(body["latitude"]), float(body["longitude"])
        if "lat" in body and "lon" in body:
            return float(body["lat"]), float(body["lon"])
        if "loc" in body:
            lat, lon = str(body["loc"]).split(",")
            return float(lat), float(lon)
        raise KeyError("no coordinates in response")


class Geolocator:
    """
    Wraps a PositionProvider into one-shot requests with a timeout,
    cached-position tolerance and an accuracy hint.
    """

    def __init__(
        self,
        provider: Optional[PositionProvider],
        *,
        timeout_s: float = 10.0,
        maximum_age_s: float = 60.0,
        enable_high_accuracy: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.timeout_s = float(timeout_s)
        self.maximum_age_s = float(maximum_age_s)
        self.enable_high_accuracy = enable_high_accuracy
        self._clock = clock
        self._last: Optional[Position] = None
        self._last_at: float = 0.0

    @property
    def supported(self) -> bool:
        return self.provider is not None

    def get_current_position(self) -> Position:
        if self.provider is None:
            raise UnsupportedError("Geolocation is not supported")

        now = self._clock()
        if self._last is not None and (now - self._last_at) <= self.maximum_age_s:
            return self._last

        pos = self.provider.request_position(
            timeout_s=self.timeout_s, high_accuracy=self.enable_high_accuracy
        )
        self._last, self._last_at = pos, self._clock()
        log.info("Position acquired", extra={"extra": pos.to_dict()})
        return pos


def geolocator_from_config(cfg: Dict[str, Any]) -> Geolocator:
    """Build a Geolocator from the `geolocation` config section."""
    g = cfg.get("geolocation", {})
    kind = str(g.get("provider", "ip")).lower()
    provider: Optional[PositionProvider]
    if kind == "static":
        s = g.get("static", {})
        provider = StaticPositionProvider(
            latitude=float(s["latitude"]),
            longitude=float(s["longitude"]),
            accuracy_m=s.get("accuracy_m"),
        )
    elif kind == "ip":
        provider = IpGeolocationProvider(url=g.get("ip_url", "https://ipapi.co/json/"))
    else:
        provider = None
    return Geolocator(
        provider,
        timeout_s=float(g.get("timeout_s", 10.0)),
        maximum_age_s=float(g.get("maximum_age_s", 60.0)),
        enable_high_accuracy=bool(g.get("enable_high_accuracy", True)),
    )
