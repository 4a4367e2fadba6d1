"""
PhotoMap: geotagged photo capture and storage.

Structure:
- common/: shared types, helpers, logging and config
- client/: geolocation, camera capture, local record store, capture CLI
- server/: HTTP API and the local / cloud storage backends
"""

__version__ = "1.0.0"
