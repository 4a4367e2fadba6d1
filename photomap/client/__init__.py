"""
PhotoMap capture client

Provides:
- Geolocation: Geolocator over a PositionProvider (IP lookup or static fix)
- Camera: CameraSession (OpenCV) with capture / retake / commit and scoped release
- LocalRecordStore: photo records in a JSON key-value file
- CaptureWorkflow: locate -> camera -> capture -> save locally or upload
- PhotoApiClient: requests-based client for the server API
- A small CLI in service.py

Usage examples:
    from photomap.client.geolocation import Geolocator, StaticPositionProvider
    from photomap.client.record_store import LocalRecordStore
"""
