"""
PhotoMap API server

Provides:
- FastAPI app factory (app.create_app) with the /api/photos and /uploads routes
- Storage backends (storage.LocalStorageBackend, storage.CloudStorageBackend)
  chosen once at start-up by storage.select_backend
"""
