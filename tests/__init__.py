"""
PhotoMap Test Suite

Structure:
- unit/: tests for individual components (types, config, geolocation, camera,
  record store, workflow, API client, storage backends)
- integration/: HTTP API through FastAPI's TestClient and the client CLI
"""
