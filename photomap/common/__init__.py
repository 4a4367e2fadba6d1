"""
Shared pieces used by both the capture client and the API server:
record/position types, time and id helpers, JSON logging, YAML config.
"""
