"""
HTTP API for the trigger core.

This package provides a single FastAPI application that exposes:
- Trigger, broadcast and cancel endpoints for events
- Topic exploration for the calling tenant

Run with: uv run uvicorn api.main:app --reload
"""

from api.main import app

__all__ = ["app"]
