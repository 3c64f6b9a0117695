"""
HTTP API of the Account service.

This package provides a single FastAPI application that exposes:
- CRUD endpoints for users, institutions and children groups
- Inspection and manual retry of the integration events waiting in the store
- A health check reporting the bus and retry task state
"""

from api.main import app

__all__ = ["app"]
