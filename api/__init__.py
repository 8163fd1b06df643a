"""
HTTP adapter for the notification dispatch service.

Exposes the notification and template endpoints plus health probes as a
single FastAPI application.
"""

from api.main import app

__all__ = ["app"]
