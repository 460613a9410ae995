"""
asgi.py -- ASGI entry point for the CyberShield backend.

Run with:  uvicorn asgi:app --reload

api/main.py owns the application object; this module only re-exports it so
the process manager has one stable import path.
"""

from api.main import app

__all__ = ["app"]
