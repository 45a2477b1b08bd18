"""
asgi.py -- ASGI entry point for AuthGate.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers and the test suite can
import the application object without going through a CLI module.
"""

from api.main import app

__all__ = ["app"]
