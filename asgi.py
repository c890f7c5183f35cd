"""
asgi.py -- ASGI entry point for Marquee.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port $PORT
"""

from api.main import app

__all__ = ["app"]
