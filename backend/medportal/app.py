"""FastAPI application entrypoint.

Usage:
    uvicorn medportal.app:app --reload
"""
from medportal.main import create_app

app = create_app()

__all__ = ["app"]
