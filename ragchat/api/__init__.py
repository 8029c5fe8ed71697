"""API module for the RAG chat backend.

This module provides the FastAPI application and endpoints.
"""

from ragchat.api.main import app, create_app

__all__ = ["app", "create_app"]
