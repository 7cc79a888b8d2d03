"""FastAPI application exposing the order and payment workflows."""

from orderflow.api.app import create_app

__all__ = ["create_app"]
