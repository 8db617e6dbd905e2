"""HTTP transport for SheetLens."""

from .app import create_app, get_engine, get_router, set_engine

__all__ = ["create_app", "get_engine", "get_router", "set_engine"]
