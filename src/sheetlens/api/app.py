"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import settings
from ..modes.router import OperationRouter
from ..ops import SheetLensEngine
from .routes import router

# Global engine instance
_engine: Optional[SheetLensEngine] = None
_router: Optional[OperationRouter] = None


def get_engine() -> SheetLensEngine:
    """Get the global engine instance."""
    global _engine
    if _engine is None:
        _engine = SheetLensEngine()
    return _engine


def get_router() -> OperationRouter:
    """Get the global operation router."""
    global _router
    if _router is None:
        _router = OperationRouter(get_engine())
    return _router


def set_engine(engine: Optional[SheetLensEngine]) -> None:
    """Replace the global engine (and its router)."""
    global _engine, _router
    _engine = engine
    _router = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    # Startup
    get_router()
    yield
    # Shutdown
    await get_engine().shutdown()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="SheetLens",
        description="Preview and approval engine for AI-proposed spreadsheet edits",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API routes
    app.include_router(router, prefix="/api")

    return app
