"""
FastAPI application entry point.

Creates the model manager and the verification engine once at startup and
mounts the health and verification routers.
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from codementor import __version__
from .routers import health, verification
from codementor.models.manager import ModelManager, default_config_path
from codementor.pipeline.verification.verification import VerificationEngine

logger = logging.getLogger(__name__)

# Global application state
app_state = {}

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Expensive resources are initialised once at startup and cleaned up at
    shutdown.
    """
    config_path = default_config_path()
    logger.info(f"Starting codementor API server with config {config_path}")
    model_manager = ModelManager(config_path=config_path)
    app_state["model_manager"] = model_manager
    app_state["engine"] = VerificationEngine(model_manager)
    logger.info("Verification engine ready to accept requests")

    yield  # Server runs here

    logger.info("Shutting down codementor API server")
    model_manager.cleanup()
    app_state.clear()

def create_app() -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.
    """
    app = FastAPI(
        title="codementor Verification API",
        description="Compiles and tests learner submissions and explains failing tests with code-free hints",
        version=__version__,
        lifespan=lifespan
    )

    # Configure CORS middleware for frontend communication
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],  # Common frontend ports
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(verification.router, prefix="/api/v1/verification", tags=["verification"])

    return app

# Create the FastAPI app instance
app = create_app()

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with basic API information."""
    return {
        "name": "codementor Verification API",
        "version": __version__,
        "status": "operational",
        "endpoints": {
            "health": "/health",
            "verification": "/api/v1/verification",
            "docs": "/docs",
            "redoc": "/redoc"
        }
    }
