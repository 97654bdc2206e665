#!/usr/bin/env python3
"""
Development server launcher for the codementor verification API.

This script starts the FastAPI server with appropriate settings for development.
For production, you'd use a proper ASGI server deployment.
"""

import logging
import uvicorn
from pathlib import Path

project_root = Path(__file__).parent
package_path = project_root / "codementor"

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger = logging.getLogger("run_server")
    logger.info("Starting codementor development server")
    logger.info(f"Project root: {project_root}")
    logger.info("Server will be available at: http://localhost:8000")
    logger.info("API documentation at: http://localhost:8000/docs")

    uvicorn.run(
        "codementor.api.main:app",
        host="0.0.0.0",  # Accept connections from any IP
        port=8000,
        reload=True,     # Auto-reload on code changes (development only)
        reload_dirs=[str(package_path)],
        log_level="info"
    )
