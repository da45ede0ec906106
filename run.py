#!/usr/bin/env python3
"""
Run script for the Graph Engine API.

Usage:
    python run.py

Or with custom settings:
    HOST=127.0.0.1 PORT=8080 LOG_LEVEL=DEBUG python run.py
"""

import uvicorn

from graph_engine.config import settings


def main():
    """Serve the FastAPI application."""
    print(f"{settings.APP_NAME} v{settings.APP_VERSION}")
    print(f"  Server:    http://{settings.HOST}:{settings.PORT}")
    print(f"  API Docs:  http://{settings.HOST}:{settings.PORT}/docs")
    print("  Demo workflow ID: content-review-demo")

    uvicorn.run(
        "graph_engine.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
