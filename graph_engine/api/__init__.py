"""
API package - FastAPI routes and schemas.
"""

from graph_engine.api.routes import executions, operations, workflows

__all__ = ["executions", "operations", "workflows"]
