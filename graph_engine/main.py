"""
Graph Engine - FastAPI Application Entry Point.

Serves the workflow builder, validator and execution engine over HTTP.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from graph_engine.config import settings
from graph_engine.api.routes import executions, operations, workflows
from graph_engine.engine.builder import workflow_builder
from graph_engine.engine.executor import execution_engine
from graph_engine.exceptions import GraphStructureError, WorkflowNotFoundError
from graph_engine.workflows.content_review import (
    CONTENT_REVIEW_WORKFLOW_ID,
    register_content_review_workflow,
)


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Register the demo workflow on startup."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    # Demo workflow, available without creating it first
    register_content_review_workflow()

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Workflow Graph Engine API

Build workflow graphs, validate them, and run them in the background.

### Features
- **Nodes**: typed steps (start, end, dataProcessor, aiAgent, if, switch, split, merge, ...)
  that invoke registered operations
- **Edges**: connections guarded by condition expressions such as `aiResult.riskLevel == 'high'`
- **Parallel branches**: split nodes fan out, merge nodes wait for every branch
- **Error edges**: an edge with condition `error` recovers from a failing node
- **Validation**: structure, reachability, cycles, decision coverage and split/merge pairing

### Quick Start
1. List available operations: `GET /operations`
2. Create a workflow: `POST /workflows`
3. Validate it: `GET /workflows/{workflow_id}/validate`
4. Run it: `POST /executions`
5. Check execution state: `GET /executions/{execution_id}`

### Demo Workflow
A pre-registered Content Review workflow is available with ID: `content-review-demo`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Browser clients (workflow editors) call the API cross-origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(workflows.router)
app.include_router(executions.router)
app.include_router(operations.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """Service info and links to the main resources."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "A workflow graph engine with validation and parallel execution",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "workflows": "/workflows",
            "executions": "/executions",
            "operations": "/operations",
        },
        "demo_workflow": CONTENT_REVIEW_WORKFLOW_ID,
    }


@app.get("/health", tags=["Root"])
async def health():
    """Liveness check with the number of stored workflows and executions."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "workflows_count": len(workflow_builder),
        "executions_count": len(execution_engine.store),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(GraphStructureError)
async def graph_structure_error_handler(request: Request, exc: GraphStructureError):
    """Invalid workflow mutations are client errors."""
    logger.warning(f"Rejected workflow change: {exc.message}")
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid workflow structure", "detail": exc.message, "details": exc.details},
    )


@app.exception_handler(WorkflowNotFoundError)
async def workflow_not_found_handler(request: Request, exc: WorkflowNotFoundError):
    return JSONResponse(
        status_code=404,
        content={"error": "Not Found", "detail": exc.message, "details": exc.details},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
