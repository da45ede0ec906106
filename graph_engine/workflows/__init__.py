"""
Workflows package - Sample workflow definitions.
"""

from graph_engine.workflows.content_review import (
    CONTENT_REVIEW_WORKFLOW_ID,
    create_content_review_workflow,
    register_content_review_workflow,
)

__all__ = [
    "CONTENT_REVIEW_WORKFLOW_ID",
    "create_content_review_workflow",
    "register_content_review_workflow",
]
