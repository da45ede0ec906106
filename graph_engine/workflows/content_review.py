"""
Content Review Workflow.

Sample workflow demonstrating the engine:
1. Validate the submitted content (failures are routed to a fallback)
2. Assess medical risk with an AI agent step
3. Escalate high-risk content, otherwise prepare it in two parallel
   branches and merge them before publishing
"""

from typing import Any, Dict, List, Optional
import logging

from graph_engine.engine.builder import WorkflowBuilder, workflow_builder
from graph_engine.operations.registry import register_operation


logger = logging.getLogger(__name__)

CONTENT_REVIEW_WORKFLOW_ID = "content-review-demo"


# ============================================================
# Operations
# ============================================================

HIGH_RISK_TERMS = ("dosage", "overdose", "prescription", "cure", "diagnosis")
MEDIUM_RISK_TERMS = ("treatment", "symptom", "side effect", "medication")


@register_operation(
    name="assess_risk",
    description="Score content for medical risk (keyword based stand-in for an AI model)",
    output_key="aiResult",
)
def assess_risk(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Uses context:
    - input.content: str - The text to review

    Returns:
    - riskLevel: "high" | "medium" | "low"
    - score: int - Number of flagged terms
    - flaggedTerms: List[str]
    """
    content = str(context.get("input", {}).get("content", "")).lower()
    high = [term for term in HIGH_RISK_TERMS if term in content]
    medium = [term for term in MEDIUM_RISK_TERMS if term in content]

    if high:
        level = "high"
    elif medium:
        level = "medium"
    else:
        level = "low"

    flagged: List[str] = high + medium
    logger.info(f"Risk assessment: {level} ({len(flagged)} flagged terms)")
    return {"riskLevel": level, "score": len(flagged), "flaggedTerms": flagged}


# ============================================================
# Workflow Factory
# ============================================================

def create_content_review_workflow(
    builder: Optional[WorkflowBuilder] = None,
    workflow_id: Optional[str] = None,
) -> str:
    """
    Build the Content Review workflow.

    Workflow flow:
    ```
    start → intake ─┬─→ assess → risk ─┬─→ escalate → end-escalated   (true)
                    │                  └─→ prepare ─┬─→ headline ─┐  (false)
                    │                               └─→ section ──┴─→ combine → publish → end
                    └─→ rejected → end                                 (error)
    ```

    Args:
        builder: Builder to create the workflow in (global builder by default)
        workflow_id: Optional explicit workflow id

    Returns:
        The workflow id
    """
    if builder is None:
        builder = workflow_builder
    wf = builder.create_workflow(
        "Content Review",
        "Validates healthcare content, escalates high-risk material and "
        "prepares the rest for publishing.",
        workflow_id=workflow_id,
    )

    def node(node_id: str, node_type: str, label: str, **data: Any) -> str:
        return builder.add_node(wf, {"id": node_id, "type": node_type, "data": {"label": label, **data}})

    node("start", "start", "Start")
    node("intake", "dataInput", "Validate submission", operation="validate", config={
        "field": "content",
        "rules": ["required", "minLength:10"],
        "raiseOnFailure": True,
    })
    node("rejected", "fallback", "Reject submission", operation="fallback", config={
        "value": {"status": "rejected"},
        "outputKey": "review",
    })
    node("assess", "aiAgent", "Assess medical risk", operation="assess_risk")
    node("risk", "if", "High risk?", condition="aiResult.riskLevel == 'high'")
    node("escalate", "notification", "Escalate to medical reviewer", operation="alert", config={
        "severity": "critical",
        "message": "High-risk content requires medical review",
        "channel": "medical-review",
        "field": "aiResult.flaggedTerms",
    })
    node("prepare", "split", "Prepare for publishing", operation="split", config={"waitForAll": True})
    node("headline", "dataProcessor", "Format headline", operation="transform", config={
        "field": "title",
        "value": "uppercase",
        "outputKey": "headline",
    })
    node("section", "dataProcessor", "Normalize section", operation="transform", config={
        "field": "category",
        "value": "lowercase",
        "outputKey": "section",
    })
    node("combine", "merge", "Combine prepared content", operation="merge", config={
        "strategy": "combine",
        "flatten": True,
        "outputKey": "prepared",
    })
    node("publish", "dataOutput", "Queue for publishing", operation="log", config={
        "message": "Content ready:",
        "field": "prepared",
    })
    node("end-escalated", "end", "Escalated")
    node("end", "end", "Done")

    edges = [
        ("start", "intake", None),
        ("intake", "assess", None),
        ("intake", "rejected", "error"),
        ("rejected", "end", None),
        ("assess", "risk", None),
        ("risk", "escalate", "true"),
        ("risk", "prepare", "false"),
        ("escalate", "end-escalated", None),
        ("prepare", "headline", None),
        ("prepare", "section", None),
        ("headline", "combine", None),
        ("section", "combine", None),
        ("combine", "publish", None),
        ("publish", "end", None),
    ]
    for source, target, condition in edges:
        builder.add_edge(wf, {"source": source, "target": target, "condition": condition})

    return wf


def register_content_review_workflow(builder: Optional[WorkflowBuilder] = None) -> str:
    """
    Register the Content Review workflow under a fixed id.

    This makes the workflow available immediately via the API
    without needing to create it first.
    """
    if builder is None:
        builder = workflow_builder
    if CONTENT_REVIEW_WORKFLOW_ID in builder:
        return CONTENT_REVIEW_WORKFLOW_ID

    create_content_review_workflow(builder, workflow_id=CONTENT_REVIEW_WORKFLOW_ID)
    logger.info(f"Registered Content Review workflow with ID: {CONTENT_REVIEW_WORKFLOW_ID}")
    return CONTENT_REVIEW_WORKFLOW_ID
