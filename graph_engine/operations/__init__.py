"""
Operations package - Operation registry and built-in operations.
"""

from graph_engine.operations.registry import (
    Operation,
    OperationRegistry,
    operation_registry,
    register_operation,
    get_operation,
)
from graph_engine.operations import builtin  # noqa: F401  registers built-ins

__all__ = [
    "Operation",
    "OperationRegistry",
    "operation_registry",
    "register_operation",
    "get_operation",
]
