"""
Storage package - In-memory registry of execution states.
"""

from graph_engine.storage.memory import ExecutionStore

__all__ = ["ExecutionStore"]
