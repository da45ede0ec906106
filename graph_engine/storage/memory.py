"""
In-Memory Execution Store.

Process-wide registry of execution states keyed by execution id. Access is
synchronized with a lock so that states can be read from request handlers
or other threads while the engine updates them on the event loop.
"""

from typing import Dict, Iterator, List, Optional
from contextlib import contextmanager
import threading

from graph_engine.engine.state import ExecutionState


class ExecutionStore:
    """
    Thread-safe in-memory storage for execution states.
    
    The store holds the live state objects; `get` and `list_all` hand out
    deep copies so callers never observe a half-applied update.
    """
    
    def __init__(self):
        self._states: Dict[str, ExecutionState] = {}
        self._lock = threading.RLock()
    
    def add(self, state: ExecutionState) -> None:
        """Register a new execution state."""
        with self._lock:
            if state.execution_id in self._states:
                raise ValueError(f"Execution '{state.execution_id}' already exists")
            self._states[state.execution_id] = state
    
    def get(self, execution_id: str) -> Optional[ExecutionState]:
        """Get a snapshot of an execution state."""
        with self._lock:
            state = self._states.get(execution_id)
            return state.snapshot() if state is not None else None
    
    @contextmanager
    def edit(self, execution_id: str) -> Iterator[ExecutionState]:
        """Hold the lock and yield the live state for in-place updates."""
        with self._lock:
            state = self._states.get(execution_id)
            if state is None:
                raise KeyError(f"Execution '{execution_id}' not found")
            yield state

    def list_all(self) -> List[ExecutionState]:
        """Snapshots of all executions."""
        with self._lock:
            return [state.snapshot() for state in self._states.values()]
    
    def list_by_workflow(self, workflow_id: str) -> List[ExecutionState]:
        """Snapshots of all executions of one workflow."""
        with self._lock:
            return [s.snapshot() for s in self._states.values() if s.workflow_id == workflow_id]
    
    def delete(self, execution_id: str) -> bool:
        """Discard an execution state."""
        with self._lock:
            if execution_id in self._states:
                del self._states[execution_id]
                return True
            return False
    
    def __contains__(self, execution_id: str) -> bool:
        with self._lock:
            return execution_id in self._states
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
