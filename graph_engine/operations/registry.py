"""
Operation Registry for the Workflow Engine.

Nodes name the work they do through `data.operation`. The registry maps
those names to Operation objects that all expose the same contract:

    await operation.execute(context, config) -> output

The engine never branches on operation names beyond looking them up here.
"""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
import asyncio
import functools
import inspect
import logging


logger = logging.getLogger(__name__)


@dataclass
class Operation:
    """
    A registered operation.

    Attributes:
        name: Unique identifier used by nodes
        func: Callable taking (context, config); sync or async
        description: Human-readable description
        output_key: Context key for the output (defaults to the node id)
    """
    name: str
    func: Callable[[Dict[str, Any], Dict[str, Any]], Any]
    description: str = ""
    output_key: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Operation name cannot be empty")
        if not callable(self.func):
            raise ValueError(f"Operation '{self.name}' must be callable")

    @property
    def is_async(self) -> bool:
        """Check if the function is a coroutine function."""
        return inspect.iscoroutinefunction(self.func)

    async def execute(self, context: Dict[str, Any], config: Dict[str, Any]) -> Any:
        """
        Run the operation.

        Sync functions run in the default executor so they do not block
        concurrent branches.
        """
        if self.is_async:
            return await self.func(context, config)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            functools.partial(self.func, context, config),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize operation metadata."""
        return {
            "name": self.name,
            "description": self.description,
            "output_key": self.output_key,
            "is_async": self.is_async,
        }


class OperationRegistry:
    """
    Registry of workflow operations.

    Usage:
        registry = OperationRegistry()

        @registry.register("score")
        async def score(context, config):
            return {"score": len(context["input"]["text"])}

        operation = registry.get("score")
        output = await operation.execute(context, {})
    """

    def __init__(self):
        self._operations: Dict[str, Operation] = {}

    def register(
        self,
        name: Optional[str] = None,
        description: str = "",
        output_key: Optional[str] = None,
    ) -> Callable:
        """
        Decorator to register a function as an operation.

        Args:
            name: Operation name (defaults to function name)
            description: Description (defaults to docstring)
            output_key: Context key for the output

        Returns:
            Decorator function
        """
        def decorator(func: Callable) -> Callable:
            self.add(func, name=name, description=description, output_key=output_key)
            return func

        return decorator

    def add(
        self,
        func: Callable,
        name: Optional[str] = None,
        description: str = "",
        output_key: Optional[str] = None,
    ) -> Operation:
        """
        Directly add a function as an operation (non-decorator version).

        Re-registering a name replaces the previous operation.
        """
        op_name = name or func.__name__
        op_desc = description or func.__doc__ or ""

        operation = Operation(
            name=op_name,
            func=func,
            description=inspect.cleandoc(op_desc),
            output_key=output_key,
        )
        if op_name in self._operations:
            logger.warning(f"Replacing operation: {op_name}")
        self._operations[op_name] = operation
        logger.debug(f"Registered operation: {op_name}")
        return operation

    def get(self, name: str) -> Optional[Operation]:
        """Get an operation by name."""
        return self._operations.get(name)

    def remove(self, name: str) -> bool:
        """Remove an operation from the registry."""
        if name in self._operations:
            del self._operations[name]
            return True
        return False

    def copy(self) -> "OperationRegistry":
        """A new registry holding the same operations."""
        clone = OperationRegistry()
        clone._operations = dict(self._operations)
        return clone

    def list_operations(self) -> List[Dict[str, Any]]:
        """List all registered operations with their metadata."""
        return [operation.to_dict() for operation in self._operations.values()]

    def has(self, name: str) -> bool:
        """Check if an operation is registered."""
        return name in self._operations

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self):
        return iter(self._operations.values())


# Global operation registry instance
operation_registry = OperationRegistry()


def register_operation(
    name: Optional[str] = None,
    description: str = "",
    output_key: Optional[str] = None,
) -> Callable:
    """
    Convenience decorator to register an operation in the global registry.

    Usage:
        @register_operation("notify", description="Send a notification")
        async def notify(context, config):
            ...
    """
    return operation_registry.register(name, description, output_key)


def get_operation(name: str) -> Optional[Operation]:
    """Get an operation from the global registry."""
    return operation_registry.get(name)
