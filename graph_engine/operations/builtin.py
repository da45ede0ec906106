"""
Built-in Operations.

General-purpose operations available to every workflow. Domain specific
work (AI model calls, alert delivery, ...) is registered by the host
application next to these.
"""

from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
import asyncio
import logging
import re

from graph_engine.engine.conditions import resolve_path
from graph_engine.operations.registry import register_operation


logger = logging.getLogger(__name__)

_MISSING = object()


def _field_value(context: Dict[str, Any], config: Dict[str, Any]) -> Tuple[Optional[str], Any]:
    """Resolve the value a field-oriented operation works on."""
    field = config.get("field")
    source = config.get("source") or (f"input.{field}" if field else "input")
    value = resolve_path(context, source, _MISSING)
    if value is _MISSING and field:
        value = resolve_path(context, field, None)
    return field, None if value is _MISSING else value


def _apply_transform(value: Any, instruction: Any) -> Any:
    if not isinstance(instruction, str):
        return instruction
    if instruction == "uppercase":
        return value.upper() if isinstance(value, str) else value
    if instruction == "lowercase":
        return value.lower() if isinstance(value, str) else value
    if instruction == "trim":
        return value.strip() if isinstance(value, str) else value

    op, _, argument = instruction.partition(":")
    if op in ("multiply", "add") and argument:
        number = float(argument)
        if number.is_integer():
            number = int(number)
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ValueError(f"Cannot {op} non-numeric value {value!r}")
        return value * number if op == "multiply" else value + number

    return instruction


@register_operation(
    name="transform",
    description="Transform a field: uppercase, lowercase, trim, multiply:N, add:N or a literal value",
)
def transform(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Config:
        field: Name of the field to transform
        source: Context path to read from (defaults to input.<field>)
        value: Transformation instruction or literal replacement
    """
    field, value = _field_value(context, config)
    if not field:
        raise ValueError("transform requires config.field")
    return {field: _apply_transform(value, config.get("value"))}


def _check_rule(value: Any, rule: str) -> Optional[str]:
    name, _, argument = rule.partition(":")
    if name == "required":
        if value is None or value == "" or value == [] or value == {}:
            return "value is required"
    elif name == "minLength":
        if value is None or not hasattr(value, "__len__") or len(value) < int(argument):
            return f"length must be at least {argument}"
    elif name == "maxLength":
        if value is not None and hasattr(value, "__len__") and len(value) > int(argument):
            return f"length must be at most {argument}"
    elif name == "pattern":
        if not isinstance(value, str) or re.search(argument, value) is None:
            return f"value must match {argument}"
    elif name == "numeric":
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return "value must be numeric"
    else:
        return f"unknown rule '{rule}'"
    return None


@register_operation(name="validate", description="Check a field (or the whole input) against rules")
def validate(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Config:
        rules: e.g. ["required", "minLength:3", "pattern:^P", "numeric"]
        field / source: What to check (defaults to the whole input)
        raiseOnFailure: Raise instead of reporting, so an error edge is taken
    """
    field, value = _field_value(context, config)
    errors: List[str] = []
    for rule in config.get("rules") or []:
        problem = _check_rule(value, str(rule))
        if problem:
            errors.append(f"{field or 'input'}: {problem}")

    if errors and config.get("raiseOnFailure"):
        raise ValueError("; ".join(errors))
    return {"valid": not errors, "errors": errors}


@register_operation(name="merge", description="Post-process the outputs collected at a join")
def merge(context: Dict[str, Any], config: Dict[str, Any]) -> Any:
    """
    The engine combines branch outputs according to `strategy` and passes
    them in as `config["branches"]`. With `flatten`, dict outputs are
    merged into a single dict (later branches win on conflicts).
    """
    branches = config.get("branches")
    if not config.get("flatten"):
        return branches

    values = branches.values() if isinstance(branches, dict) else (branches or [])
    merged: Dict[str, Any] = {}
    for value in values:
        if isinstance(value, dict):
            merged.update(value)
    return merged


@register_operation(name="split", description="Fan out into parallel branches")
def split(context: Dict[str, Any], config: Dict[str, Any]) -> None:
    """Marker operation: the engine fans out along every eligible edge."""
    return None


@register_operation(name="log", description="Write a message to the workflow log")
def log(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    message = str(config.get("message", ""))
    level = str(config.get("level", "info")).upper()
    if config.get("field"):
        message = f"{message} {resolve_path(context, config['field'])}".strip()
    logger.log(getattr(logging, level, logging.INFO), f"Workflow log: {message}")
    return {"message": message, "level": level.lower()}


@register_operation(name="alert", description="Raise an alert for the host application to dispatch")
def alert(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Delivery is up to the host; this records what should be sent."""
    payload = {
        "severity": config.get("severity", "warning"),
        "message": config.get("message", "Workflow alert"),
        "channel": config.get("channel"),
        "timestamp": datetime.now().isoformat(),
    }
    if config.get("field"):
        payload["value"] = resolve_path(context, config["field"])
    logger.warning(f"Workflow alert [{payload['severity']}]: {payload['message']}")
    return payload


@register_operation(name="fallback", description="Recover from an upstream failure with a default value")
def fallback(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    error = context.get("error")
    return {
        "recovered": error is not None,
        "value": config.get("value"),
        "error": error,
    }


@register_operation(name="delay", description="Wait for config.seconds before continuing")
async def delay(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    seconds = float(config.get("seconds", 0))
    await asyncio.sleep(seconds)
    return {"delayed": seconds}
