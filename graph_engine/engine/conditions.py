"""
Condition Expressions.

Edge and decision conditions are short strings such as
``"aiResult.riskLevel == 'high'"`` or ``"input.value > 10 && input.ok"``.
They are parsed into a closed representation (field path, operator,
literal) and interpreted here. Nothing is ever evaluated as source code.

Grammar:
    expression := clause ("||" clause)*
    clause     := term ("&&" term)*
    term       := ["!"] path [operator literal]
"""

from typing import Any, Dict, List, Optional, Tuple, Union
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
import json
import re

from graph_engine.exceptions import ConditionSyntaxError


class Operator(str, Enum):
    """Comparison operators supported in conditions."""
    EQ = "=="
    NE = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IN = "in"
    MATCHES = "matches"
    TRUTHY = "truthy"
    FALSY = "falsy"


_OPERATOR_ALIASES = {
    "===": Operator.EQ,
    "==": Operator.EQ,
    "!==": Operator.NE,
    "!=": Operator.NE,
    ">=": Operator.GTE,
    "<=": Operator.LTE,
    ">": Operator.GT,
    "<": Operator.LT,
    "contains": Operator.CONTAINS,
    "startsWith": Operator.STARTS_WITH,
    "endsWith": Operator.ENDS_WITH,
    "in": Operator.IN,
    "matches": Operator.MATCHES,
}

_PATH = r"[A-Za-z_$][\w$]*(?:\.[\w$]+|\[\d+\])*"
_TERM_RE = re.compile(
    r"^(?P<negate>!)?\s*(?P<path>" + _PATH + r")\s*"
    r"(?:(?P<op>===|!==|==|!=|>=|<=|>|<|contains\b|startsWith\b|endsWith\b|in\b|matches\b)"
    r"\s*(?P<literal>.+?))?\s*$"
)
_PATH_PART_RE = re.compile(r"[^.\[\]]+|\[\d+\]")
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?([eE][-+]?\d+)?$")

_MISSING = object()


@dataclass(frozen=True)
class Condition:
    """A single `path operator literal` comparison."""
    path: str
    operator: Operator
    value: Any = None

    def evaluate(self, context: Dict[str, Any]) -> bool:
        actual = resolve_path(context, self.path)
        return _compare(actual, self.operator, self.value)

    def __str__(self) -> str:
        if self.operator == Operator.TRUTHY:
            return self.path
        if self.operator == Operator.FALSY:
            return f"!{self.path}"
        return f"{self.path} {self.operator.value} {json.dumps(self.value)}"


@dataclass(frozen=True)
class CompoundCondition:
    """Conjunction or disjunction of conditions."""
    mode: str  # "all" or "any"
    terms: Tuple[Union[Condition, "CompoundCondition"], ...]

    def evaluate(self, context: Dict[str, Any]) -> bool:
        if self.mode == "all":
            return all(term.evaluate(context) for term in self.terms)
        return any(term.evaluate(context) for term in self.terms)

    def __str__(self) -> str:
        joiner = " && " if self.mode == "all" else " || "
        return joiner.join(str(term) for term in self.terms)


Expression = Union[Condition, CompoundCondition]


@lru_cache(maxsize=512)
def parse_condition(expression: str) -> Expression:
    """
    Parse a condition string.

    Raises:
        ConditionSyntaxError: If the string is not a valid condition
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ConditionSyntaxError(str(expression), "empty expression")

    clauses = []
    for clause in _split_outside_quotes(expression, "||"):
        terms = tuple(_parse_term(term, expression) for term in _split_outside_quotes(clause, "&&"))
        clauses.append(terms[0] if len(terms) == 1 else CompoundCondition("all", terms))

    if len(clauses) == 1:
        return clauses[0]
    return CompoundCondition("any", tuple(clauses))


def evaluate_condition(expression: Union[str, Expression], context: Dict[str, Any]) -> bool:
    """Parse (if needed) and evaluate a condition against the context."""
    if isinstance(expression, str):
        expression = parse_condition(expression)
    return expression.evaluate(context)


def is_valid_condition(expression: str) -> bool:
    try:
        parse_condition(expression)
        return True
    except ConditionSyntaxError:
        return False


def resolve_path(data: Any, path: str, default: Any = None) -> Any:
    """
    Resolve a dotted path such as ``input.items[0].name`` in nested data.

    Missing keys, out-of-range indices and steps into anything other than
    a dict or list resolve to `default`.
    """
    current = data
    for part in _PATH_PART_RE.findall(path):
        if part.startswith("["):
            index = int(part[1:-1])
            if isinstance(current, (list, tuple)) and -len(current) <= index < len(current):
                current = current[index]
            else:
                return default
        elif isinstance(current, dict):
            current = current.get(part, _MISSING)
            if current is _MISSING:
                return default
        else:
            # Only mapping keys and list indices resolve; attributes never do
            return default
    return current


# ------------------------------------------------------------
# Parsing helpers
# ------------------------------------------------------------

def _parse_term(term: str, expression: str) -> Condition:
    match = _TERM_RE.match(term.strip())
    if not match:
        raise ConditionSyntaxError(expression, f"cannot parse '{term.strip()}'")

    path = match.group("path")
    op_text = match.group("op")
    negate = bool(match.group("negate"))

    if op_text is None:
        return Condition(path, Operator.FALSY if negate else Operator.TRUTHY)
    if negate:
        raise ConditionSyntaxError(expression, "'!' can only prefix a bare path")

    operator = _OPERATOR_ALIASES[op_text]
    value = _parse_literal(match.group("literal"), expression)

    if operator == Operator.IN and not isinstance(value, (list, str)):
        raise ConditionSyntaxError(expression, "'in' needs a list or string literal")
    if operator == Operator.MATCHES:
        if not isinstance(value, str):
            raise ConditionSyntaxError(expression, "'matches' needs a string pattern")
        try:
            re.compile(value)
        except re.error as e:
            raise ConditionSyntaxError(expression, f"bad pattern: {e}") from e

    return Condition(path, operator, value)


def _parse_literal(text: str, expression: str) -> Any:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    if text in ("true", "false"):
        return text == "true"
    if text in ("null", "undefined", "None"):
        return None
    if _NUMBER_RE.match(text):
        return float(text) if any(c in text for c in ".eE") else int(text)
    if text.startswith("["):
        try:
            return json.loads(text.replace("'", '"'))
        except ValueError as e:
            raise ConditionSyntaxError(expression, f"bad list literal {text}") from e
    raise ConditionSyntaxError(expression, f"unsupported literal {text}")


def _split_outside_quotes(text: str, separator: str) -> List[str]:
    parts = []
    quote: Optional[str] = None
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif text.startswith(separator, i):
            parts.append(text[start:i])
            i += len(separator)
            start = i
            continue
        i += 1
    if quote:
        raise ConditionSyntaxError(text, "unterminated string literal")
    parts.append(text[start:])

    if any(not part.strip() for part in parts):
        raise ConditionSyntaxError(text, f"empty operand around '{separator}'")
    return parts


# ------------------------------------------------------------
# Evaluation helpers
# ------------------------------------------------------------

def _compare(actual: Any, operator: Operator, expected: Any) -> bool:
    try:
        if operator == Operator.TRUTHY:
            return bool(actual)
        if operator == Operator.FALSY:
            return not actual
        if operator == Operator.EQ:
            return actual == expected
        if operator == Operator.NE:
            return actual != expected
        if operator == Operator.GT:
            return actual is not None and actual > expected
        if operator == Operator.GTE:
            return actual is not None and actual >= expected
        if operator == Operator.LT:
            return actual is not None and actual < expected
        if operator == Operator.LTE:
            return actual is not None and actual <= expected
        if operator == Operator.CONTAINS:
            return actual is not None and expected in actual
        if operator == Operator.STARTS_WITH:
            return isinstance(actual, str) and actual.startswith(str(expected))
        if operator == Operator.ENDS_WITH:
            return isinstance(actual, str) and actual.endswith(str(expected))
        if operator == Operator.IN:
            return actual in expected
        if operator == Operator.MATCHES:
            return isinstance(actual, str) and re.search(expected, actual) is not None
    except TypeError:
        return False
    return False
