# /chatflow/workflows/conditions.py

"""
Condition expressions and message templating for flow steps.

A condition is a single expression of the form ``<source>.<field> <operator> [value]``:

    user_context.email exists
    data.interest contains software
    data.plan equals 'premium'

``source`` is ``user_context`` (external context supplied by the transport) or
``data`` (values captured by the flow itself).
"""

import re
from typing import Any, Dict, NamedTuple, Optional

CONDITION_SOURCES = ("user_context", "data")
CONDITION_OPERATORS = ("exists", "equals", "contains")

VARIABLE_RE = re.compile(r"\{(\w+)\}")


class Condition(NamedTuple):
    source: str
    field: str
    operator: str
    value: Optional[str]


def parse_condition(expression: str) -> Condition:
    """Parse a condition expression, raising ValueError when it is malformed."""
    if not expression or not expression.strip():
        raise ValueError("Condition cannot be empty")

    parts = expression.strip().split(" ", 2)
    if len(parts) < 2:
        raise ValueError(f"Condition '{expression}' must have the form '<source>.<field> <operator> [value]'")

    path, operator = parts[0], parts[1]
    source, _, field = path.partition(".")
    if source not in CONDITION_SOURCES or not field:
        raise ValueError(f"Condition path '{path}' must start with one of {CONDITION_SOURCES}")
    if operator not in CONDITION_OPERATORS:
        raise ValueError(f"Unknown condition operator '{operator}'. Allowed: {CONDITION_OPERATORS}")

    value = parts[2].strip() if len(parts) > 2 else None
    if value and len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    if operator != "exists" and value is None:
        raise ValueError(f"Operator '{operator}' requires a value")

    return Condition(source=source, field=field, operator=operator, value=value)


def evaluate_condition(condition: Condition, user_context: Dict[str, Any], data: Dict[str, Any]) -> bool:
    source = user_context if condition.source == "user_context" else data
    target = (source or {}).get(condition.field)

    if condition.operator == "exists":
        return target is not None and target != "" and target != [] and target != {}
    if target is None:
        return False
    if condition.operator == "equals":
        return str(target) == condition.value
    # contains
    if isinstance(target, (list, tuple, set)):
        return condition.value in [str(item) for item in target]
    return condition.value in str(target)


def _present(value: Any) -> bool:
    return value is not None and value != ""


def replace_variables(text: Optional[str], user_context: Dict[str, Any], data: Dict[str, Any]) -> str:
    """
    Replace ``{key}`` tokens, looking in the external context first and in the
    flow data second. Unresolved tokens are kept verbatim.
    """
    if not text:
        return ""

    def _resolve(match: re.Match) -> str:
        key = match.group(1)
        if user_context and _present(user_context.get(key)):
            return str(user_context[key])
        if data and _present(data.get(key)):
            return str(data[key])
        return match.group(0)

    return VARIABLE_RE.sub(_resolve, text)
