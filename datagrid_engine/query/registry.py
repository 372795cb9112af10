"""Operator table mapping (column_type, operator) pairs to predicate builders."""

from typing import Callable, Dict, List, Optional, Tuple

from ..core.errors import OperatorRegistrationError

COLUMN_TYPES = ("text", "number", "date", "boolean", "select")

# Column types that fall back to the text table for operators they don't define
_FALLBACK_TYPE = {
    "number": "text",
    "select": "text",
    "date": None,
    "boolean": None,
    "text": None,
}

# Global registry mapping (column_type, operator) to builder functions
_OPERATOR_REGISTRY: Dict[Tuple[str, str], Callable] = {}


def register_operator(column_type: str, *operators: str):
    """
    Decorator to register a predicate builder for one or more operators.

    A builder receives ``(column_id, value)`` and returns either a
    ``CompiledRule`` or None when the rule constrains nothing.

    Args:
        column_type: One of COLUMN_TYPES
        *operators: Operator names handled by the decorated builder

    Returns:
        Decorator function

    Raises:
        OperatorRegistrationError: If the column type is unknown, no operator
            is given, or a pair is already registered

    Example:
        @register_operator("text", "contains")
        def _contains(column_id, value):
            ...
    """
    if column_type not in COLUMN_TYPES:
        raise OperatorRegistrationError(
            f"Unknown column type '{column_type}'. "
            f"Available column types: {list(COLUMN_TYPES)}"
        )
    if not operators:
        raise OperatorRegistrationError(
            f"No operator given for column type '{column_type}'"
        )

    def decorator(builder: Callable) -> Callable:
        for operator in operators:
            key = (column_type, operator)
            if key in _OPERATOR_REGISTRY:
                raise OperatorRegistrationError(
                    f"Operator '{operator}' for column type '{column_type}' is "
                    f"already registered to {_OPERATOR_REGISTRY[key].__name__}"
                )
            _OPERATOR_REGISTRY[key] = builder
        return builder

    return decorator


def get_operator_builder(column_type: str, operator: str) -> Optional[Callable]:
    """
    Resolve the builder for a column type and operator.

    Unknown column types resolve like ``text``. Types with a fallback table
    (``number`` falls back to ``text``) are searched in order.

    Args:
        column_type: Column type of the rule
        operator: Operator name of the rule

    Returns:
        The builder, or None when the pair is not supported
    """
    current: Optional[str] = column_type if column_type in COLUMN_TYPES else "text"
    while current is not None:
        builder = _OPERATOR_REGISTRY.get((current, operator))
        if builder is not None:
            return builder
        current = _FALLBACK_TYPE.get(current)
    return None


def list_operators(column_type: str) -> List[str]:
    """
    Get the operators usable with a column type, fallbacks included.

    Args:
        column_type: The column type

    Returns:
        Sorted operator names
    """
    names = set()
    current: Optional[str] = column_type if column_type in COLUMN_TYPES else "text"
    while current is not None:
        names.update(op for (ctype, op) in _OPERATOR_REGISTRY if ctype == current)
        current = _FALLBACK_TYPE.get(current)
    return sorted(names)


def is_registered(column_type: str, operator: str) -> bool:
    """Check if an exact (column_type, operator) pair is registered."""
    return (column_type, operator) in _OPERATOR_REGISTRY
