"""Value types for query variables.

Query variables must be declared with a type in the query header
(``query all($a: int)``). ValueType is the closed set of types the
harness can express; value_type() classifies a Python value into it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

import numpy as np

from chicory.errors import UnsupportedValueTypeError


class ValueType(Enum):
    INT = "int"
    STRING = "string"
    BOOL = "bool"
    FLOAT = "float"


def value_type(x: Any) -> ValueType:
    """Classify a value into its query-language type.

    Raises:
        ValueError: if x is None (absent values have no type)
        UnsupportedValueTypeError: for any other unsupported type
    """
    if x is None:
        raise ValueError(
            "Can't infer a query type for None; did you mean to pass a value?"
        )
    # bool is a subclass of int, so it must be checked first
    if isinstance(x, (bool, np.bool_)):
        return ValueType.BOOL
    if isinstance(x, (int, np.integer)):
        return ValueType.INT
    if isinstance(x, str):
        return ValueType.STRING
    if isinstance(x, (float, np.floating)):
        return ValueType.FLOAT
    raise UnsupportedValueTypeError(f"Don't know the query type of {x!r}")


def encode_value(x: Any) -> str:
    """Encode a variable value as the string the RPC layer expects."""
    if value_type(x) == ValueType.BOOL:
        return "true" if x else "false"
    return str(x)


def decode_value(s: str, vtype: ValueType) -> Any:
    """Inverse of encode_value for a declared type."""
    if vtype == ValueType.INT:
        return int(s)
    if vtype == ValueType.FLOAT:
        return float(s)
    if vtype == ValueType.BOOL:
        return s == "true"
    return s


def query_header(variables: Mapping[str, Any]) -> str:
    """Build the ``query all($a: int, ...)`` header for a variables map."""
    params = ", ".join(
        f"${name}: {value_type(v).value}" for name, v in variables.items()
    )
    return f"query all({params})"


def encode_variables(variables: Mapping[str, Any]) -> dict[str, str]:
    """Prefix variable names with $ and encode their values as strings."""
    return {f"${name}": encode_value(v) for name, v in variables.items()}
