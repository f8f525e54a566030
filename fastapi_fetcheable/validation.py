"""Shape checks for raw request parameters."""

from collections.abc import Mapping
from enum import StrEnum
from typing import Any, Sequence

from fastapi_fetcheable.exceptions import ParameterTypeError


class ParamShape(StrEnum):
    """Shapes a raw parameter value can take"""

    MAPPING = "mapping"
    ARRAY = "array"
    STRING = "string"


FILTER_SHAPES = (ParamShape.MAPPING, ParamShape.ARRAY)
SORT_SHAPES = (ParamShape.STRING,)
PAGE_SHAPES = (ParamShape.MAPPING,)


def shape_of(value: Any) -> str:
    """
    Name the shape of a raw parameter value.

    Args:
        value: Raw parameter value

    Returns:
        str: A ParamShape value, or the Python type name for anything else
    """
    if isinstance(value, Mapping):
        return ParamShape.MAPPING
    if isinstance(value, str):
        return ParamShape.STRING
    if isinstance(value, (list, tuple)):
        return ParamShape.ARRAY
    return type(value).__name__


def validate_parameter(path: str, value: Any, permitted: Sequence[ParamShape]) -> None:
    """
    Check that a parameter root has one of the permitted shapes.

    Args:
        path: Parameter path used in the error message
        value: Raw parameter value
        permitted: Accepted shapes

    Raises:
        ParameterTypeError: If the value's shape is not permitted
    """
    observed = shape_of(value)
    if observed not in permitted:
        raise ParameterTypeError(path, observed, permitted)
