"""Exceptions raised by fastapi-fetcheable."""

from typing import Any, Iterable


class FetcheableError(Exception):
    """Base class for all fastapi-fetcheable errors."""


class ConfigError(FetcheableError, ValueError):
    """Invalid field registration or configuration."""


class ParameterTypeError(FetcheableError, TypeError):
    """
    A recognized parameter root has the wrong shape.

    Attributes:
        path: Parameter path that failed validation (e.g. ``filter``)
        observed: Name of the shape that was actually received
        permitted: Shapes that would have been accepted
    """

    def __init__(self, path: str, observed: str, permitted: Iterable[str] = ()):
        self.path = path
        self.observed = observed
        self.permitted = tuple(str(p) for p in permitted)
        message = f"Incorrect type {observed} for params {path!r}"
        if self.permitted:
            message += f", expected one of: {', '.join(self.permitted)}"
        super().__init__(message)


class UnsupportedPredicateError(FetcheableError, ValueError):
    """A filter is configured with a predicate that is neither in the catalog nor callable."""

    def __init__(self, predicate: Any):
        self.predicate = predicate
        super().__init__(f"unsupported predicate `{predicate}`")
