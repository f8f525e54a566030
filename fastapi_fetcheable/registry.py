"""Whitelist of filterable and sortable fields."""

import dataclasses
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Union

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable

from fastapi_fetcheable.exceptions import ConfigError
from fastapi_fetcheable.models import PredicateKind, ValueFormat

# A catalog predicate, an unknown predicate name (rejected at compile time),
# or a custom ``(query, value) -> condition`` callable
Predicate = Union[PredicateKind, str, Callable[[Any, Any], Any]]

VALID_OPTIONS = frozenset(
    {"alias", "entity", "predicate", "value_format", "association", "case_insensitive"}
)


@dataclass(frozen=True)
class FieldConfig:
    """
    Configuration of one whitelisted field.

    Attributes:
        key: Attribute name clients use in ``filter[...]`` / ``sort``
        alias: Column name on the target entity
        entity: Mapped class owning the column, None for the query's own entity
        predicate: Catalog predicate or custom callable (filters only)
        value_format: How raw values are interpreted (filters only)
        association: Relationship joined to reach ``entity``
        case_insensitive: Sort on ``lower(column)`` (sorts only)
    """

    key: str
    alias: str
    entity: Optional[type] = None
    predicate: Predicate = PredicateKind.ILIKE
    value_format: ValueFormat = ValueFormat.STRING
    association: Optional[str] = None
    case_insensitive: bool = False

    @property
    def is_custom(self) -> bool:
        """True when the predicate is a user-supplied callable."""
        return callable(self.predicate)


def _normalize_predicate(value: Any) -> Predicate:
    if isinstance(value, PredicateKind) or callable(value):
        return value
    if isinstance(value, str):
        try:
            return PredicateKind(value)
        except ValueError:
            return value
    raise ConfigError(f"predicate must be a predicate name or a callable, got {value!r}")


def _normalize_entity(value: Any) -> Optional[type]:
    if value is None:
        return None
    try:
        mapper = sa_inspect(value)
    except NoInspectionAvailable as e:
        raise ConfigError(f"entity must be a mapped class, got {value!r}") from e
    if not isinstance(value, type) or not hasattr(mapper, "local_table"):
        raise ConfigError(f"entity must be a mapped class, got {value!r}")
    return value


def _normalize_options(options: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(options) - VALID_OPTIONS
    if unknown:
        raise ConfigError(
            f"Unknown field options: {', '.join(sorted(unknown))}. "
            f"Valid options: {', '.join(sorted(VALID_OPTIONS))}"
        )

    normalized = dict(options)
    if "alias" in normalized:
        if not isinstance(normalized["alias"], str) or not normalized["alias"]:
            raise ConfigError("alias must be a non-empty string")
    if "entity" in normalized:
        normalized["entity"] = _normalize_entity(normalized["entity"])
    if "predicate" in normalized:
        normalized["predicate"] = _normalize_predicate(normalized["predicate"])
    if "value_format" in normalized:
        try:
            normalized["value_format"] = ValueFormat(normalized["value_format"])
        except ValueError as e:
            raise ConfigError(
                f"value_format must be one of: {', '.join(ValueFormat)}"
            ) from e
    if "association" in normalized:
        association = normalized["association"]
        if association is not None and (not isinstance(association, str) or not association):
            raise ConfigError("association must be a non-empty string or None")
    if "case_insensitive" in normalized:
        if not isinstance(normalized["case_insensitive"], bool):
            raise ConfigError("case_insensitive must be a bool")
    return normalized


class FieldRegistry:
    """
    Copy-on-write mapping of attribute name to FieldConfig.

    Every ``register()`` call swaps in a fresh copy of the mapping before
    changing it, so snapshots and derived registries never observe later
    registrations.

    Example:
        question_filters = (
            FieldRegistry()
            .register("content", "position")
            .register("position", predicate="gteq")
            .register("category", entity=Category, alias="name", association="category")
        )

        # A consumer built on top of another one
        admin_filters = question_filters.derive().register("created_at", value_format="datetime")
    """

    def __init__(self, fields: Optional[Mapping[str, FieldConfig]] = None):
        """
        Initialize FieldRegistry.

        Args:
            fields: Initial entries
        """
        self._fields: Dict[str, FieldConfig] = dict(fields or {})

    def register(self, *keys: str, **options: Any) -> "FieldRegistry":
        """
        Whitelist one or more attributes, merging options into existing entries.

        Options given here override the same options of an earlier call for
        the same key; options not given are preserved. ``alias`` defaults to
        the key name.

        Args:
            *keys: Attribute names
            **options: alias, entity, predicate, value_format, association, case_insensitive

        Returns:
            FieldRegistry: Self for chaining

        Raises:
            ConfigError: If a key or option is invalid
        """
        for key in keys:
            if not isinstance(key, str) or not key:
                raise ConfigError(f"Field keys must be non-empty strings, got {key!r}")
        normalized = _normalize_options(options)

        fields = dict(self._fields)
        for key in keys:
            existing = fields.get(key)
            if existing is None:
                fields[key] = FieldConfig(key=key, **{"alias": key, **normalized})
            else:
                fields[key] = dataclasses.replace(existing, **normalized)
        self._fields = fields
        return self

    def derive(self) -> "FieldRegistry":
        """Return a registry inheriting these entries that can be extended independently."""
        return FieldRegistry(self._fields)

    def snapshot(self) -> Mapping[str, FieldConfig]:
        """Read-only view of the current entries, unaffected by later registrations."""
        return MappingProxyType(self._fields)

    def get(self, key: str) -> Optional[FieldConfig]:
        return self._fields.get(key)

    def keys(self):
        return self._fields.keys()

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"FieldRegistry({list(self._fields)!r})"
