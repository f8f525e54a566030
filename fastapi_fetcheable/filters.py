"""Filter engine with strategy pattern for predicate handling."""

import logging
import operator
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from dateutil.parser import parse
from sqlalchemy import ColumnElement, Enum, Select, String, and_, cast, not_, or_

from fastapi_fetcheable.associations import base_entity, join_association, resolve_column
from fastapi_fetcheable.config import FetcheableConfig, get_config
from fastapi_fetcheable.exceptions import UnsupportedPredicateError
from fastapi_fetcheable.models import (
    LIST_PREDICATES,
    RANGE_PREDICATES,
    PredicateKind,
    ValueFormat,
)
from fastapi_fetcheable.registry import FieldConfig, FieldRegistry
from fastapi_fetcheable.validation import FILTER_SHAPES, validate_parameter

logger = logging.getLogger(__name__)

# Type alias for predicate strategy functions
PredicateStrategyFn = Callable[[ColumnElement[Any], Any, Optional[type]], Optional[Any]]


def _coerce_value(column: ColumnElement[Any], raw: Any, pytype: Optional[type] = None) -> Any:
    """
    Coerce raw string value to column's Python type.

    Args:
        column: SQLAlchemy column element
        raw: Raw value, only strings are coerced
        pytype: Optional pre-fetched python type (for performance)

    Returns:
        Any: Coerced value, or the raw value if it cannot be coerced
    """
    if not isinstance(raw, str):
        return raw
    if pytype is None:
        try:
            pytype = getattr(column.type, "python_type", None)
        except Exception:
            pytype = None
    if pytype is None or isinstance(raw, pytype):
        return raw
    if pytype is bool:
        val = raw.strip().lower()
        if val in {"true", "1", "t", "yes", "y"}:
            return True
        if val in {"false", "0", "f", "no", "n"}:
            return False
        return raw
    if pytype is int:
        try:
            return int(raw)
        except ValueError:
            try:
                return int(float(raw))
            except ValueError:
                return raw
    if pytype is datetime:
        try:
            return datetime.fromisoformat(raw)
        except (ValueError, AttributeError):
            try:
                return parse(raw)
            except (ValueError, OverflowError):
                return raw
    try:
        return pytype(raw)
    except Exception:
        return raw


def _split_values(raw: str) -> List[str]:
    """
    Split comma-separated values.

    Args:
        raw: Raw string of comma-separated values

    Returns:
        List[str]: Stripped, non-empty values
    """
    return [item for item in (part.strip() for part in raw.split(",")) if item]


def _flatten(values: Any) -> Iterable[Any]:
    """Yield the scalars of an arbitrarily nested list."""
    if isinstance(values, (list, tuple)):
        for value in values:
            yield from _flatten(value)
    else:
        yield values


def _unique_values(values: Any) -> List[Any]:
    """Flatten, drop None and de-duplicate, keeping first-seen order."""
    seen = []
    for value in _flatten(values):
        if value is not None and value not in seen:
            seen.append(value)
    return seen


def _is_string_column(col: ColumnElement[Any]) -> bool:
    """
    Check if a column has a string type in the database.

    Enum columns subclass String in SQLAlchemy but are not text on every
    backend, so they count as non-string.

    Args:
        col: SQLAlchemy column element

    Returns:
        bool: True if the column is a string/text type
    """
    col_type = getattr(col, "type", None)
    return isinstance(col_type, String) and not isinstance(col_type, Enum)


def _text_column(col: ColumnElement[Any]) -> ColumnElement[Any]:
    """Cast non-string columns to text so pattern matching works on them."""
    return col if _is_string_column(col) else cast(col, String)


# --- Strategy functions for each predicate ---


def _comparison(op: Callable[[Any, Any], Any]) -> PredicateStrategyFn:
    def strategy(column: ColumnElement[Any], raw: Any, pytype: Optional[type]) -> Any:
        return op(column, _coerce_value(column, raw, pytype))

    return strategy


def _strategy_ilike(column: ColumnElement[Any], raw: Any, pytype: Optional[type]) -> Any:
    return _text_column(column).ilike(f"%{raw}%")


def _strategy_matches(column: ColumnElement[Any], raw: Any, pytype: Optional[type]) -> Any:
    return _text_column(column).ilike(str(raw))


def _strategy_does_not_match(
    column: ColumnElement[Any], raw: Any, pytype: Optional[type]
) -> Any:
    return not_(_text_column(column).ilike(f"%{raw}%"))


def _all_of(strategy: PredicateStrategyFn) -> PredicateStrategyFn:
    """Every value must satisfy ``strategy`` (AND)."""

    def grouped(column: ColumnElement[Any], values: Any, pytype: Optional[type]) -> Any:
        conditions = [strategy(column, v, pytype) for v in _flatten(values)]
        return and_(*conditions) if conditions else None

    return grouped


def _any_of(strategy: PredicateStrategyFn) -> PredicateStrategyFn:
    """At least one value must satisfy ``strategy`` (OR)."""

    def grouped(column: ColumnElement[Any], values: Any, pytype: Optional[type]) -> Any:
        conditions = [strategy(column, v, pytype) for v in _flatten(values)]
        return or_(*conditions) if conditions else None

    return grouped


def _strategy_in(column: ColumnElement[Any], values: Any, pytype: Optional[type]) -> Any:
    vals = [_coerce_value(column, v, pytype) for v in _unique_values(values)]
    return column.in_(vals) if vals else None


def _strategy_not_in(column: ColumnElement[Any], values: Any, pytype: Optional[type]) -> Any:
    vals = [_coerce_value(column, v, pytype) for v in _unique_values(values)]
    return not_(column.in_(vals)) if vals else None


def _strategy_in_all(column: ColumnElement[Any], values: Any, pytype: Optional[type]) -> Any:
    conditions = [column.in_([_coerce_value(column, v, pytype)]) for v in _unique_values(values)]
    return and_(*conditions) if conditions else None


def _strategy_in_any(column: ColumnElement[Any], values: Any, pytype: Optional[type]) -> Any:
    conditions = [column.in_([_coerce_value(column, v, pytype)]) for v in _unique_values(values)]
    return or_(*conditions) if conditions else None


def _value_sets(column: ColumnElement[Any], values: Any, pytype: Optional[type]) -> List[list]:
    """Each element of ``values`` as its own coerced, non-empty set."""
    sets = []
    for group in values if isinstance(values, (list, tuple)) else [values]:
        vals = [_coerce_value(column, v, pytype) for v in _flatten(group) if v is not None]
        if vals:
            sets.append(vals)
    return sets


def _strategy_not_in_all(column: ColumnElement[Any], values: Any, pytype: Optional[type]) -> Any:
    conditions = [not_(column.in_(vals)) for vals in _value_sets(column, values, pytype)]
    return and_(*conditions) if conditions else None


def _strategy_not_in_any(column: ColumnElement[Any], values: Any, pytype: Optional[type]) -> Any:
    conditions = [not_(column.in_(vals)) for vals in _value_sets(column, values, pytype)]
    return or_(*conditions) if conditions else None


def _strategy_between(
    column: ColumnElement[Any], bounds: Any, pytype: Optional[type]
) -> Optional[Any]:
    if len(bounds) == 2:
        low = _coerce_value(column, bounds[0], pytype)
        high = _coerce_value(column, bounds[1], pytype)
        return column.between(low, high)
    return None


def _strategy_not_between(
    column: ColumnElement[Any], bounds: Any, pytype: Optional[type]
) -> Optional[Any]:
    condition = _strategy_between(column, bounds, pytype)
    return not_(condition) if condition is not None else None


_strategy_eq = _comparison(operator.eq)
_strategy_not_eq = _comparison(operator.ne)
_strategy_gt = _comparison(operator.gt)
_strategy_gteq = _comparison(operator.ge)
_strategy_lt = _comparison(operator.lt)
_strategy_lteq = _comparison(operator.le)

# Strategy registry: maps PredicateKind -> handler function
PREDICATE_STRATEGIES: Dict[PredicateKind, PredicateStrategyFn] = {
    PredicateKind.EQ: _strategy_eq,
    PredicateKind.NOT_EQ: _strategy_not_eq,
    PredicateKind.EQ_ALL: _all_of(_strategy_eq),
    PredicateKind.EQ_ANY: _any_of(_strategy_eq),
    PredicateKind.NOT_EQ_ALL: _all_of(_strategy_not_eq),
    PredicateKind.NOT_EQ_ANY: _any_of(_strategy_not_eq),
    PredicateKind.GT: _strategy_gt,
    PredicateKind.GTEQ: _strategy_gteq,
    PredicateKind.LT: _strategy_lt,
    PredicateKind.LTEQ: _strategy_lteq,
    PredicateKind.GT_ALL: _all_of(_strategy_gt),
    PredicateKind.GT_ANY: _any_of(_strategy_gt),
    PredicateKind.GTEQ_ALL: _all_of(_strategy_gteq),
    PredicateKind.GTEQ_ANY: _any_of(_strategy_gteq),
    PredicateKind.LT_ALL: _all_of(_strategy_lt),
    PredicateKind.LT_ANY: _any_of(_strategy_lt),
    PredicateKind.LTEQ_ALL: _all_of(_strategy_lteq),
    PredicateKind.LTEQ_ANY: _any_of(_strategy_lteq),
    PredicateKind.ILIKE: _strategy_ilike,
    PredicateKind.MATCHES: _strategy_matches,
    PredicateKind.DOES_NOT_MATCH: _strategy_does_not_match,
    PredicateKind.ILIKE_ALL: _all_of(_strategy_ilike),
    PredicateKind.ILIKE_ANY: _any_of(_strategy_ilike),
    PredicateKind.MATCHES_ALL: _all_of(_strategy_matches),
    PredicateKind.MATCHES_ANY: _any_of(_strategy_matches),
    PredicateKind.DOES_NOT_MATCH_ALL: _all_of(_strategy_does_not_match),
    PredicateKind.DOES_NOT_MATCH_ANY: _any_of(_strategy_does_not_match),
    PredicateKind.IN: _strategy_in,
    PredicateKind.NOT_IN: _strategy_not_in,
    PredicateKind.IN_ALL: _strategy_in_all,
    PredicateKind.IN_ANY: _strategy_in_any,
    PredicateKind.NOT_IN_ALL: _strategy_not_in_all,
    PredicateKind.NOT_IN_ANY: _strategy_not_in_any,
    PredicateKind.BETWEEN: _strategy_between,
    PredicateKind.NOT_BETWEEN: _strategy_not_between,
}


def catalog_predicate(predicate: Any) -> PredicateKind:
    """
    Look up a predicate name in the catalog.

    Args:
        predicate: Configured predicate

    Returns:
        PredicateKind: Catalog entry

    Raises:
        UnsupportedPredicateError: If the predicate is not in the catalog
    """
    if isinstance(predicate, str):
        try:
            kind = PredicateKind(predicate)
        except ValueError:
            kind = None
        if kind in PREDICATE_STRATEGIES:
            return kind
    raise UnsupportedPredicateError(predicate)


class FilterEngine:
    """
    Engine for compiling ``filter[...]`` parameters into SQL conditions.

    Uses the strategy pattern to dispatch predicates through a static catalog.
    Fields configured with a callable predicate bypass the catalog and the
    callable's condition is used as is.

    Values of one field are OR'd together; fields are AND'd with each other.
    """

    def __init__(self, config: Optional[FetcheableConfig] = None):
        """
        Initialize FilterEngine.

        Args:
            config: Configuration to use instead of the process-wide one
        """
        self.config = config

    @property
    def settings(self) -> FetcheableConfig:
        """Configuration in effect for this engine."""
        return self.config or get_config()

    @staticmethod
    def get_column_type(column: ColumnElement[Any]) -> Optional[type]:
        """
        Get the Python type of a column.

        Computed columns resolve to a new expression on every call, so the
        type is read from the expression each time.

        Args:
            column: SQLAlchemy column element

        Returns:
            Optional[type]: Python type of the column or None
        """
        try:
            return getattr(column.type, "python_type", None)
        except (AttributeError, NotImplementedError):
            return None

    @staticmethod
    def build_predicate(
        predicate: Any, column: ColumnElement[Any], value: Any, pytype: Optional[type] = None
    ) -> Optional[Any]:
        """
        Build one leaf condition through the catalog.

        Args:
            predicate: Catalog predicate name
            column: Column to apply the predicate to
            value: Scalar, ``[low, high]`` bounds, or list of value lists
            pytype: Optional pre-fetched python type (for performance)

        Returns:
            Optional[Any]: SQLAlchemy condition or None if the value yields no condition

        Raises:
            UnsupportedPredicateError: If the predicate is not in the catalog
        """
        strategy = PREDICATE_STRATEGIES[catalog_predicate(predicate)]
        return strategy(column, value, pytype)

    def compile(
        self,
        query: Select,
        filter_params: Any,
        registry: FieldRegistry,
    ) -> Tuple[Select, Optional[Any]]:
        """
        Compile filter parameters into a single condition.

        Unconfigured keys are ignored. Associations are joined onto the query
        on demand, once per target.

        Args:
            query: Base SQLAlchemy Select query
            filter_params: Raw ``filter`` parameter root
            registry: Whitelisted filter fields

        Returns:
            Tuple[Select, Optional[Any]]: Query with needed joins, and the
            combined condition or None when no filter applies

        Raises:
            ParameterTypeError: If the ``filter`` root has the wrong shape
            UnsupportedPredicateError: If a field uses an unknown predicate
        """
        if not filter_params:
            return query, None

        validate_parameter("filter", filter_params, FILTER_SHAPES)
        if not isinstance(filter_params, Mapping):
            return query, None

        fields = registry.snapshot()
        entity = base_entity(query)
        groups = []
        for key, raw in filter_params.items():
            field = fields.get(key)
            if field is None:
                logger.debug("Ignoring unconfigured filter %r", key)
                continue
            if raw is None or raw == "" or raw == []:
                continue

            target = field.entity or entity
            if target is not None and entity is not None and target is not entity:
                query = join_association(query, entity, target, field.association)

            conditions = self._compile_field(query, field, target, raw)
            if conditions:
                groups.append(or_(*conditions) if len(conditions) > 1 else conditions[0])

        if not groups:
            return query, None
        return query, and_(*groups) if len(groups) > 1 else groups[0]

    def apply_filters(self, query: Select, filter_params: Any, registry: FieldRegistry) -> Select:
        """
        Apply filter parameters to a query.

        Args:
            query: Base SQLAlchemy Select query
            filter_params: Raw ``filter`` parameter root
            registry: Whitelisted filter fields

        Returns:
            Select: Query with joins and the WHERE condition applied
        """
        query, condition = self.compile(query, filter_params, registry)
        if condition is not None:
            query = query.where(condition)
        return query

    def _convert(self, field: FieldConfig, tokens: List[str]) -> List[Any]:
        """Apply the field's value format to each token, dropping unparseable ones."""
        if field.value_format != ValueFormat.DATETIME:
            return list(tokens)
        parser = self.settings.datetime_parser
        converted = []
        for token in tokens:
            try:
                converted.append(parser(token))
            except ValueError:
                logger.debug("Ignoring unparseable datetime %r for filter %r", token, field.key)
        return converted

    @staticmethod
    def _as_items(field: FieldConfig, raw: Any, accepts_list: bool) -> Optional[List[str]]:
        """
        Normalize a raw value into a list of string items.

        Returns None when the value's shape is not permitted for the field.
        """
        if isinstance(raw, Mapping):
            return None
        if isinstance(raw, (list, tuple)):
            if not accepts_list:
                return None
            return [str(item) for item in raw if item is not None and not isinstance(item, Mapping)]
        return [str(raw)]

    def _compile_field(
        self, query: Select, field: FieldConfig, entity: Any, raw: Any
    ) -> List[Any]:
        """Build the conditions of one field, to be OR'd together."""
        predicate = field.predicate
        is_list_format = field.value_format == ValueFormat.ARRAY

        if field.is_custom:
            items = self._as_items(field, raw, is_list_format)
            if items is None:
                logger.debug("Ignoring filter %r: list values are not permitted", field.key)
                return []
            tokens = [token for item in items for token in _split_values(item)]
            return [
                condition
                for condition in (predicate(query, value) for value in self._convert(field, tokens))
                if condition is not None
            ]

        kind = catalog_predicate(predicate)
        column = resolve_column(entity, field.alias)
        if column is None:
            logger.warning(
                "Ignoring filter %r: %r has no column %r", field.key, entity, field.alias
            )
            return []
        pytype = self.get_column_type(column)

        if kind in RANGE_PREDICATES:
            items = self._as_items(field, raw, True)
            conditions = []
            for item in items or []:
                bounds = self._convert(field, _split_values(item))
                condition = self.build_predicate(kind, column, bounds, pytype)
                if condition is not None:
                    conditions.append(condition)
            return conditions

        if kind in LIST_PREDICATES:
            items = self._as_items(field, raw, True)
            values = [self._convert(field, _split_values(item)) for item in items or []]
            values = [group for group in values if group]
            if not values:
                return []
            condition = self.build_predicate(kind, column, values, pytype)
            return [condition] if condition is not None else []

        items = self._as_items(field, raw, is_list_format)
        if items is None:
            logger.debug("Ignoring filter %r: list values are not permitted", field.key)
            return []
        tokens = [token for item in items for token in _split_values(item)]
        conditions = []
        for value in self._convert(field, tokens):
            condition = self.build_predicate(kind, column, value, pytype)
            if condition is not None:
                conditions.append(condition)
        return conditions
