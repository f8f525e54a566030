"""Entity, column and association resolution for Select queries."""

import logging
from typing import Any, Optional

from sqlalchemy import ColumnElement, Select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.sql.selectable import Join
from sqlalchemy.sql.util import find_tables

from fastapi_fetcheable.exceptions import ConfigError

logger = logging.getLogger(__name__)


def _mapper(entity: Any) -> Optional[Any]:
    if entity is None:
        return None
    try:
        return sa_inspect(entity)
    except NoInspectionAvailable:
        return None


def base_entity(query: Select) -> Optional[type]:
    """
    Get the entity the query selects from.

    Args:
        query: SQLAlchemy Select query

    Returns:
        Optional[type]: Mapped class of the first selected entity, or None
    """
    try:
        column_descriptions = query.column_descriptions
    except Exception:
        return None
    if not column_descriptions:
        return None
    return column_descriptions[0].get("entity")


def resolve_column(entity: Any, name: str) -> Optional[ColumnElement[Any]]:
    """
    Resolve a mapped attribute of an entity to a SQL expression.

    Plain column attributes and ``hybrid_property`` expressions are accepted;
    relationships and unknown names are not.

    Args:
        entity: Mapped class
        name: Attribute name

    Returns:
        Optional[ColumnElement]: The SQL expression, or None if the entity has no such column
    """
    if not name or not isinstance(name, str):
        return None
    mapper = _mapper(entity)
    if mapper is None or not hasattr(mapper, "column_attrs"):
        return None

    if name in mapper.column_attrs:
        return getattr(entity, name).__clause_element__()

    descriptor = mapper.all_orm_descriptors.get(name)
    if not isinstance(descriptor, hybrid_property):
        return None
    attr = getattr(entity, name, None)
    if isinstance(attr, ColumnElement):
        return attr
    if hasattr(attr, "__clause_element__"):
        return attr.__clause_element__()
    return None


def is_joined(query: Select, entity: Any) -> bool:
    """
    Check whether the entity's table is already part of an explicit join.

    Args:
        query: SQLAlchemy Select query
        entity: Mapped class

    Returns:
        bool: True if a JOIN in the query's FROM list already includes the table
    """
    mapper = _mapper(entity)
    if mapper is None:
        return False
    table = mapper.local_table
    for from_ in query.get_final_froms():
        if isinstance(from_, Join) and table in find_tables(from_):
            return True
    return False


def join_association(
    query: Select, base: Any, target: Any, association: Optional[str] = None
) -> Select:
    """
    Join ``target`` onto a query selecting from ``base``.

    The join goes through the relationship named ``association`` (defaulting
    to the target's table name) when ``base`` has one; otherwise the target
    entity is joined directly and SQLAlchemy infers the ON clause from the
    foreign keys. Nothing is joined when the target is already joined.

    Args:
        query: SQLAlchemy Select query
        base: Mapped class the query selects from
        target: Mapped class to join
        association: Relationship name on ``base``

    Returns:
        Select: Query with the join applied

    Raises:
        ConfigError: If an explicit association is not a relationship of ``base``
    """
    if is_joined(query, target):
        return query

    target_mapper = _mapper(target)
    relationship_name = association or (
        target_mapper.local_table.name if target_mapper is not None else None
    )
    base_mapper = _mapper(base)
    if base_mapper is not None and relationship_name in base_mapper.relationships:
        logger.debug("Joining %s through relationship %r", target, relationship_name)
        return query.join(getattr(base, relationship_name))

    if association is not None:
        raise ConfigError(f"{base!r} has no relationship named {association!r}")

    logger.debug("Joining %s on inferred foreign keys", target)
    return query.join(target)
