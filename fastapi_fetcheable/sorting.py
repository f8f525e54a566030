"""Sort engine for applying ordering to queries."""

import logging
from typing import Any, List, Tuple

from sqlalchemy import Select

from fastapi_fetcheable.associations import base_entity, join_association, resolve_column
from fastapi_fetcheable.models import SORT_SIGNS, SortDirection, SortExpression
from fastapi_fetcheable.registry import FieldRegistry
from fastapi_fetcheable.validation import SORT_SHAPES, validate_parameter

logger = logging.getLogger(__name__)


class SortEngine:
    """
    Engine for applying ``sort=[+|-]key[,...]`` to SQL queries.

    Handles column resolution (including computed fields and associated
    entities) and sort direction. Unconfigured keys and keys whose column
    does not exist are dropped without error.
    """

    @staticmethod
    def parse_token(token: str) -> Tuple[str, SortDirection]:
        """
        Split one sort token into attribute key and direction.

        Args:
            token: e.g. ``-created_at``

        Returns:
            Tuple[str, SortDirection]: Attribute key and direction
        """
        sign = token[:1]
        if sign in SORT_SIGNS:
            return token[1:], SORT_SIGNS[sign]
        return token, SortDirection.ASC

    def compile(
        self, query: Select, sort_param: Any, registry: FieldRegistry
    ) -> List[SortExpression]:
        """
        Compile a sort parameter into ordered sort expressions.

        Args:
            query: Base SQLAlchemy Select query
            sort_param: Raw ``sort`` parameter
            registry: Whitelisted sort fields

        Returns:
            List[SortExpression]: One expression per usable token, in client order

        Raises:
            ParameterTypeError: If ``sort`` is not a plain string
        """
        if not sort_param:
            return []
        validate_parameter("sort", sort_param, SORT_SHAPES)

        fields = registry.snapshot()
        entity = base_entity(query)
        expressions = []
        for token in sort_param.split(","):
            key, direction = self.parse_token(token.strip())
            field = fields.get(key)
            if field is None:
                logger.debug("Ignoring unconfigured sort %r", key)
                continue

            target = field.entity or entity
            attribute = resolve_column(target, field.alias)
            if attribute is None:
                logger.debug("Ignoring sort %r: %r has no column %r", key, target, field.alias)
                continue

            expressions.append(
                SortExpression(
                    key=key,
                    entity=target,
                    column=field.alias,
                    direction=direction,
                    case_insensitive=field.case_insensitive,
                    association=field.association,
                    attribute=attribute,
                )
            )
        return expressions

    def apply_sort(self, query: Select, sort_param: Any, registry: FieldRegistry) -> Select:
        """
        Apply sorting to a query.

        Args:
            query: Base SQLAlchemy Select query
            sort_param: Raw ``sort`` parameter
            registry: Whitelisted sort fields

        Returns:
            Select: Query with joins and ORDER BY applied
        """
        expressions = self.compile(query, sort_param, registry)
        if not expressions:
            return query

        entity = base_entity(query)
        for expression in expressions:
            if entity is not None and expression.entity is not entity:
                query = join_association(query, entity, expression.entity, expression.association)
        return query.order_by(*(expression.to_clause() for expression in expressions))
