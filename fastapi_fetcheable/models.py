"""fastapi-fetcheable models"""

from dataclasses import dataclass, field
from enum import StrEnum
from math import ceil
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy import func


class PredicateKind(StrEnum):
    """Filter predicates"""

    EQ = "eq"  # =
    NOT_EQ = "not_eq"  # !=
    EQ_ALL = "eq_all"
    EQ_ANY = "eq_any"
    NOT_EQ_ALL = "not_eq_all"
    NOT_EQ_ANY = "not_eq_any"

    GT = "gt"  # >
    GTEQ = "gteq"  # >=
    LT = "lt"  # <
    LTEQ = "lteq"  # <=
    GT_ALL = "gt_all"
    GT_ANY = "gt_any"
    GTEQ_ALL = "gteq_all"
    GTEQ_ANY = "gteq_any"
    LT_ALL = "lt_all"
    LT_ANY = "lt_any"
    LTEQ_ALL = "lteq_all"
    LTEQ_ANY = "lteq_any"

    ILIKE = "ilike"  # ILIKE %value%
    MATCHES = "matches"  # ILIKE value
    DOES_NOT_MATCH = "does_not_match"  # NOT ILIKE %value%
    ILIKE_ALL = "ilike_all"
    ILIKE_ANY = "ilike_any"
    MATCHES_ALL = "matches_all"
    MATCHES_ANY = "matches_any"
    DOES_NOT_MATCH_ALL = "does_not_match_all"
    DOES_NOT_MATCH_ANY = "does_not_match_any"

    IN = "in"  # IN (...)
    NOT_IN = "not_in"  # NOT IN (...)
    IN_ALL = "in_all"
    IN_ANY = "in_any"
    NOT_IN_ALL = "not_in_all"
    NOT_IN_ANY = "not_in_any"

    BETWEEN = "between"  # BETWEEN x AND y
    NOT_BETWEEN = "not_between"  # NOT BETWEEN x AND y


# Predicates whose leaf receives one list of value lists instead of a scalar
LIST_PREDICATES = frozenset(
    {
        PredicateKind.EQ_ALL,
        PredicateKind.EQ_ANY,
        PredicateKind.NOT_EQ_ALL,
        PredicateKind.NOT_EQ_ANY,
        PredicateKind.GT_ALL,
        PredicateKind.GT_ANY,
        PredicateKind.GTEQ_ALL,
        PredicateKind.GTEQ_ANY,
        PredicateKind.LT_ALL,
        PredicateKind.LT_ANY,
        PredicateKind.LTEQ_ALL,
        PredicateKind.LTEQ_ANY,
        PredicateKind.ILIKE_ALL,
        PredicateKind.ILIKE_ANY,
        PredicateKind.MATCHES_ALL,
        PredicateKind.MATCHES_ANY,
        PredicateKind.DOES_NOT_MATCH_ALL,
        PredicateKind.DOES_NOT_MATCH_ANY,
        PredicateKind.IN,
        PredicateKind.NOT_IN,
        PredicateKind.IN_ALL,
        PredicateKind.IN_ANY,
        PredicateKind.NOT_IN_ALL,
        PredicateKind.NOT_IN_ANY,
    }
)

RANGE_PREDICATES = frozenset({PredicateKind.BETWEEN, PredicateKind.NOT_BETWEEN})


class ValueFormat(StrEnum):
    """How raw filter values are interpreted"""

    STRING = "string"
    ARRAY = "array"  # field accepts list-shaped params
    DATETIME = "datetime"  # tokens go through the configured datetime parser


class SortDirection(StrEnum):
    """Sorting orders"""

    ASC = "asc"
    DESC = "desc"


SORT_SIGNS: Dict[str, SortDirection] = {
    "+": SortDirection.ASC,
    "-": SortDirection.DESC,
}


@dataclass(frozen=True)
class SortExpression:
    """One resolved ORDER BY term, in the position the client asked for it."""

    key: str
    entity: Any
    column: str
    direction: SortDirection = SortDirection.ASC
    case_insensitive: bool = False
    association: Optional[str] = None
    attribute: Any = field(default=None, compare=False, repr=False)

    def to_clause(self) -> Any:
        """Render the SQLAlchemy ``ORDER BY`` clause for this expression."""
        expr = func.lower(self.attribute) if self.case_insensitive else self.attribute
        return expr.desc() if self.direction == SortDirection.DESC else expr.asc()


class PaginationWindow(BaseModel):
    """Pagination window and the metadata exposed as response headers"""

    limit: int
    offset: int
    total_count: int
    page: int
    total_pages: int

    @classmethod
    def build(cls, limit: int, page: int, total_count: int) -> "PaginationWindow":
        """Derive offset and total pages from the requested page and size."""
        total_pages = ceil(total_count / limit) if limit > 0 else 0
        return cls(
            limit=limit,
            offset=(page - 1) * limit,
            total_count=total_count,
            page=page,
            total_pages=total_pages,
        )

    def headers(self) -> Dict[str, str]:
        """Pagination response headers."""
        return {
            "Pagination-Current-Page": str(self.page),
            "Pagination-Per": str(self.limit),
            "Pagination-Total-Pages": str(self.total_pages),
            "Pagination-Total-Count": str(self.total_count),
        }


class FetchParams(BaseModel):
    """Raw ``filter``, ``sort`` and ``page`` parameter roots of one request"""

    filters: Optional[Any] = None
    sort: Optional[Any] = None
    page: Optional[Any] = None
