"""Pagination engine computing page windows over filtered queries."""

import logging
import re
from typing import Any, Awaitable, Callable, Optional, Tuple

from sqlalchemy import Select, func
from sqlmodel import Session, select
from sqlmodel.ext.asyncio.session import AsyncSession

from fastapi_fetcheable.config import FetcheableConfig, PageNumberPolicy, get_config
from fastapi_fetcheable.exceptions import ParameterTypeError
from fastapi_fetcheable.models import PaginationWindow
from fastapi_fetcheable.validation import PAGE_SHAPES, validate_parameter

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_STRICT_INT = re.compile(r"\s*[+-]?\d+\s*")


def _to_int(value: Any, path: str, policy: PageNumberPolicy) -> int:
    """
    Read a pagination value as an integer.

    With the coerce policy the leading integer of the value is used and
    anything without one becomes 0, so ``"abc"`` yields 0 and ``"12abc"``
    yields 12. With the reject policy only plain integers are accepted.

    Args:
        value: Raw parameter value
        path: Parameter path used in the error message
        policy: How to treat non-numeric input

    Returns:
        int: Integer value

    Raises:
        ParameterTypeError: If the value is not an integer and the policy is reject
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, float):
        return int(value)

    text = str(value)
    if policy == PageNumberPolicy.REJECT and not _STRICT_INT.fullmatch(text):
        raise ParameterTypeError(path, type(value).__name__, ("integer",))
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


class PaginationEngine:
    """
    Engine for computing ``page[number]`` / ``page[size]`` windows.

    The total count is requested from a caller-supplied function so that it
    reflects the filtered set before any limit/offset is applied. Errors of
    that function propagate unchanged.
    """

    def __init__(self, config: Optional[FetcheableConfig] = None):
        """
        Initialize PaginationEngine.

        Args:
            config: Configuration to use instead of the process-wide one
        """
        self.config = config

    @property
    def settings(self) -> FetcheableConfig:
        """Configuration in effect for this engine."""
        return self.config or get_config()

    def _read_params(self, page_param: Any, default_size: Optional[int]) -> Tuple[int, int]:
        validate_parameter("page", page_param, PAGE_SHAPES)
        settings = self.settings
        policy = settings.page_number_policy
        if default_size is None:
            default_size = settings.default_page_size
        limit = _to_int(page_param.get("size", default_size), "page[size]", policy)
        page = _to_int(page_param.get("number", 1), "page[number]", policy)
        return limit, page

    @staticmethod
    def _is_absent(page_param: Any) -> bool:
        return not page_param

    def compute(
        self,
        page_param: Any,
        count_fn: Callable[[], int],
        default_size: Optional[int] = None,
    ) -> Optional[PaginationWindow]:
        """
        Compute the pagination window.

        Args:
            page_param: Raw ``page`` parameter root
            count_fn: Returns the size of the filtered, unordered, unwindowed set
            default_size: Page size when ``page[size]`` is omitted
                (default: the configured default_page_size)

        Returns:
            Optional[PaginationWindow]: Window, or None when no ``page`` parameter was given

        Raises:
            ParameterTypeError: If ``page`` is not a mapping
        """
        if self._is_absent(page_param):
            return None
        limit, page = self._read_params(page_param, default_size)
        total_count = count_fn()
        logger.debug("Page %d of size %d over %d rows", page, limit, total_count)
        return PaginationWindow.build(limit=limit, page=page, total_count=total_count)

    async def compute_async(
        self,
        page_param: Any,
        count_fn: Callable[[], Awaitable[int]],
        default_size: Optional[int] = None,
    ) -> Optional[PaginationWindow]:
        """
        Async version of compute, awaiting the count function.

        Args:
            page_param: Raw ``page`` parameter root
            count_fn: Coroutine function returning the size of the filtered set
            default_size: Page size when ``page[size]`` is omitted

        Returns:
            Optional[PaginationWindow]: Window, or None when no ``page`` parameter was given
        """
        if self._is_absent(page_param):
            return None
        limit, page = self._read_params(page_param, default_size)
        total_count = await count_fn()
        return PaginationWindow.build(limit=limit, page=page, total_count=total_count)

    @staticmethod
    def countable(query: Select) -> Select:
        """Strip ORDER BY, LIMIT and OFFSET so the query can be counted."""
        return query.order_by(None).limit(None).offset(None)

    @staticmethod
    def apply_window(query: Select, window: PaginationWindow) -> Select:
        """
        Apply the window's limit and offset.

        Args:
            query: SQLAlchemy Select query
            window: Computed pagination window

        Returns:
            Select: Query restricted to one page
        """
        return query.limit(window.limit).offset(window.offset)

    @staticmethod
    def count_total(query: Select, session: Session) -> int:
        """
        Count total items matching the query.

        Args:
            query: SQLAlchemy Select query with filters applied
            session: Database session

        Returns:
            int: Total count of items
        """
        count_query = select(func.count()).select_from(
            PaginationEngine.countable(query).subquery()
        )
        return session.exec(count_query).one()

    @staticmethod
    async def count_total_async(query: Select, session: AsyncSession) -> int:
        """
        Count total items matching the query asynchronously.

        Args:
            query: SQLAlchemy Select query with filters applied
            session: Async database session

        Returns:
            int: Total count of items
        """
        count_query = select(func.count()).select_from(
            PaginationEngine.countable(query).subquery()
        )
        result = await session.exec(count_query)
        return result.one()
