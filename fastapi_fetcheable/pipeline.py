"""Filter, sort and paginate pipeline over one Select query."""

from typing import Any, Awaitable, Callable, Optional, Tuple

from sqlalchemy import Select

from fastapi_fetcheable.config import FetcheableConfig
from fastapi_fetcheable.filters import FilterEngine
from fastapi_fetcheable.models import PaginationWindow
from fastapi_fetcheable.pagination import PaginationEngine
from fastapi_fetcheable.registry import FieldRegistry
from fastapi_fetcheable.sorting import SortEngine

# Counts the rows of a filtered, unordered, unwindowed query
Counter = Callable[[Select], int]
AsyncCounter = Callable[[Select], Awaitable[int]]


class FetchPipeline:
    """
    Runs FilterEngine, SortEngine and PaginationEngine in a fixed order.

    Filtering comes first, then sorting, then pagination: the total count
    must see the filtered rows and must be taken before limit/offset are
    applied.

    Example:
        pipeline = FetchPipeline(filters=question_filters, sorts=question_sorts)
        query, window = pipeline.run(
            select(Question),
            lambda q: PaginationEngine.count_total(q, session),
            filter_params={"content": "python"},
            sort_param="-position",
            page_param={"number": "2", "size": "10"},
        )
    """

    def __init__(
        self,
        filters: Optional[FieldRegistry] = None,
        sorts: Optional[FieldRegistry] = None,
        config: Optional[FetcheableConfig] = None,
    ):
        """
        Initialize FetchPipeline.

        Args:
            filters: Whitelisted filter fields
            sorts: Whitelisted sort fields
            config: Configuration to use instead of the process-wide one
        """
        self.filters = filters if filters is not None else FieldRegistry()
        self.sorts = sorts if sorts is not None else FieldRegistry()
        self.filter_engine = FilterEngine(config=config)
        self.sort_engine = SortEngine()
        self.pagination_engine = PaginationEngine(config=config)

    def _filter_and_sort(self, query: Select, filter_params: Any, sort_param: Any) -> Select:
        query = self.filter_engine.apply_filters(query, filter_params, self.filters)
        return self.sort_engine.apply_sort(query, sort_param, self.sorts)

    def run(
        self,
        query: Select,
        counter: Counter,
        filter_params: Any = None,
        sort_param: Any = None,
        page_param: Any = None,
    ) -> Tuple[Select, Optional[PaginationWindow]]:
        """
        Filter, sort and paginate a query.

        Args:
            query: Base SQLAlchemy Select query
            counter: Counts the rows of the query it is given
            filter_params: Raw ``filter`` parameter root
            sort_param: Raw ``sort`` parameter
            page_param: Raw ``page`` parameter root

        Returns:
            Tuple[Select, Optional[PaginationWindow]]: Final query, and the
            window when pagination was requested
        """
        query = self._filter_and_sort(query, filter_params, sort_param)
        countable = PaginationEngine.countable(query)
        window = self.pagination_engine.compute(page_param, lambda: counter(countable))
        if window is not None:
            query = PaginationEngine.apply_window(query, window)
        return query, window

    async def run_async(
        self,
        query: Select,
        counter: AsyncCounter,
        filter_params: Any = None,
        sort_param: Any = None,
        page_param: Any = None,
    ) -> Tuple[Select, Optional[PaginationWindow]]:
        """
        Async version of run, awaiting the counter.

        Args:
            query: Base SQLAlchemy Select query
            counter: Coroutine function counting the rows of the query it is given
            filter_params: Raw ``filter`` parameter root
            sort_param: Raw ``sort`` parameter
            page_param: Raw ``page`` parameter root

        Returns:
            Tuple[Select, Optional[PaginationWindow]]: Final query and window
        """
        query = self._filter_and_sort(query, filter_params, sort_param)
        countable = PaginationEngine.countable(query)
        window = await self.pagination_engine.compute_async(
            page_param, lambda: counter(countable)
        )
        if window is not None:
            query = PaginationEngine.apply_window(query, window)
        return query, window
