"""FastAPI integration for fastapi-fetcheable."""

from typing import Any, Callable, List, Optional

from fastapi import HTTPException, Request, Response, status
from sqlalchemy import Select
from sqlmodel import Session
from sqlmodel.ext.asyncio.session import AsyncSession

from fastapi_fetcheable.config import FetcheableConfig
from fastapi_fetcheable.exceptions import ParameterTypeError
from fastapi_fetcheable.models import FetchParams, PaginationWindow
from fastapi_fetcheable.pagination import PaginationEngine
from fastapi_fetcheable.params import parse_query_params
from fastapi_fetcheable.pipeline import FetchPipeline
from fastapi_fetcheable.registry import FieldRegistry


class FetcheableManager:
    """
    Per-request filtering, sorting and pagination.

    Parses ``filter[...]``, ``sort`` and ``page[...]`` from the request,
    runs them through a FetchPipeline and writes the pagination headers
    on the response. Parameters with the wrong shape become HTTP 400 errors.

    Usually created through ``fetcheable()``:

        question_fetcheable = fetcheable(filters=question_filters, sorts=question_sorts)

        @app.get("/questions/")
        def read_questions(
            session: Session = Depends(get_session),
            fetch: FetcheableManager = Depends(question_fetcheable),
        ):
            return fetch.fetch(select(Question), session)
    """

    def __init__(
        self,
        request: Request,
        response: Optional[Response],
        pipeline: FetchPipeline,
    ):
        """
        Initialize FetcheableManager.

        Args:
            request: FastAPI Request object
            response: Response that receives the pagination headers
            pipeline: Pipeline holding the filter/sort whitelists
        """
        self.request = request
        self.response = response
        self.pipeline = pipeline
        self.params: FetchParams = parse_query_params(request.query_params)
        self.window: Optional[PaginationWindow] = None

    def _set_window(self, window: Optional[PaginationWindow]) -> None:
        self.window = window
        if window is not None and self.response is not None:
            for name, value in window.headers().items():
                self.response.headers[name] = value

    @staticmethod
    def _bad_request(e: ParameterTypeError) -> HTTPException:
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    def apply(self, query: Select, session: Session) -> Select:
        """
        Apply the request's filters, sort and pagination to a query.

        Args:
            query: Base SQLAlchemy Select query
            session: Database session used for counting

        Returns:
            Select: Final query

        Raises:
            HTTPException: If a parameter has the wrong shape
        """
        try:
            query, window = self.pipeline.run(
                query,
                lambda q: PaginationEngine.count_total(q, session),
                filter_params=self.params.filters,
                sort_param=self.params.sort,
                page_param=self.params.page,
            )
        except ParameterTypeError as e:
            raise self._bad_request(e) from e
        self._set_window(window)
        return query

    async def apply_async(self, query: Select, session: AsyncSession) -> Select:
        """
        Apply the request's filters, sort and pagination to a query asynchronously.

        Args:
            query: Base SQLAlchemy Select query
            session: Async database session used for counting

        Returns:
            Select: Final query

        Raises:
            HTTPException: If a parameter has the wrong shape
        """
        try:
            query, window = await self.pipeline.run_async(
                query,
                lambda q: PaginationEngine.count_total_async(q, session),
                filter_params=self.params.filters,
                sort_param=self.params.sort,
                page_param=self.params.page,
            )
        except ParameterTypeError as e:
            raise self._bad_request(e) from e
        self._set_window(window)
        return query

    def fetch(self, query: Select, session: Session) -> List[Any]:
        """
        Apply the request's parameters and execute the query.

        Args:
            query: Base SQLAlchemy Select query
            session: Database session

        Returns:
            List[Any]: Rows of the requested page
        """
        return session.exec(self.apply(query, session)).all()

    async def fetch_async(self, query: Select, session: AsyncSession) -> List[Any]:
        """
        Apply the request's parameters and execute the query asynchronously.

        Args:
            query: Base SQLAlchemy Select query
            session: Async database session

        Returns:
            List[Any]: Rows of the requested page
        """
        result = await session.exec(await self.apply_async(query, session))
        return result.all()


def fetcheable(
    filters: Optional[FieldRegistry] = None,
    sorts: Optional[FieldRegistry] = None,
    config: Optional[FetcheableConfig] = None,
) -> Callable[[Request, Response], FetcheableManager]:
    """
    Build a FastAPI dependency producing a FetcheableManager.

    Args:
        filters: Whitelisted filter fields
        sorts: Whitelisted sort fields
        config: Configuration to use instead of the process-wide one

    Returns:
        Callable: Dependency for ``Depends()``
    """
    pipeline = FetchPipeline(filters=filters, sorts=sorts, config=config)

    def dependency(request: Request, response: Response) -> FetcheableManager:
        return FetcheableManager(request, response, pipeline)

    return dependency
