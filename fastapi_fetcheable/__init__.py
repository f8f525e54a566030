"""fastapi-fetcheable: whitelisted filter, sort and page parameters for FastAPI + SQLModel."""

from . import models as models  # noqa: F401
from .config import (  # noqa: F401
    FetcheableConfig,
    PageNumberPolicy,
    configure,
    get_config,
    parse_epoch_datetime,
    reset_config,
)
from .exceptions import (  # noqa: F401
    ConfigError,
    FetcheableError,
    ParameterTypeError,
    UnsupportedPredicateError,
)
from .filters import PREDICATE_STRATEGIES, FilterEngine  # noqa: F401
from .manager import FetcheableManager, fetcheable  # noqa: F401
from .models import (  # noqa: F401
    FetchParams,
    PaginationWindow,
    PredicateKind,
    SortDirection,
    SortExpression,
    ValueFormat,
)
from .pagination import PaginationEngine  # noqa: F401
from .params import parse_query_params  # noqa: F401
from .pipeline import FetchPipeline  # noqa: F401
from .registry import FieldConfig, FieldRegistry  # noqa: F401
from .sorting import SortEngine  # noqa: F401
from .validation import ParamShape, validate_parameter  # noqa: F401

__version__ = "0.1.0"

__all__ = [
    # FastAPI integration
    "FetcheableManager",
    "fetcheable",
    "parse_query_params",
    # Pipeline and engines
    "FetchPipeline",
    "FilterEngine",
    "SortEngine",
    "PaginationEngine",
    # Strategy registry
    "PREDICATE_STRATEGIES",
    # Field whitelists
    "FieldRegistry",
    "FieldConfig",
    # Configuration
    "FetcheableConfig",
    "PageNumberPolicy",
    "configure",
    "get_config",
    "reset_config",
    "parse_epoch_datetime",
    # Validation
    "ParamShape",
    "validate_parameter",
    # Errors
    "FetcheableError",
    "ConfigError",
    "ParameterTypeError",
    "UnsupportedPredicateError",
    # Models
    "PredicateKind",
    "ValueFormat",
    "SortDirection",
    "SortExpression",
    "PaginationWindow",
    "FetchParams",
    # Module
    "models",
]
