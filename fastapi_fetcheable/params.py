"""Extraction of ``filter``, ``sort`` and ``page`` roots from query strings."""

import re
from typing import Any, Dict, Iterable, Tuple

from fastapi_fetcheable.models import FetchParams

_NESTED_KEY = re.compile(r"^(filter|page)\[([^\[\]]*)\](\[\])?$")


def _multi_items(query_params: Any) -> Iterable[Tuple[str, str]]:
    if hasattr(query_params, "multi_items"):
        return query_params.multi_items()
    if hasattr(query_params, "items"):
        return query_params.items()
    return query_params


def parse_query_params(query_params: Any) -> FetchParams:
    """
    Group bracketed query parameters into their roots.

    Supports:
        ?filter[name]=john,jane          -> filters={"name": "john,jane"}
        ?filter[tags][]=a,b&filter[tags][]=c -> filters={"tags": ["a,b", "c"]}
        ?sort=-created_at,name           -> sort="-created_at,name"
        ?page[number]=2&page[size]=10    -> page={"number": "2", "size": "10"}

    A bare ``filter=...`` or ``page=...`` is kept as a string (and ``sort[]``
    as a list) so validation can report the wrong shape.

    Args:
        query_params: Starlette QueryParams, a mapping, or (key, value) pairs

    Returns:
        FetchParams: Raw parameter roots
    """
    roots: Dict[str, Any] = {}
    for key, value in _multi_items(query_params):
        match = _NESTED_KEY.match(key)
        if match:
            root_name, sub_key, is_list = match.groups()
            root = roots.setdefault(root_name, {})
            if not isinstance(root, dict):
                continue
            if is_list:
                existing = root.get(sub_key)
                if not isinstance(existing, list):
                    existing = root[sub_key] = []
                existing.append(value)
            else:
                root[sub_key] = value
        elif key in ("filter", "page", "sort"):
            if not isinstance(roots.get(key), str):
                roots[key] = value
        elif key == "sort[]":
            sort = roots.setdefault("sort", [])
            if isinstance(sort, list):
                sort.append(value)

    return FetchParams(
        filters=roots.get("filter"),
        sort=roots.get("sort"),
        page=roots.get("page"),
    )
