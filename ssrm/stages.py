"""
Match, sort and pagination stage builders.

Each builder is a pure function of the request and returns a (possibly empty)
list of aggregation stages, so the planner can concatenate them in order.
"""

import re
from typing import Any, Dict, List

from .models import (
    DateRangeFilter,
    EqualsFilter,
    FilterDescriptor,
    NumberFilter,
    TextFilter,
    ViewRequest,
)

Stage = Dict[str, Any]

ID_PREFIX = "_id."


def filter_predicate(field: str, descriptor: FilterDescriptor) -> Dict[str, Any]:
    """Return the `$match` fragment for one filter, or {} if it contributes nothing.

    Text filters are literal substrings: regex metacharacters are escaped.
    """
    if isinstance(descriptor, TextFilter):
        return {field: {"$regex": re.escape(descriptor.value), "$options": "i"}}
    if isinstance(descriptor, NumberFilter):
        return {field: descriptor.value}
    if isinstance(descriptor, DateRangeFilter):
        bounds: Dict[str, Any] = {}
        if descriptor.date_from:
            bounds["$gte"] = descriptor.date_from
        if descriptor.date_to:
            bounds["$lte"] = descriptor.date_to
        return {field: bounds} if bounds else {}
    if isinstance(descriptor, EqualsFilter):
        return {field: descriptor.value}
    return {}


def build_filter_stages(request: ViewRequest) -> List[Stage]:
    match: Dict[str, Any] = {}
    for field, descriptor in request.filter_model.items():
        match.update(filter_predicate(field, descriptor))
    return [{"$match": match}] if match else []


def build_group_prefix_stages(request: ViewRequest) -> List[Stage]:
    """Scope documents to the branch of the group tree the grid has expanded.

    Emitted as its own `$match` after the filter match; consecutive matches
    are ANDed by the server.
    """
    upto = min(len(request.row_group_cols), len(request.group_keys))
    match: Dict[str, Any] = {}
    for i in range(upto):
        field = request.row_group_cols[i].effective_field
        if not field:
            continue
        match[field] = request.group_keys[i]
    return [{"$match": match}] if match else []


def build_sort_stages(request: ViewRequest, grouped: bool) -> List[Stage]:
    """Build one multi-key `$sort`.

    `grouped` means a grouping stage ran and the level is not a leaf level, in
    which case column values live under the group identifier.
    """
    prefix = ID_PREFIX if grouped and request.at_group_level else ""
    sort: Dict[str, int] = {}
    for item in request.sort_model:
        if item.is_auto_group_column:
            continue
        sort[prefix + item.col_id] = -1 if item.descending else 1
    return [{"$sort": sort}] if sort else []


def build_pagination_stages(request: ViewRequest) -> List[Stage]:
    """`$skip` then `$limit`, emitting only the bounds the grid supplied."""
    stages: List[Stage] = []
    if request.start_row is not None:
        stages.append({"$skip": request.start_row})
        if request.end_row is not None:
            stages.append({"$limit": request.end_row - request.start_row})
    return stages
