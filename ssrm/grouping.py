"""
Grouping and pivot stage builders.

Row grouping is incremental: the grid reveals one level of the tree per
request and resends the keys of every ancestor it has already expanded. Pivot
mode instead groups every remaining level at once together with the pivot
columns, then folds the per-pivot-value buckets into a `pivot` map per row.
"""

from typing import Any, Dict, List, Tuple

from .models import AggFunc, ColumnRef, ViewRequest
from .stages import Stage

# Joins the values of several pivot columns into one key. Not escaped: a pivot
# value containing a backtick can collide with another combination.
PIVOT_KEY_SEPARATOR = "`"


def _ref(field: str) -> str:
    return f"${field}"


def _accumulator(agg: AggFunc, field: str) -> Dict[str, Any]:
    if agg is AggFunc.COUNT:
        return {"$sum": 1}
    return {f"${agg.value}": _ref(field)}


def _total_accumulator(agg: AggFunc, field: str) -> Dict[str, Any]:
    # Source documents are gone by now: counts are summed as partials
    if agg is AggFunc.COUNT:
        return {"$sum": _ref(field)}
    return {f"${agg.value}": _ref(field)}


def value_accumulators(value_cols: List[ColumnRef]) -> Dict[str, Any]:
    accumulators: Dict[str, Any] = {}
    for col in value_cols:
        field = col.effective_field
        if not field:
            continue
        accumulators[field] = _accumulator(col.agg_func, field)
    return accumulators


def _group_identifier(request: ViewRequest) -> Dict[str, Any]:
    depth = len(request.group_keys)
    id_doc: Dict[str, Any] = {}

    for i, col in enumerate(request.row_group_cols):
        field = col.effective_field
        if not field:
            continue
        if i < depth:
            id_doc[field] = request.group_keys[i]
        elif request.pivoting:
            id_doc[field] = _ref(field)
        elif i == depth:
            # Only the next level down is revealed
            id_doc[field] = _ref(field)
            break
        else:
            break

    if request.pivoting:
        for col in request.pivot_cols:
            field = col.effective_field
            if field:
                id_doc[field] = _ref(field)

    return id_doc


def build_group_stages(request: ViewRequest) -> Tuple[List[Stage], bool]:
    """Build the `$group` stage for the requested level.

    Returns:
        (stages, grouped) where `grouped` tells whether a grouping stage was
        emitted, which the pivot and sort builders depend on.
    """
    if not request.row_group_cols and not request.pivoting:
        if not request.value_cols:
            return [], False
        group: Dict[str, Any] = {"_id": None}
        group.update(value_accumulators(request.value_cols))
        return [{"$group": group}], True

    if not request.pivoting and not request.at_group_level:
        # Leaf level: the prefix match already scopes the branch
        return [], False

    id_doc = _group_identifier(request)
    accumulators = value_accumulators(request.value_cols)
    if not id_doc and not accumulators:
        return [], False

    group = {"_id": id_doc}
    group.update(accumulators)
    return [{"$group": group}], True


def _pivot_key_expression(pivot_fields: List[str]) -> Any:
    if len(pivot_fields) == 1:
        return f"$_id.{pivot_fields[0]}"
    parts: List[str] = []
    for idx, field in enumerate(pivot_fields):
        if idx:
            parts.append(PIVOT_KEY_SEPARATOR)
        parts.append(f"$_id.{field}")
    return {"$concat": parts}


def build_pivot_stages(request: ViewRequest, grouped: bool) -> List[Stage]:
    """Fold the pivot buckets of a full-depth group into a `pivot` map per row.

    The second `$group` re-groups on the row-group coordinates alone, pushes one
    `{pivotKey, values}` entry per bucket and recomputes grand totals over the
    bucket aggregates. `$arrayToObject` then turns the pushed entries into the
    `pivot` map and the intermediate array is dropped.
    """
    if not request.pivoting or not grouped:
        return []

    pivot_fields = [f for f in (col.effective_field for col in request.pivot_cols) if f]
    if not pivot_fields:
        return []

    group_id: Dict[str, Any] = {}
    for col in request.row_group_cols:
        field = col.effective_field
        if field:
            group_id[field] = f"$_id.{field}"

    values: Dict[str, Any] = {}
    totals: Dict[str, Any] = {}
    for col in request.value_cols:
        field = col.effective_field
        if not field:
            continue
        values[field] = _ref(field)
        totals[field] = _total_accumulator(col.agg_func, field)

    regroup: Dict[str, Any] = {
        "_id": group_id,
        "pivotRows": {
            "$push": {
                "pivotKey": _pivot_key_expression(pivot_fields),
                "values": values,
            },
        },
    }
    regroup.update(totals)

    return [
        {"$group": regroup},
        {
            "$addFields": {
                "pivot": {
                    "$arrayToObject": {
                        "$map": {
                            "input": "$pivotRows",
                            "as": "row",
                            "in": {"k": "$$row.pivotKey", "v": "$$row.values"},
                        },
                    },
                },
            },
        },
        {"$project": {"pivotRows": 0}},
    ]
