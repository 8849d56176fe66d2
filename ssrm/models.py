"""
Request model for the server-side row model (SSRM) planner.

A grid sends a loosely-shaped JSON object describing the window, grouping,
pivoting, filtering and sorting it wants. Everything here is parsed leniently:
a grid may post half-configured state while the user is still dragging columns
around, so malformed entries are dropped instead of raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from numbers import Number
from typing import Any, Dict, List, Mapping, Optional, Union


AUTO_GROUP_COLUMN_PREFIX = "ag-Grid-AutoColumn"


class AggFunc(str, Enum):
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"

    @classmethod
    def parse(cls, raw: Any) -> "AggFunc":
        """Case-insensitive lookup; anything unknown falls back to SUM."""
        if isinstance(raw, str):
            try:
                return cls(raw.strip().lower())
            except ValueError:
                pass
        return cls.SUM


@dataclass(frozen=True)
class ColumnRef:
    """A grid column. The document field is `field` if set, else `id`."""
    id: Optional[str] = None
    field: Optional[str] = None
    agg_func: AggFunc = AggFunc.SUM

    @property
    def effective_field(self) -> Optional[str]:
        if self.field:
            return self.field
        if self.id:
            return self.id
        return None

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["ColumnRef"]:
        if not isinstance(raw, Mapping):
            return None
        col_id = raw.get("id")
        col_field = raw.get("field")
        return cls(
            id=col_id if isinstance(col_id, str) else None,
            field=col_field if isinstance(col_field, str) else None,
            agg_func=AggFunc.parse(raw.get("aggFunc")),
        )


@dataclass(frozen=True)
class SortItem:
    col_id: str
    descending: bool = False

    @property
    def is_auto_group_column(self) -> bool:
        return self.col_id.startswith(AUTO_GROUP_COLUMN_PREFIX)

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["SortItem"]:
        if not isinstance(raw, Mapping):
            return None
        col_id = raw.get("colId")
        if not isinstance(col_id, str) or not col_id:
            return None
        return cls(col_id=col_id, descending=raw.get("sort") == "desc")


# -----------------------
# Filter descriptors
# -----------------------

@dataclass(frozen=True)
class TextFilter:
    value: str


@dataclass(frozen=True)
class NumberFilter:
    value: Union[int, float]


@dataclass(frozen=True)
class DateRangeFilter:
    date_from: Any = None
    date_to: Any = None


@dataclass(frozen=True)
class EqualsFilter:
    value: Any


@dataclass(frozen=True)
class UnrecognizedFilter:
    pass


FilterDescriptor = Union[TextFilter, NumberFilter, DateRangeFilter, EqualsFilter, UnrecognizedFilter]


def _is_numeric(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def parse_filter(raw: Any) -> FilterDescriptor:
    """Turn one filterModel entry into a descriptor.

    A recognized filterType whose value has the wrong shape yields
    UnrecognizedFilter rather than falling through to equality.
    """
    if not isinstance(raw, Mapping):
        return UnrecognizedFilter()

    filter_type = raw.get("filterType")
    if filter_type == "text":
        value = raw.get("filter")
        return TextFilter(value) if isinstance(value, str) else UnrecognizedFilter()
    if filter_type == "number":
        value = raw.get("filter")
        return NumberFilter(value) if _is_numeric(value) else UnrecognizedFilter()
    if filter_type == "date":
        date_from = raw.get("dateFrom")
        date_to = raw.get("dateTo")
        if date_from or date_to:
            return DateRangeFilter(date_from=date_from or None, date_to=date_to or None)
        return UnrecognizedFilter()
    # Advanced filter model shape: {"value": ..., "operator": ...}
    if "value" in raw:
        return EqualsFilter(raw["value"])
    return UnrecognizedFilter()


# -----------------------
# View request
# -----------------------

def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _columns(raw: Any) -> List[ColumnRef]:
    if not isinstance(raw, list):
        return []
    return [col for col in (ColumnRef.from_payload(item) for item in raw) if col is not None]


@dataclass(frozen=True)
class ViewRequest:
    """One page request from the grid."""
    start_row: Optional[int] = None
    end_row: Optional[int] = None
    row_group_cols: List[ColumnRef] = field(default_factory=list)
    value_cols: List[ColumnRef] = field(default_factory=list)
    pivot_cols: List[ColumnRef] = field(default_factory=list)
    pivot_mode: bool = False
    group_keys: List[Any] = field(default_factory=list)
    filter_model: Dict[str, FilterDescriptor] = field(default_factory=dict)
    sort_model: List[SortItem] = field(default_factory=list)

    @property
    def pivoting(self) -> bool:
        return self.pivot_mode and len(self.pivot_cols) > 0

    @property
    def aggregating(self) -> bool:
        return bool(self.row_group_cols) or self.pivoting or bool(self.value_cols)

    @property
    def at_group_level(self) -> bool:
        """True while the requested level is above the leaves."""
        return len(self.group_keys) < len(self.row_group_cols)

    @classmethod
    def from_payload(cls, payload: Any) -> "ViewRequest":
        """Build a request from the grid's JSON body, defaulting anything missing."""
        if not isinstance(payload, Mapping):
            return cls()

        row_group_cols = _columns(payload.get("rowGroupCols"))

        group_keys = payload.get("groupKeys")
        group_keys = list(group_keys) if isinstance(group_keys, list) else []
        # Keys beyond the grouping depth address nothing
        group_keys = group_keys[:len(row_group_cols)]

        raw_filters = payload.get("filterModel")
        filter_model: Dict[str, FilterDescriptor] = {}
        if isinstance(raw_filters, Mapping):
            for key, raw in raw_filters.items():
                if isinstance(key, str) and key:
                    filter_model[key] = parse_filter(raw)

        raw_sort = payload.get("sortModel")
        sort_model = []
        if isinstance(raw_sort, list):
            sort_model = [item for item in (SortItem.from_payload(s) for s in raw_sort) if item is not None]

        return cls(
            start_row=_int_or_none(payload.get("startRow")),
            end_row=_int_or_none(payload.get("endRow")),
            row_group_cols=row_group_cols,
            value_cols=_columns(payload.get("valueCols")),
            pivot_cols=_columns(payload.get("pivotCols")),
            pivot_mode=bool(payload.get("pivotMode")),
            group_keys=group_keys,
            filter_model=filter_model,
            sort_model=sort_model,
        )
