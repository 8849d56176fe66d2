"""
Server-side row model (SSRM) planner and executor

Translates a grid's view request (window, grouping, pivoting, filtering,
sorting) into a MongoDB aggregation pipeline, runs it, and reshapes the
result into the flat rows the grid expects.
"""

from ssrm.models import (
    AggFunc,
    ColumnRef,
    SortItem,
    ViewRequest,
    parse_filter,
)

from ssrm.planner import PlannedPipeline, plan_pipeline

from ssrm.executor import (
    SSRMExecutionError,
    SSRMResponse,
    process_ssrm,
)

__all__ = [
    # Request model
    "AggFunc",
    "ColumnRef",
    "SortItem",
    "ViewRequest",
    "parse_filter",
    # Planning
    "PlannedPipeline",
    "plan_pipeline",
    # Execution
    "SSRMExecutionError",
    "SSRMResponse",
    "process_ssrm",
]
