"""
Assemble the full SSRM aggregation pipeline for one view request.

Stage order:
    base pipeline
    → filter $match → group-prefix $match
    → ($group → pivot reshape → $sort) when aggregating, else $sort
    → $skip → $limit
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .grouping import build_group_stages, build_pivot_stages
from .models import ViewRequest
from .stages import (
    build_filter_stages,
    build_group_prefix_stages,
    build_pagination_stages,
    build_sort_stages,
)


@dataclass
class PlannedPipeline:
    stages: List[Dict[str, Any]] = field(default_factory=list)
    grouped: bool = False
    pivoting: bool = False


def plan_pipeline(
    request: ViewRequest,
    base_pipeline: Optional[Sequence[Dict[str, Any]]] = None,
) -> PlannedPipeline:
    """Plan the pipeline without touching the database.

    The base pipeline is deep-copied so callers can reuse it across requests.
    """
    stages: List[Dict[str, Any]] = copy.deepcopy(list(base_pipeline or []))
    stages += build_filter_stages(request)
    stages += build_group_prefix_stages(request)

    grouped = False
    if request.aggregating:
        group_stages, grouped = build_group_stages(request)
        stages += group_stages
        stages += build_pivot_stages(request, grouped)
        stages += build_sort_stages(request, grouped)
    else:
        stages += build_sort_stages(request, grouped=False)

    stages += build_pagination_stages(request)

    return PlannedPipeline(
        stages=stages,
        grouped=grouped,
        pivoting=request.pivoting and grouped,
    )
