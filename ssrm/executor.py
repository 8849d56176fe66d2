"""
Execute a planned SSRM pipeline and shape the grid response.
"""

import asyncio
import copy
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pymongo.errors import PyMongoError

from mongo.constants import SSRM_MAX_TIME_MS, redact_credentials
from .models import ViewRequest
from .planner import plan_pipeline

logger = logging.getLogger(__name__)


class SSRMExecutionError(Exception):
    """The database failed to run an SSRM aggregation.

    The message has any connection-string credentials masked; the driver
    exception is kept as ``__cause__``.
    """

    def __init__(self, message: str, pipeline: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.pipeline = pipeline or []


@dataclass
class SSRMResponse:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    pivot_keys: List[str] = field(default_factory=list)
    pipeline: List[Dict[str, Any]] = field(default_factory=list)
    last_row: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "pivotKeys": self.pivot_keys,
            "pipeline": self.pipeline,
            "lastRow": self.last_row,
        }


def flatten_row(doc: Any) -> Any:
    """Lift the keys of an object-valued `_id` to the top level.

    Scalar or missing identifiers (ObjectId, None) are left as they are.
    """
    if not isinstance(doc, dict):
        return doc
    group_id = doc.get("_id")
    if not isinstance(group_id, dict):
        return doc
    rest = {k: v for k, v in doc.items() if k != "_id"}
    return {**group_id, **rest}


def collect_pivot_keys(rows: Sequence[Dict[str, Any]]) -> List[str]:
    keys = set()
    for row in rows:
        pivot = row.get("pivot") if isinstance(row, dict) else None
        if isinstance(pivot, dict):
            keys.update(str(k) for k in pivot.keys())
    return sorted(keys)


def compute_last_row(request: ViewRequest, returned: int) -> Optional[int]:
    """Index one past the final row, once the window runs past the data."""
    if request.start_row is None or request.end_row is None:
        return None
    if returned < request.end_row - request.start_row:
        return request.start_row + returned
    return None


def build_response(
    request: ViewRequest,
    raw_rows: Sequence[Any],
    pipeline: List[Dict[str, Any]],
    pivoting: bool,
) -> SSRMResponse:
    rows = [flatten_row(doc) for doc in raw_rows]
    return SSRMResponse(
        rows=copy.deepcopy(rows),
        pivot_keys=collect_pivot_keys(rows) if pivoting else [],
        pipeline=copy.deepcopy(pipeline),
        last_row=compute_last_row(request, len(rows)),
    )


async def _close_quietly(cursor: Any) -> None:
    close = getattr(cursor, "close", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except PyMongoError as e:
        logger.debug(f"Ignoring error while closing abandoned cursor: {e}")


async def run_aggregation(
    collection: Any,
    pipeline: List[Dict[str, Any]],
    max_time_ms: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Run one aggregation with disk spill allowed and a server-side time limit.

    Works with Motor collections (cursor returned directly) and PyMongo async
    collections (cursor returned via await).
    """
    cursor = None
    try:
        cursor = collection.aggregate(
            pipeline,
            allowDiskUse=True,
            maxTimeMS=max_time_ms if max_time_ms is not None else SSRM_MAX_TIME_MS,
        )
        if inspect.isawaitable(cursor):
            cursor = await cursor
        return await cursor.to_list(length=None)
    except asyncio.CancelledError:
        logger.info("SSRM aggregation cancelled by caller; abandoning cursor")
        if cursor is not None and not inspect.isawaitable(cursor):
            await _close_quietly(cursor)
        raise
    except PyMongoError as e:
        message = redact_credentials(str(e))
        logger.error(f"SSRM aggregation failed ({e.__class__.__name__}): {message}")
        raise SSRMExecutionError(message, copy.deepcopy(pipeline)) from e


async def process_ssrm(
    collection: Any,
    request: ViewRequest,
    base_pipeline: Optional[Sequence[Dict[str, Any]]] = None,
    max_time_ms: Optional[int] = None,
) -> SSRMResponse:
    """Plan, execute and shape one grid page.

    Args:
        collection: Caller-owned async collection handle (Motor or PyMongo async)
        request: Parsed view request
        base_pipeline: Stages that run before anything the planner adds
        max_time_ms: Override for the server-side aggregation time limit

    Returns:
        SSRMResponse with flattened rows, sorted pivot keys, the executed
        pipeline and the last-row signal.

    Raises:
        SSRMExecutionError: the database rejected or failed the aggregation
    """
    plan = plan_pipeline(request, base_pipeline)
    logger.debug(f"Running SSRM pipeline with {len(plan.stages)} stages (grouped={plan.grouped})")

    raw_rows = await run_aggregation(collection, plan.stages, max_time_ms=max_time_ms)
    return build_response(request, raw_rows, plan.stages, plan.pivoting)
