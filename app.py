#!/usr/bin/env python3
"""
FastAPI backend for the grid's server-side row model (SSRM)
"""
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from bson import Decimal128, ObjectId
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import logging
import uvicorn

from pymongo.errors import PyMongoError

from mongo.client import MongoConfigurationError, mongo_client
from mongo.constants import COLLECTION_NAME, DATABASE_NAME, SSRM_MAX_WINDOW, redact_credentials
from ssrm import SSRMExecutionError, ViewRequest, process_ssrm

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# How often an in-flight aggregation checks whether the client went away
DISCONNECT_POLL_SECONDS = 0.25

# Status returned when the client disconnected before the page was ready
CLIENT_CLOSED_REQUEST = 499

BSON_ENCODERS = {
    ObjectId: str,
    Decimal128: lambda value: float(value.to_decimal()),
}

# Stages that write to other collections are not allowed in a caller-supplied base pipeline
WRITE_STAGES = {"$out", "$merge"}

CollectionProvider = Callable[[str, str], Awaitable[Any]]


class SSRMPage(BaseModel):
    rows: List[Dict[str, Any]]
    pivotKeys: List[str]
    pipeline: List[Dict[str, Any]]
    lastRow: Optional[int] = None


class SSRMError(BaseModel):
    error: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await mongo_client.disconnect()


app = FastAPI(title="Grid SSRM Service", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_collection_provider() -> CollectionProvider:
    """Dependency returning how to resolve (database, collection) to a handle"""
    return mongo_client.get_collection


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def clamp_window(view: ViewRequest, max_window: int = SSRM_MAX_WINDOW) -> ViewRequest:
    """Cap a bounded row window at `max_window` rows.

    Open windows (no `startRow` or no `endRow`) are passed through unchanged;
    the grid always sends both bounds.
    """
    if view.start_row is None or view.end_row is None:
        return view
    if view.end_row - view.start_row > max_window:
        return replace(view, end_row=view.start_row + max_window)
    return view


def has_write_stage(pipeline: List[Any]) -> bool:
    return any(isinstance(stage, dict) and WRITE_STAGES.intersection(stage) for stage in pipeline)


def _name_or_default(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


async def _await_unless_disconnected(request: Request, task: "asyncio.Task") -> Optional[Any]:
    """Wait for the task, cancelling it if the HTTP client disconnects first.

    Returns None when the task was abandoned.
    """
    while True:
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
        if done:
            return task.result()
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling SSRM aggregation")
            task.cancel()
            return None


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.post(
    "/api/ssrm",
    response_model=SSRMPage,
    responses={400: {"model": SSRMError}, 500: {"model": SSRMError}, 503: {"model": SSRMError}},
)
async def ssrm_rows(
    request: Request,
    get_collection: CollectionProvider = Depends(get_collection_provider),
):
    """Serve one page of grid rows.

    The body is the grid's SSRM request plus optional `basePipeline`,
    `database` and `collection`.
    """
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Unable to parse SSRM request payload")

    if not isinstance(body, dict):
        return _error(400, "Invalid SSRM request payload")

    view = clamp_window(ViewRequest.from_payload(body))
    base_pipeline = body.get("basePipeline")
    if not isinstance(base_pipeline, list):
        base_pipeline = []
    if has_write_stage(base_pipeline):
        return _error(400, "basePipeline may not contain $out or $merge stages")
    database = _name_or_default(body.get("database"), DATABASE_NAME)
    collection_name = _name_or_default(body.get("collection"), COLLECTION_NAME)

    try:
        collection = await get_collection(database, collection_name)
    except MongoConfigurationError as e:
        return _error(503, str(e))
    except PyMongoError as e:
        message = redact_credentials(str(e))
        logger.error(f"SSRM could not reach MongoDB: {message}")
        return _error(503, message)

    task = asyncio.ensure_future(process_ssrm(collection, view, base_pipeline))
    try:
        result = await _await_unless_disconnected(request, task)
    except SSRMExecutionError as e:
        return _error(500, str(e))
    except asyncio.CancelledError:
        task.cancel()
        raise

    if result is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    return JSONResponse(content=jsonable_encoder(result.to_dict(), custom_encoder=BSON_ENCODERS))


if __name__ == "__main__":
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
        forwarded_allow_ips="*"
        )
