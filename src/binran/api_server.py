"""
FastAPI service layer exposing materialized handbook text.

Thin glue over HandbookService: request validation and error mapping only.
Materialization runs on a worker pool; a client that disconnects does not
cancel an in-flight materialization.

Run with:
    uvicorn binran.api_server:app --host 0.0.0.0 --port 8080
"""
from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Any, Callable

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import API_MAX_WORKERS, CORS_ALLOW_ORIGINS
from .errors import DocumentUnavailableError, UnknownKeyError
from .labeler import find_logical_page
from .metrics import metrics_collector
from .observability import get_logger
from .service import HandbookService, build_service

UNAVAILABLE_DETAIL = "学生便覧の読み込みに失敗しました。"
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class HandbookSummary(BaseModel):
    key: str
    name: str
    page_offset: int
    departments: dict[str, str]
    state: str
    stored: bool


class HandbookResponse(BaseModel):
    key: str
    name: str
    characters: int
    content: str


class PageResponse(BaseModel):
    key: str
    page: int
    content: str


class HandbookContextRequest(BaseModel):
    faculty: str = Field(..., min_length=1, description="Handbook (faculty) key")
    department: str = Field(..., min_length=1, description="Department key within the faculty")


class HandbookContextResponse(BaseModel):
    faculty: str
    faculty_name: str
    department: str
    department_name: str
    content: str


# ---------------------------------------------------------------------------
# Application state populated at startup
# ---------------------------------------------------------------------------

_state: dict[str, Any] = {}

# Thread pool for running blocking materialization off the event loop.
_executor = ThreadPoolExecutor(max_workers=API_MAX_WORKERS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the catalog and service once at startup."""
    _state["service"] = build_service()
    logger.info("api_started", handbooks=len(_state["service"].catalog))

    yield  # Application is running.

    _state.clear()


app = FastAPI(
    title="Binran Handbook API",
    description="Page-labeled student handbook text, materialized once and cached",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Origin", "Content-Type"],
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _service() -> HandbookService:
    service = _state.get("service")
    if service is None:
        raise HTTPException(status_code=503, detail="Handbook service is not initialized.")
    return service


async def _run_blocking(fn: Callable[..., Any], *args) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, fn, *args)


async def _load_text(service: HandbookService, key: str, *, unknown_status: int = 404) -> str:
    start = time.perf_counter()
    try:
        text = await _run_blocking(service.get_text, key)
    except UnknownKeyError as exc:
        metrics_collector.record_request((time.perf_counter() - start) * 1000.0, success=False, key=key)
        raise HTTPException(status_code=unknown_status, detail=str(exc)) from exc
    except DocumentUnavailableError as exc:
        metrics_collector.record_request((time.perf_counter() - start) * 1000.0, success=False, key=key)
        logger.error("handbook_unavailable", key=key, error=str(exc), error_type=type(exc).__name__)
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc
    metrics_collector.record_request(
        (time.perf_counter() - start) * 1000.0,
        success=True,
        key=key,
        characters=len(text),
    )
    return text


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/handbooks", response_model=list[HandbookSummary])
async def list_handbooks():
    service = _service()
    rows = await _run_blocking(service.describe)
    return [HandbookSummary(**{k: v for k, v in row.items() if k != "source"}) for row in rows]


@app.get("/handbooks/{key}", response_model=HandbookResponse)
async def get_handbook(key: str):
    service = _service()
    text = await _load_text(service, key)
    entry = service.catalog.lookup(key)
    return HandbookResponse(key=entry.key, name=entry.name, characters=len(text), content=text)


@app.get("/handbooks/{key}/pages/{page}", response_model=PageResponse)
async def get_handbook_page(key: str, page: int):
    service = _service()
    text = await _load_text(service, key)
    block = find_logical_page(text, page)
    if block is None:
        raise HTTPException(status_code=404, detail=f"page {page} not found in {key}")
    return PageResponse(key=key, page=block.number, content=block.body)


@app.post("/api/handbook-context", response_model=HandbookContextResponse)
async def handbook_context(request: HandbookContextRequest):
    """Validates a faculty/department pair and returns the faculty's handbook text."""
    service = _service()
    try:
        entry, department = service.catalog.lookup_department(request.faculty, request.department)
    except UnknownKeyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    text = await _load_text(service, entry.key, unknown_status=400)
    return HandbookContextResponse(
        faculty=entry.key,
        faculty_name=entry.name,
        department=department.key,
        department_name=department.name,
        content=text,
    )


@app.get("/metrics")
async def metrics_endpoint():
    """Return aggregated service and cache metrics."""
    summary = metrics_collector.get_summary()
    service = _state.get("service")
    if service is not None:
        summary["cache"] = {
            **service.cache.statistics(),
            "entries": len(service.cache),
            "lock_mode": service.cache.lock_mode,
        }
    return summary
