# app.py
"""
Main FastAPI application.

This file wires together:
- the web server (FastAPI + Uvicorn)
- the CSV decoding / normalization pipeline
- the trade store (opened at startup, closed at shutdown)
- the balance query

Endpoints:
  GET  /health           → liveness check
  GET  /version          → app version metadata
  POST /upload           → parse CSV and SAVE to DB (all rows or none)
  POST /upload/preview   → parse CSV and PREVIEW (no DB writes)
  POST /balance          → per-asset balances as of a timestamp
  GET  /trades           → paginated list of stored trades

  Command to start the server: uvicorn tradebalance.app:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .__about__ import __title__, __version__
from .balances import balances_at
from .config import Settings, configure_logging, load_settings
from .csv_normalizer import read_csv_rows
from .errors import InvalidQueryError, MalformedInputError, PersistenceError
from .ingest import ingest, preview
from .schemas import BalanceQuery, TradePage, UploadPreviewResponse, UploadResponse, ValidationErrorResponse
from .store import SqlTradeStore, TradeStore

logger = logging.getLogger(__name__)


def _store(request: Request) -> TradeStore:
    store = request.app.state.store
    if store is None:
        raise PersistenceError("trade store is not open")
    return store


async def _read_csv_upload(request: Request, file: UploadFile) -> bytes:
    """Basic checks shared by /upload and /upload/preview."""
    filename = file.filename or ""
    if not filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Please upload a .csv file")

    limit = request.app.state.settings.max_upload_bytes
    data = await file.read(limit + 1)  # one extra byte is enough to detect oversize
    if len(data) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(data) > limit:
        raise HTTPException(status_code=413, detail="File too large")
    return data


def _register_error_handlers(app: FastAPI) -> None:
    # Only validation failures carry details back; everything else stays generic.

    @app.exception_handler(MalformedInputError)
    async def _malformed(request: Request, exc: MalformedInputError) -> JSONResponse:
        logger.warning("Malformed CSV upload: %s", exc)
        return JSONResponse(status_code=400, content={"error": "Malformed CSV input"})

    @app.exception_handler(InvalidQueryError)
    async def _invalid_query(request: Request, exc: InvalidQueryError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid timestamp"})

    @app.exception_handler(PersistenceError)
    async def _persistence(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"error": "Storage unavailable"})


# -----------------------------------------------------------------------------
# Application factory & startup
# -----------------------------------------------------------------------------
def create_app(store: Optional[TradeStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API. Pass `store` to reuse an already opened store (tests do);
    otherwise one is opened from settings at startup and closed at shutdown.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if app.state.store is None:
            owned = app.state.store = SqlTradeStore.open(settings.db_url)
        try:
            yield
        finally:
            if owned is not None:
                owned.close()
                app.state.store = None

    app = FastAPI(
        title=__title__,
        version=__version__,
        description="Import exchange trade history and query balances at any point in time.",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.settings = settings
    _register_error_handlers(app)

    # -------------------------------------------------------------------------
    # Health + version endpoints (simple sanity checks)
    # -------------------------------------------------------------------------
    @app.get("/health")
    def health() -> Dict[str, str]:
        """Quick liveness check for monitoring or manual testing."""
        return {"status": "ok"}

    @app.get("/version")
    def version() -> Dict[str, str]:
        return {"name": __title__, "version": __version__}

    # -------------------------------------------------------------------------
    # CSV endpoints
    # -------------------------------------------------------------------------
    @app.post(
        "/upload",
        response_model=UploadResponse,
        responses={400: {"model": ValidationErrorResponse}},
    )
    async def upload(request: Request, file: UploadFile = File(...)) -> Any:
        """
        Accept a CSV upload and SAVE it. If any row is invalid nothing is
        saved and every offending row is returned with its reasons.
        """
        data = await _read_csv_upload(request, file)
        store = _store(request)
        result = await run_in_threadpool(ingest, read_csv_rows(data), store)

        if not result.ok:
            body = ValidationErrorResponse(error="Validation errors occurred", details=result.failures)
            return JSONResponse(status_code=400, content=body.model_dump(mode="json"))

        return UploadResponse(message="File processed and data saved.", inserted=result.accepted)

    @app.post("/upload/preview", response_model=UploadPreviewResponse)
    async def upload_preview(request: Request, file: UploadFile = File(...)) -> Any:
        """Same parsing as /upload, but nothing is written."""
        data = await _read_csv_upload(request, file)
        result = await run_in_threadpool(preview, read_csv_rows(data))
        return UploadPreviewResponse(filename=file.filename or "", **result.model_dump())

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------
    @app.post("/balance")
    def balance(request: Request, query: Optional[BalanceQuery] = None) -> Dict[str, float]:
        """
        Net quantity per asset from every buy/sell at or before `timestamp`.
        Assets with no buy/sell by then are absent, not zero.
        """
        balances = balances_at(_store(request), query.timestamp if query else None)
        return {asset: float(amount) for asset, amount in balances.items()}

    @app.get("/trades", response_model=TradePage)
    def list_trades(
        request: Request,
        page: int = Query(1, ge=1),
        page_size: int = Query(50, ge=1, le=500),
    ) -> Any:
        """Paginated list of stored trades, oldest first."""
        total, items = _store(request).list_trades(page=page, page_size=page_size)
        return TradePage(page=page, page_size=page_size, total=total, items=items)

    return app


app = create_app()
