"""
Copy Engine - Scheduler API.

============================================================
RESPONSIBILITY
============================================================
HTTP surface the scheduler calls to drive the pipeline.

ENDPOINTS:
- GET  /cron/process-trades   batch pass (cron)
- POST /trades/process        batch pass (manual)
- GET  /trades/process        endpoint description
- GET  /cron/detect-trades    leader poll (cron)
- POST /trades/detect         leader poll (manual)
- GET  /trades/detect         endpoint description

AUTH:
- Bearer CRON_SECRET when a secret is configured

CONCURRENCY:
- A run requested while the same kind of run is in progress
  gets 409 instead of a second, overlapping pass
============================================================
"""

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import CopyEngineConfig
from .factory import CopyEngineRuntime, create_runtime


logger = logging.getLogger(__name__)


# ============================================================
# Response Models
# ============================================================

class ProcessStatsResponse(BaseModel):
    total_trades: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    skipped_executions: int = 0


class ProcessResponse(BaseModel):
    success: bool
    stats: ProcessStatsResponse
    timestamp: str


class DetectResultResponse(BaseModel):
    leaders_polled: int = 0
    trades_detected: int = 0


class DetectResponse(BaseModel):
    success: bool
    result: DetectResultResponse
    timestamp: str


class EndpointInfoResponse(BaseModel):
    message: str
    method: str
    description: str


# ============================================================
# Dependencies
# ============================================================

def get_runtime(request: Request) -> CopyEngineRuntime:
    return request.app.state.runtime


def verify_cron_secret(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> None:
    """Reject requests without the configured bearer secret."""
    secret = request.app.state.runtime.config.cron_secret
    if not secret:
        return

    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        logger.error("Unauthorized scheduler request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _failure(error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": error, "message": str(exc)},
    )


def _busy(error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"success": False, "error": error, "message": "A run is already in progress"},
    )


# ============================================================
# Router
# ============================================================

router = APIRouter(tags=["Copy Trading"])


async def _run_batch(runtime: CopyEngineRuntime):
    if runtime.processor.is_running:
        logger.warning("Trade processing already in progress, rejecting request")
        return _busy("Trade processing already in progress")

    logger.info("Starting trade processing...")
    try:
        stats = await runtime.processor.process_all_pending_trades()
    except Exception as e:
        logger.error(f"Error processing trades: {e}", exc_info=True)
        return _failure("Failed to process trades", e)

    logger.info(f"Trade processing completed: {stats.to_dict()}")
    return ProcessResponse(
        success=True,
        stats=ProcessStatsResponse(**stats.to_dict()),
        timestamp=runtime.clock.format_iso(),
    )


async def _run_detection(runtime: CopyEngineRuntime):
    if runtime.detector.is_running:
        logger.warning("Trade detection already in progress, rejecting request")
        return _busy("Trade detection already in progress")

    logger.info("Starting trade detection...")
    try:
        result = await runtime.detector.poll_all_leaders()
    except Exception as e:
        logger.error(f"Error detecting trades: {e}", exc_info=True)
        return _failure("Failed to detect trades", e)

    logger.info(f"Trade detection completed: {result}")
    return DetectResponse(
        success=True,
        result=DetectResultResponse(**result),
        timestamp=runtime.clock.format_iso(),
    )


@router.get(
    "/cron/process-trades",
    response_model=ProcessResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def cron_process_trades(runtime: CopyEngineRuntime = Depends(get_runtime)):
    """Process all pending trades (scheduler)."""
    return await _run_batch(runtime)


@router.post(
    "/trades/process",
    response_model=ProcessResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def process_trades(runtime: CopyEngineRuntime = Depends(get_runtime)):
    """Process all pending trades."""
    return await _run_batch(runtime)


@router.get("/trades/process", response_model=EndpointInfoResponse)
async def describe_process_trades():
    return EndpointInfoResponse(
        message="Trade processing endpoint",
        method="POST",
        description="Processes all pending copy trades",
    )


@router.get(
    "/cron/detect-trades",
    response_model=DetectResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def cron_detect_trades(runtime: CopyEngineRuntime = Depends(get_runtime)):
    """Poll leader accounts for new trades (scheduler)."""
    return await _run_detection(runtime)


@router.post(
    "/trades/detect",
    response_model=DetectResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def detect_trades(runtime: CopyEngineRuntime = Depends(get_runtime)):
    """Poll leader accounts for new trades."""
    return await _run_detection(runtime)


@router.get("/trades/detect", response_model=EndpointInfoResponse)
async def describe_detect_trades():
    return EndpointInfoResponse(
        message="Trade detection endpoint",
        method="POST",
        description="Polls leader accounts and detects new trades",
    )


@router.get("/health")
async def health(runtime: CopyEngineRuntime = Depends(get_runtime)):
    return {
        "status": "ok",
        "gateway": runtime.gateway.gateway_id,
        "timestamp": runtime.clock.format_iso(),
    }


# ============================================================
# FastAPI Application
# ============================================================

def create_app(
    config: Optional[CopyEngineConfig] = None,
    runtime: Optional[CopyEngineRuntime] = None,
) -> FastAPI:
    """
    Create the scheduler API.

    A supplied runtime is used as-is and left open on shutdown;
    otherwise one is built from config at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        if owned:
            app.state.runtime = await create_runtime(config)
        try:
            yield
        finally:
            if owned:
                await app.state.runtime.close()

    app = FastAPI(
        title="Copy Trading Engine API",
        description="Scheduler endpoints for trade detection and copy execution",
        version="1.0.0",
        lifespan=lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime
    app.include_router(router)
    return app


__all__ = ["router", "create_app", "verify_cron_secret"]
