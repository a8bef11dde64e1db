from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Depends, FastAPI, File, Header, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import CORS_ORIGINS
from .errors import DutySwapError, ValidationError
from .ics import parse_ics
from .importer import DutyImporter
from .logging_utils import bind_user, configure_logging, log_event, new_request_id
from .models import (
    BatchOutcome,
    BatchResult,
    BatchSwapRequest,
    ImportRequest,
    ImportResult,
    RespondRequest,
    RespondResponse,
    StageIcsRequest,
    StageResponse,
    SwapStatus,
)
from .notifier import StorageNotifier
from .responder import SwapResponder
from .roster_client import RosterConverterClient
from .segmenter import segment
from .storage import RestStorage, Storage
from .submitter import SwapSubmitter

# ------------------------------------------------------------------------------
# APP + LOGGING SETUP
# ------------------------------------------------------------------------------

configure_logging()
logger = logging.getLogger("dutyswap.api")

app = FastAPI(title="DutySwap", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_origin_regex=r"http://localhost:\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------------------------------------------------------------
# REQUEST LOGGING MIDDLEWARE (Loki-ready)
# ------------------------------------------------------------------------------

@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    rid = new_request_id()
    start = time.time()

    log_event(
        logger,
        "http_request_started",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
        request_id=rid,
    )

    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        log_event(
            logger,
            "http_request_finished",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=int((time.time() - start) * 1000),
            request_id=rid,
        )


@app.exception_handler(DutySwapError)
async def dutyswap_error_handler(request: Request, exc: DutySwapError) -> JSONResponse:
    log_event(
        logger,
        "request_failed",
        level=logging.WARNING if exc.http_status < 500 else logging.ERROR,
        path=request.url.path,
        code=exc.code,
        error=str(exc),
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())


# ------------------------------------------------------------------------------
# DEPENDENCIES
# ------------------------------------------------------------------------------

async def get_storage() -> AsyncIterator[Storage]:
    async with RestStorage() as storage:
        yield storage


async def get_converter() -> AsyncIterator[RosterConverterClient]:
    async with RosterConverterClient() as client:
        yield client


async def current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    # Set by the upstream auth proxy
    if not x_user_id:
        raise ValidationError("missing X-User-Id header", user_message="Authentication required")
    bind_user(x_user_id)
    return x_user_id


# ------------------------------------------------------------------------------
# ROUTES
# ------------------------------------------------------------------------------

@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "version": app.version,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


@app.post("/roster/stage", response_model=StageResponse)
async def stage_roster(
    file: UploadFile = File(...),
    user_id: str = Depends(current_user_id),
    converter: RosterConverterClient = Depends(get_converter),
) -> StageResponse:
    """Convert an uploaded roster and return staged blocks for review. Nothing is persisted."""
    content = await file.read()
    if not content:
        raise ValidationError("empty upload", user_message="No file uploaded")

    ics_text = await converter.convert(file.filename or "roster.pdf", content)
    events = parse_ics(ics_text)
    blocks = segment(events)
    log_event(logger, "roster_staged", user_id=user_id, events=len(events), blocks=len(blocks))
    return StageResponse(events=events, blocks=blocks)


@app.post("/roster/stage-ics", response_model=StageResponse)
async def stage_ics(
    body: StageIcsRequest,
    user_id: str = Depends(current_user_id),
) -> StageResponse:
    events = parse_ics(body.ics)
    blocks = segment(events)
    log_event(logger, "roster_staged", user_id=user_id, events=len(events), blocks=len(blocks))
    return StageResponse(events=events, blocks=blocks)


@app.post("/duties/import", response_model=ImportResult)
async def import_duties(
    body: ImportRequest,
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
) -> ImportResult:
    return await DutyImporter(storage).import_blocks(user_id, body.blocks)


@app.post("/swap-requests/batch", response_model=BatchResult)
async def batch_swap_requests(
    body: BatchSwapRequest,
    response: Response,
    user_id: str = Depends(current_user_id),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
    storage: Storage = Depends(get_storage),
) -> BatchResult:
    submitter = SwapSubmitter(storage, StorageNotifier(storage))
    result = await submitter.offer(
        user_id,
        body.requested_duty_ids,
        body.offered_duty_ids,
        message=body.message,
        atomic=body.atomic,
        sender_name=x_user_name,
    )
    if result.outcome in (BatchOutcome.TOTAL_FAILURE, BatchOutcome.NO_VALID_REQUESTS):
        response.status_code = 400
    return result


@app.patch("/swap-requests/{request_id}/respond", response_model=RespondResponse)
async def respond_swap_request(
    request_id: str,
    body: RespondRequest,
    user_id: str = Depends(current_user_id),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
    storage: Storage = Depends(get_storage),
) -> RespondResponse:
    responder = SwapResponder(storage, StorageNotifier(storage))
    updated = await responder.respond(
        user_id,
        request_id,
        body.action,
        response_message=body.response_message,
        receiver_name=x_user_name,
    )
    verb = "approved" if updated.status == SwapStatus.APPROVED else "denied"
    return RespondResponse(message=f"Swap request {verb} successfully", swap_request=updated)
