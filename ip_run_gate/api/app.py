"""
HTTP surface of the gate service.

Routes:
    POST /ingest   record an observed run
    POST /gate     ask whether a run may proceed (never hard-fails)
    POST /cleanup  run one retention sweep
    GET  /summary  unique addresses seen today
    GET  /healthz  unauthenticated liveness probe
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ip_run_gate.config.loader import GateConfig
from ip_run_gate.core.decision import GateDecision, GateReason
from ip_run_gate.core.service import GateService, build_service

from .auth import AuthError, verify_request

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_request)])


def _service(request: Request) -> GateService:
    return request.app.state.service


async def _json_object(request: Request) -> Optional[Dict[str, Any]]:
    """Parse the body as a JSON object, or None if it is not one."""
    try:
        payload = json.loads(await request.body() or b"{}")
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


@router.post("/ingest")
async def ingest(request: Request, background_tasks: BackgroundTasks):
    """Append an observation and forward it to the secondary sinks."""
    payload = await _json_object(request)
    if payload is None:
        return JSONResponse({"error": "Body must be a JSON object"}, status_code=400)

    service = _service(request)
    received_at = datetime.now(timezone.utc)
    try:
        record = await run_in_threadpool(service.ingest, payload, received_at)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    background_tasks.add_task(service.dispatch_ingest_sinks, payload, record)
    return {"status": "ok"}


@router.post("/gate")
async def gate(request: Request, background_tasks: BackgroundTasks):
    """Decide whether the calling run may proceed."""
    service = _service(request)
    payload = await _json_object(request)
    if payload is None:
        logger.error("Gate error, failing open: body is not a JSON object")
        return GateDecision.fail_open().to_dict()

    address = payload.get("ip")
    decision = await run_in_threadpool(service.gate, address, payload.get("run_id"), payload.get("ts"))

    if decision.reason != GateReason.ERROR_FAIL_OPEN:
        background_tasks.add_task(service.notify_decision, decision, address)
    return decision.to_dict()


@router.post("/cleanup")
async def cleanup(request: Request):
    """Run one retention sweep."""
    try:
        deleted = await run_in_threadpool(_service(request).cleanup)
    except Exception as e:
        logger.exception("Cleanup failed: %s", e)
        return JSONResponse({"error": "cleanup failed"}, status_code=500)
    return {"status": "ok", "deleted": deleted}


@router.get("/summary")
async def summary(request: Request):
    """Unique addresses observed today."""
    return await run_in_threadpool(_service(request).summary)


async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


def create_app(config: GateConfig, service: Optional[GateService] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Loaded gate configuration
        service: Optional pre-wired service (defaults to ``build_service(config)``)
    """
    app = FastAPI(title="IP Run Gate")
    app.state.config = config
    app.state.service = service if service is not None else build_service(config)
    app.add_exception_handler(AuthError, _auth_error_handler)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    app.include_router(router)
    return app
