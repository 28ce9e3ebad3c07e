import hashlib
import hmac
import logging
import time
from typing import Optional, Tuple, Type, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session, sessionmaker

from src.api.routes.tasks import _run_out
from src.core.config import get_settings
from src.core.db import get_db, get_session_factory
from src.core.dispatcher_client import JobDispatcher, get_dispatcher
from src.core.errors import NotFoundError, TaskValidationError
from src.models.scheduled_task import RunStatus, TriggerSource
from src.schemas.scheduled_task import (
    DispatchCompleteRequest,
    DispatchInvokeRequest,
    DispatchStartRequest,
    TaskRunResponse,
)
from src.services import task_execution
from src.services.task_registry import find_by_function_id
from src.task_runner import run_invocation

router = APIRouter(prefix="/dispatch", tags=["dispatch"])
logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _now_ts() -> int:
    return int(time.time())


def _parse_signature_headers(request: Request) -> Tuple[Optional[int], Optional[str]]:
    ts_raw = request.headers.get("x-dispatch-timestamp")
    sig = request.headers.get("x-dispatch-signature")
    if not ts_raw or not sig:
        return None, None
    try:
        ts = int(ts_raw)
    except ValueError:
        return None, None
    sig = sig.strip()
    if not sig:
        return None, None
    return ts, sig


def sign_payload(secret: str, ts: int, body: bytes) -> str:
    msg = str(ts).encode("utf-8") + b"." + (body or b"")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def _verify_signature(*, secret: str, ts: int, body: bytes, signature_hex: str) -> bool:
    return hmac.compare_digest(sign_payload(secret, ts, body), signature_hex)


async def verified_body(request: Request) -> bytes:
    """
    Authenticate a dispatcher callback and return its raw body.

    Auth headers (HMAC-SHA256):
    - x-dispatch-timestamp: unix seconds
    - x-dispatch-signature: hex(hmac_sha256(secret, f"{ts}.{raw_body}"))
    """
    settings = get_settings()
    if not settings.DISPATCHER_SIGNING_KEY:
        raise HTTPException(status_code=500, detail="DISPATCHER_SIGNING_KEY not configured")

    ts, sig = _parse_signature_headers(request)
    if ts is None or sig is None:
        raise HTTPException(status_code=401, detail="Missing or invalid signature headers")

    if abs(_now_ts() - ts) > int(settings.DISPATCHER_MAX_SKEW_SECONDS or 0):
        raise HTTPException(status_code=401, detail="Signature timestamp expired")

    raw_body = await request.body()
    if not _verify_signature(secret=settings.DISPATCHER_SIGNING_KEY, ts=ts, body=raw_body, signature_hex=sig):
        raise HTTPException(status_code=401, detail="Bad signature")
    return raw_body


def _parse(model: Type[M], body: bytes) -> M:
    try:
        return model.model_validate_json(body or b"{}")
    except ValidationError as exc:
        raise TaskValidationError(f"invalid payload: {exc.errors()[0].get('msg', 'validation error')}")


@router.post("/functions/{function_id}", response_model=TaskRunResponse)
def invoke_function(
    function_id: str,
    body: bytes = Depends(verified_body),
    session_factory: sessionmaker = Depends(get_session_factory),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    payload = _parse(DispatchInvokeRequest, body)
    run = run_invocation(
        function_id,
        event_name=payload.event.name,
        event_data=payload.event.data,
        event_id=payload.event.id,
        dispatcher_run_id=payload.run_id,
        session_factory=session_factory,
        dispatcher=dispatcher,
    )
    return TaskRunResponse(data=_run_out(run))


@router.post("/runs", response_model=TaskRunResponse)
def start_run_callback(
    body: bytes = Depends(verified_body),
    db: Session = Depends(get_db),
):
    payload = _parse(DispatchStartRequest, body)

    task_id = payload.task_id
    if not task_id and payload.function_id:
        task = find_by_function_id(db, payload.function_id)
        if not task:
            raise NotFoundError("Task not found")
        task_id = task.id
    if not task_id:
        raise TaskValidationError("taskId or functionId is required")

    try:
        triggered_by = TriggerSource(str(payload.triggered_by).upper())
    except ValueError:
        raise TaskValidationError(f"invalid triggeredBy: {payload.triggered_by!r}")

    # the dispatcher may re-deliver the start callback for the same run
    if payload.run_id:
        existing = task_execution.find_by_dispatcher_run_id(db, payload.run_id)
        if existing:
            return TaskRunResponse(data=_run_out(existing))

    run = task_execution.start_run(
        db,
        task_id,
        triggered_by=triggered_by,
        triggered_by_user=payload.triggered_by_user,
        dispatcher_run_id=payload.run_id,
        dispatcher_event_id=payload.event_id,
    )
    return TaskRunResponse(data=_run_out(run))


@router.post("/runs/{run_id}/complete", response_model=TaskRunResponse)
def complete_run_callback(
    run_id: str,
    body: bytes = Depends(verified_body),
    db: Session = Depends(get_db),
):
    payload = _parse(DispatchCompleteRequest, body)
    try:
        status = RunStatus(str(payload.status).upper())
    except ValueError:
        raise TaskValidationError(f"invalid status: {payload.status!r}")

    run = task_execution.complete_run(
        db,
        run_id,
        status,
        result=payload.result,
        error=payload.error,
        stack_trace=payload.stack_trace,
    )
    return TaskRunResponse(data=_run_out(run))
