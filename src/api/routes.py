"""FastAPI routes exposing call control to presentation layers."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_call_manager
from api.schemas import CallStateResponse, HealthResponse, StartCallRequest
from calls.errors import CallError
from calls.manager import CallManager
from calls.records import Invitation

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _http_error(exc: CallError) -> HTTPException:
    LOGGER.warning("Call operation failed: %s", exc.detail)
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


@router.get("/health", response_model=HealthResponse)
async def health(manager: CallManager = Depends(get_call_manager)) -> HealthResponse:
    return HealthResponse(local_user_id=manager.local_user_id, scanner_running=manager.scanner.running)


@router.post("/calls", response_model=CallStateResponse)
async def start_call(
    request: StartCallRequest,
    manager: CallManager = Depends(get_call_manager),
) -> CallStateResponse:
    try:
        projection = await manager.start_call(request.contact_id, request.type)
    except CallError as exc:
        raise _http_error(exc) from exc
    return CallStateResponse.from_projection(projection)


@router.post("/calls/accept", response_model=CallStateResponse)
async def accept_call(manager: CallManager = Depends(get_call_manager)) -> CallStateResponse:
    try:
        projection = await manager.accept_call()
    except CallError as exc:
        raise _http_error(exc) from exc
    return CallStateResponse.from_projection(projection)


@router.post("/calls/reject", response_model=CallStateResponse)
async def reject_call(manager: CallManager = Depends(get_call_manager)) -> CallStateResponse:
    try:
        projection = await manager.reject_call()
    except CallError as exc:
        raise _http_error(exc) from exc
    return CallStateResponse.from_projection(projection)


@router.post("/calls/end", response_model=CallStateResponse)
async def end_call(manager: CallManager = Depends(get_call_manager)) -> CallStateResponse:
    try:
        projection = await manager.end_call()
    except CallError as exc:
        raise _http_error(exc) from exc
    return CallStateResponse.from_projection(projection)


@router.post("/calls/mute", response_model=CallStateResponse)
async def toggle_mute(manager: CallManager = Depends(get_call_manager)) -> CallStateResponse:
    try:
        manager.toggle_mute()
    except CallError as exc:
        raise _http_error(exc) from exc
    return CallStateResponse.from_projection(manager.projection())


@router.post("/calls/video", response_model=CallStateResponse)
async def toggle_video(manager: CallManager = Depends(get_call_manager)) -> CallStateResponse:
    try:
        manager.toggle_video()
    except CallError as exc:
        raise _http_error(exc) from exc
    return CallStateResponse.from_projection(manager.projection())


@router.post("/calls/speaker", response_model=CallStateResponse)
async def toggle_speaker(manager: CallManager = Depends(get_call_manager)) -> CallStateResponse:
    try:
        manager.toggle_speaker()
    except CallError as exc:
        raise _http_error(exc) from exc
    return CallStateResponse.from_projection(manager.projection())


@router.get("/calls/current", response_model=CallStateResponse)
async def current_call(manager: CallManager = Depends(get_call_manager)) -> CallStateResponse:
    return CallStateResponse.from_projection(manager.projection())


@router.get("/invitation", response_model=Invitation | None)
async def current_invitation(manager: CallManager = Depends(get_call_manager)) -> Invitation | None:
    return manager.invitation
