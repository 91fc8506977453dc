from fastapi import APIRouter, Depends, HTTPException, Request
from typing import List, Optional
from .. import crud, schemas
from ..db import session_scope
from ..errors import InvalidFilterError, InvalidIntervalError, NotFoundError, QuotaExceededError
from ..services import MonitorService
from ..utils import logger

router = APIRouter()

def get_service(request: Request) -> MonitorService:
    return request.app.state.runtime.service

def _raise_http(e: Exception):
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, QuotaExceededError):
        raise HTTPException(status_code=429, detail=str(e))
    if isinstance(e, (InvalidIntervalError, InvalidFilterError)):
        raise HTTPException(status_code=422, detail=str(e))
    raise e

@router.get("/health")
def health(request: Request):
    scheduler = request.app.state.runtime.scheduler
    return {"status": "ok", "schedules": len(scheduler.list_schedules())}

@router.post("/users", response_model=schemas.UserOut, status_code=201)
def create_user(payload: schemas.UserCreate, service: MonitorService = Depends(get_service)):
    return service.create_user(**payload.model_dump())

@router.get("/users/{user_id}/monitors", response_model=List[schemas.MonitorOut])
def list_user_monitors(user_id: int, status: Optional[str] = None, service: MonitorService = Depends(get_service)):
    with session_scope(service.session_factory) as db:
        return crud.list_monitors(db, user_id=user_id, status=status)


@router.get("/users/{user_id}/usage")
def get_usage(user_id: int, request: Request):
    try:
        return request.app.state.runtime.rate_limiter.usage(user_id)
    except Exception as e:
        _raise_http(e)

@router.post("/monitors", response_model=schemas.MonitorOut, status_code=201)
def create_monitor(payload: schemas.MonitorCreate, service: MonitorService = Depends(get_service)):
    data = payload.model_dump(exclude={"user_id"})
    try:
        return service.create_monitor(payload.user_id, data)
    except Exception as e:
        _raise_http(e)

@router.get("/monitors/{monitor_id}", response_model=schemas.MonitorOut)
def get_monitor(monitor_id: int, service: MonitorService = Depends(get_service)):
    try:
        return service.get_monitor(monitor_id)
    except Exception as e:
        _raise_http(e)

@router.post("/monitors/{monitor_id}/activate", response_model=schemas.MonitorOut)
def activate_monitor(monitor_id: int, service: MonitorService = Depends(get_service)):
    try:
        return service.activate_monitor(monitor_id)
    except Exception as e:
        _raise_http(e)

@router.post("/monitors/{monitor_id}/deactivate", response_model=schemas.MonitorOut)
def deactivate_monitor(monitor_id: int, service: MonitorService = Depends(get_service)):
    try:
        return service.deactivate_monitor(monitor_id)
    except Exception as e:
        _raise_http(e)

@router.patch("/monitors/{monitor_id}/interval", response_model=schemas.MonitorOut)
def update_interval(monitor_id: int, payload: schemas.IntervalUpdate, service: MonitorService = Depends(get_service)):
    try:
        return service.update_interval(monitor_id, payload.interval_ms)
    except Exception as e:
        _raise_http(e)

@router.patch("/monitors/{monitor_id}/filters", response_model=schemas.MonitorOut)
def update_filters(monitor_id: int, payload: schemas.MonitorFilters, service: MonitorService = Depends(get_service)):
    try:
        return service.update_filters(monitor_id, payload.model_dump(exclude_unset=True))
    except Exception as e:
        _raise_http(e)

@router.delete("/monitors/{monitor_id}")
def delete_monitor(monitor_id: int, service: MonitorService = Depends(get_service)):
    try:
        service.delete_monitor(monitor_id)
    except Exception as e:
        _raise_http(e)
    return {"status": "deleted"}

@router.get("/monitors/{monitor_id}/snapshot", response_model=Optional[schemas.Snapshot])
def get_snapshot(monitor_id: int, service: MonitorService = Depends(get_service)):
    try:
        return service.get_snapshot(monitor_id)
    except Exception as e:
        _raise_http(e)

@router.post("/maintenance/sweep", response_model=schemas.SweepReport)
def run_maintenance_sweep(request: Request):
    try:
        return request.app.state.runtime.reconciler.run_maintenance_sweep()
    except Exception as e:
        logger.exception("Maintenance sweep failed: %s", e)
        raise HTTPException(status_code=500, detail="Maintenance sweep failed")
