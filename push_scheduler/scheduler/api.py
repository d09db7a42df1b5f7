from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from push_scheduler.errors import SchedulerError
from push_scheduler.logging_utils import get_logger, setup_logging
from push_scheduler.scheduler.config import SchedulerConfig
from push_scheduler.scheduler.service import ScheduleService, build_service

log = get_logger(__name__)

AUTH_HEADER = "firebase-auth"


class ScheduleRequest(BaseModel):
    """Body for create and update. Owner fields are never read from here."""

    name: str
    push_token: str
    cron_pattern: str
    payload: Any = None


class ScheduleResponse(BaseModel):
    ok: bool
    schedule: Dict[str, Any]


class ScheduleListResponse(BaseModel):
    ok: bool
    schedules: List[Dict[str, Any]]


def _credential(request: Request) -> Optional[str]:
    return request.headers.get(AUTH_HEADER) or request.headers.get("authorization")


def _service(request: Request) -> ScheduleService:
    return request.app.state.schedule_service


def create_app(service: Optional[ScheduleService] = None) -> FastAPI:
    if service is None:
        service = build_service(SchedulerConfig.from_env())

    app = FastAPI(title="push-scheduler", version="1.0")
    app.state.schedule_service = service

    @app.exception_handler(SchedulerError)
    async def _scheduler_error(request: Request, exc: SchedulerError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    router = APIRouter(prefix="/api/fcm", tags=["Firebase Messaging"])

    @router.post("/", status_code=201, response_model=ScheduleResponse)
    def create_schedule(body: ScheduleRequest, request: Request) -> ScheduleResponse:
        schedule = _service(request).create_schedule(
            _credential(request),
            name=body.name,
            push_token=body.push_token,
            cron_pattern=body.cron_pattern,
            payload=body.payload,
        )
        return ScheduleResponse(ok=True, schedule=schedule)

    @router.get("/", response_model=ScheduleListResponse)
    def list_schedules(request: Request) -> ScheduleListResponse:
        schedules = _service(request).list_schedules(_credential(request))
        return ScheduleListResponse(ok=True, schedules=schedules)

    @router.put("/{schedule_id}", response_model=ScheduleResponse)
    def update_schedule(schedule_id: int, body: ScheduleRequest, request: Request) -> ScheduleResponse:
        schedule = _service(request).update_schedule(
            _credential(request),
            schedule_id,
            name=body.name,
            push_token=body.push_token,
            cron_pattern=body.cron_pattern,
            payload=body.payload,
        )
        return ScheduleResponse(ok=True, schedule=schedule)

    @router.delete("/{schedule_id}", response_model=ScheduleResponse)
    def delete_schedule(schedule_id: int, request: Request) -> ScheduleResponse:
        schedule = _service(request).delete_schedule(_credential(request), schedule_id)
        return ScheduleResponse(ok=True, schedule=schedule)

    app.include_router(router)
    return app


def run() -> None:
    import uvicorn

    cfg = SchedulerConfig.from_env()
    setup_logging(level=cfg.log_level, json_logs=cfg.json_logs)
    log.info("http_api_starting", host=cfg.http_host, port=cfg.http_port, audiences=sorted(cfg.audiences))
    uvicorn.run(create_app(build_service(cfg)), host=cfg.http_host, port=int(cfg.http_port))


if __name__ == "__main__":
    run()
