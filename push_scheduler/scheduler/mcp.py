from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from fastmcp import FastMCP

from push_scheduler.errors import SchedulerError
from push_scheduler.logging_utils import get_logger, setup_logging
from push_scheduler.scheduler.config import SchedulerConfig
from push_scheduler.scheduler.cron import utcnow
from push_scheduler.scheduler.service import ScheduleService, build_service

log = get_logger(__name__)

mcp = FastMCP("push-scheduler")

_SERVICE: Optional[ScheduleService] = None
_STARTED_AT_UTC = utcnow().replace(microsecond=0).isoformat() + "Z"


def get_service() -> ScheduleService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = build_service(SchedulerConfig.from_env())
    return _SERVICE


def set_service(service: Optional[ScheduleService]) -> None:
    global _SERVICE
    _SERVICE = service


def call_service(key: str, op: Callable[[ScheduleService], Any]) -> Dict[str, Any]:
    """Run ``op`` against the service and wrap the outcome in an ``ok`` envelope."""
    try:
        result = op(get_service())
    except SchedulerError as exc:
        return exc.to_dict()
    return {"ok": True, key: result}


@mcp.tool
def scheduler_health() -> Dict[str, Any]:
    return {
        "ok": True,
        "service": "push-scheduler",
        "started_at_utc": _STARTED_AT_UTC,
        "db": get_service().store.database_url.split(":", 1)[0],
    }


@mcp.tool
def schedule_create(
    credential: str,
    name: str,
    push_token: str,
    cron_pattern: str,
    payload: Any = None,
) -> Dict[str, Any]:
    return call_service(
        "schedule",
        lambda svc: svc.create_schedule(
            credential, name=name, push_token=push_token, cron_pattern=cron_pattern, payload=payload
        ),
    )


@mcp.tool
def schedule_list(credential: str) -> Dict[str, Any]:
    return call_service("schedules", lambda svc: svc.list_schedules(credential))


@mcp.tool
def schedule_update(
    credential: str,
    schedule_id: int,
    name: str,
    push_token: str,
    cron_pattern: str,
    payload: Any = None,
) -> Dict[str, Any]:
    return call_service(
        "schedule",
        lambda svc: svc.update_schedule(
            credential,
            int(schedule_id),
            name=name,
            push_token=push_token,
            cron_pattern=cron_pattern,
            payload=payload,
        ),
    )


@mcp.tool
def schedule_delete(credential: str, schedule_id: int) -> Dict[str, Any]:
    return call_service("schedule", lambda svc: svc.delete_schedule(credential, int(schedule_id)))


def run() -> None:
    cfg = SchedulerConfig.from_env()
    setup_logging(level=cfg.log_level, json_logs=cfg.json_logs)
    set_service(build_service(cfg))
    log.info("mcp_server_starting", transport=cfg.mcp_transport, host=cfg.mcp_host, port=cfg.mcp_port)

    if cfg.mcp_transport == "stdio":
        mcp.run(transport="stdio")
        return
    # FastMCP signature differs across versions, so keep it permissive.
    try:
        mcp.run(transport=cfg.mcp_transport, host=cfg.mcp_host, port=int(cfg.mcp_port))
    except TypeError:
        mcp.run(transport=cfg.mcp_transport)


if __name__ == "__main__":
    run()
