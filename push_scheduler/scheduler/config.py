from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, List

from push_scheduler.config_utils import env_bool, env_csv, env_first, env_int, env_str
from push_scheduler.logging_utils import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class SchedulerConfig:
    """Runtime configuration for the schedule service.

    DB selection (first non-empty wins):
    - SCHEDULER_DATABASE_URL: service-specific DB URL
    - PLATFORM_DATABASE_URL: shared DB URL
    - DATABASE_URL: plain URL, sqlx style ``sqlite:toolkit.db`` is accepted
    - otherwise local SQLite at data/scheduler.db

    Identity:
    - FIREBASE_PROJECTS: comma separated Firebase project ids whose ID tokens
      are accepted
    - SERVICE_ACCOUNTS_DIR: directory of service-account JSON files; the
      ``project_id`` of each one is accepted as well (default: service_accounts)

    HTTP API:
    - SCHEDULER_HTTP_HOST (default: 0.0.0.0)
    - SCHEDULER_HTTP_PORT (default: 3000)

    MCP server:
    - SCHEDULER_MCP_TRANSPORT: stdio|http|sse (default: http)
    - SCHEDULER_MCP_HOST (default: 0.0.0.0)
    - SCHEDULER_MCP_PORT (default: 8010)

    Logging:
    - SCHEDULER_LOG_LEVEL (default: INFO)
    - SCHEDULER_JSON_LOGS (default: false)
    """

    database_url: str
    audiences: FrozenSet[str]

    http_host: str
    http_port: int

    mcp_transport: str
    mcp_host: str
    mcp_port: int

    log_level: str
    json_logs: bool

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        db_url = env_first("SCHEDULER_DATABASE_URL", "PLATFORM_DATABASE_URL", "DATABASE_URL")
        if db_url:
            db_url = normalise_database_url(db_url)
        else:
            repo_root = Path(__file__).resolve().parents[2]
            data_dir = repo_root / "data"
            data_dir.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{(data_dir / 'scheduler.db').as_posix()}"

        accounts_dir = Path(env_str("SERVICE_ACCOUNTS_DIR", "service_accounts"))
        audiences = frozenset(env_csv("FIREBASE_PROJECTS")) | frozenset(
            load_service_account_projects(accounts_dir)
        )

        return cls(
            database_url=db_url,
            audiences=audiences,
            http_host=env_str("SCHEDULER_HTTP_HOST", "0.0.0.0"),
            http_port=env_int("SCHEDULER_HTTP_PORT", 3000),
            mcp_transport=env_str("SCHEDULER_MCP_TRANSPORT", "http").lower(),
            mcp_host=env_str("SCHEDULER_MCP_HOST", "0.0.0.0"),
            mcp_port=env_int("SCHEDULER_MCP_PORT", 8010),
            log_level=env_str("SCHEDULER_LOG_LEVEL", "INFO").upper(),
            json_logs=env_bool("SCHEDULER_JSON_LOGS", False),
        )


def normalise_database_url(url: str) -> str:
    """Turn ``sqlite:file.db`` into the SQLAlchemy form ``sqlite:///file.db``."""
    raw = url.strip()
    if raw.startswith("sqlite:") and not raw.startswith("sqlite://"):
        return "sqlite:///" + raw[len("sqlite:"):]
    return raw


def load_service_account_projects(directory: Path) -> List[str]:
    """Collect ``project_id`` from every service-account JSON in ``directory``."""
    if not directory.is_dir():
        return []

    projects: List[str] = []
    for path in sorted(directory.glob("*.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning("service_account_unreadable", path=str(path), error=str(exc))
            continue
        project_id = data.get("project_id") if isinstance(data, dict) else None
        if isinstance(project_id, str) and project_id.strip():
            projects.append(project_id.strip())
    return _dedupe(projects)


def _dedupe(items: Iterable[str]) -> List[str]:
    out: List[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return out
