from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base


Base = declarative_base()


class Schedule(Base):
    """A recurring push notification owned by one (user, Firebase project)."""

    __tablename__ = "fcm_schedule"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Set once from the verified identity; never written by updates.
    owner_user_id = Column(String(128), nullable=False)
    owner_audience = Column(String(128), nullable=False)

    name = Column(Text, nullable=False)
    push_token = Column(Text, nullable=False)
    cron_pattern = Column(Text, nullable=False)
    payload_json = Column(Text, default="{}", nullable=False)

    last_execution = Column(DateTime, nullable=False)
    next_execution = Column(DateTime, nullable=False, index=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (Index("ix_fcm_schedule_owner", "owner_user_id", "owner_audience"),)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": int(self.id),
            "owner_user_id": self.owner_user_id,
            "owner_audience": self.owner_audience,
            "name": self.name,
            "push_token": self.push_token,
            "cron_pattern": self.cron_pattern,
            "payload": _load_payload(self.payload_json),
            "last_execution": _iso(self.last_execution),
            "next_execution": _iso(self.next_execution),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


def dump_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _load_payload(raw: Optional[str]) -> Dict[str, Any]:
    # Only objects are ever written, see ScheduleService.
    return json.loads(raw) if raw else {}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


def parse_timestamp(value: str) -> datetime:
    """Inverse of the ``to_dict`` timestamp rendering (naive UTC)."""
    return datetime.fromisoformat(value[:-1] if value.endswith("Z") else value)
