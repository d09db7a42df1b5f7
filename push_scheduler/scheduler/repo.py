from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update

from push_scheduler.errors import InternalError
from push_scheduler.scheduler.db import get_engine, get_sessionmaker
from push_scheduler.scheduler.models import Base, Schedule, dump_payload


class ScheduleStore:
    """SQLAlchemy persistence for schedules.

    Mutations are conditioned on ``(id, owner_user_id, owner_audience)`` in a
    single statement; whether that statement matched a row is the authoritative
    outcome. SQLAlchemy errors propagate to the caller.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url

    def init_db(self) -> None:
        engine = get_engine(self.database_url)
        Base.metadata.create_all(engine)

    def _session(self):
        return get_sessionmaker(self.database_url)()

    def insert(
        self,
        *,
        owner_user_id: str,
        owner_audience: str,
        name: str,
        push_token: str,
        cron_pattern: str,
        payload: Dict[str, Any],
        next_execution: datetime,
        now: datetime,
    ) -> Dict[str, Any]:
        with self._session() as s:
            row = Schedule(
                owner_user_id=owner_user_id,
                owner_audience=owner_audience,
                name=name,
                push_token=push_token,
                cron_pattern=cron_pattern,
                payload_json=dump_payload(payload),
                last_execution=now,
                next_execution=next_execution,
                created_at=now,
                updated_at=now,
            )
            s.add(row)
            s.commit()
            schedule_id = row.id

        stored = self.get(schedule_id)
        if stored is None:
            raise InternalError("Created schedule could not be read back", details={"schedule_id": schedule_id})
        return stored

    def get(self, schedule_id: int) -> Optional[Dict[str, Any]]:
        with self._session() as s:
            row = s.get(Schedule, int(schedule_id))
            return row.to_dict() if row else None

    def list_for_owner(self, owner_user_id: str, owner_audience: str) -> List[Dict[str, Any]]:
        with self._session() as s:
            rows = s.execute(
                select(Schedule)
                .where(Schedule.owner_user_id == owner_user_id)
                .where(Schedule.owner_audience == owner_audience)
                .order_by(Schedule.id.asc())
            ).scalars().all()
            return [r.to_dict() for r in rows]

    def update_owned(
        self,
        schedule_id: int,
        owner_user_id: str,
        owner_audience: str,
        *,
        name: str,
        push_token: str,
        cron_pattern: str,
        payload: Dict[str, Any],
        next_execution: datetime,
        now: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Apply the update if the owner still matches; None when no row matched.

        The post-update read happens inside the same transaction so a
        concurrent delete cannot slip between write and read.
        """
        with self._session() as s:
            result = s.execute(
                update(Schedule)
                .where(Schedule.id == int(schedule_id))
                .where(Schedule.owner_user_id == owner_user_id)
                .where(Schedule.owner_audience == owner_audience)
                .values(
                    name=name,
                    push_token=push_token,
                    cron_pattern=cron_pattern,
                    payload_json=dump_payload(payload),
                    next_execution=next_execution,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                s.rollback()
                return None

            row = s.execute(
                select(Schedule)
                .where(Schedule.id == int(schedule_id))
                .where(Schedule.owner_user_id == owner_user_id)
                .where(Schedule.owner_audience == owner_audience)
            ).scalar_one_or_none()
            if row is None:
                s.rollback()
                raise InternalError("Updated schedule could not be read back", details={"schedule_id": schedule_id})
            updated = row.to_dict()
            s.commit()
            return updated

    def delete_owned(self, schedule_id: int, owner_user_id: str, owner_audience: str) -> Optional[Dict[str, Any]]:
        """Delete the row if the owner still matches; return it as removed, else None.

        The row comes back from the DELETE itself (``RETURNING``), so it is
        exactly what was removed even if an update landed just before.
        """
        with self._session() as s:
            row = s.execute(
                delete(Schedule)
                .where(Schedule.id == int(schedule_id))
                .where(Schedule.owner_user_id == owner_user_id)
                .where(Schedule.owner_audience == owner_audience)
                .returning(Schedule)
            ).scalar_one_or_none()
            removed = row.to_dict() if row is not None else None
            s.commit()
            return removed
