"""Schedule operations: create, list, update, delete.

Every operation authenticates first, validates input before touching the
store, and scopes writes to the caller's identity. Store failures surface as
InternalError; ownership mismatches look exactly like missing ids.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from push_scheduler.errors import AuthError, InternalError, NotFoundError, ValidationError
from push_scheduler.logging_utils import get_logger
from push_scheduler.scheduler import cron
from push_scheduler.scheduler.config import SchedulerConfig
from push_scheduler.scheduler.identity import (
    AudienceAllowList,
    FirebaseIdentityVerifier,
    Identity,
    IdentityVerifier,
)
from push_scheduler.scheduler.repo import ScheduleStore

log = get_logger(__name__)

NOT_FOUND_MESSAGE = "Schedule not found"


class ScheduleService:
    def __init__(
        self,
        store: ScheduleStore,
        verifier: IdentityVerifier,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self._clock = clock or cron.utcnow

    def create_schedule(
        self,
        credential: Optional[str],
        *,
        name: str,
        push_token: str,
        cron_pattern: str,
        payload: Any,
    ) -> Dict[str, Any]:
        identity = self._authenticate(credential)
        _require_object(payload)

        now = self._clock()
        next_execution = cron.decode(cron_pattern, now)

        with self._persistence("create"):
            schedule = self.store.insert(
                owner_user_id=identity.user_id,
                owner_audience=identity.audience,
                name=name,
                push_token=push_token,
                cron_pattern=cron_pattern,
                payload=payload,
                next_execution=next_execution,
                now=now,
            )

        log.info(
            "schedule_created",
            schedule_id=schedule["id"],
            user_id=identity.user_id,
            audience=identity.audience,
            next_execution=schedule["next_execution"],
        )
        return schedule

    def list_schedules(self, credential: Optional[str]) -> List[Dict[str, Any]]:
        identity = self._authenticate(credential)
        with self._persistence("list"):
            return self.store.list_for_owner(identity.user_id, identity.audience)

    def update_schedule(
        self,
        credential: Optional[str],
        schedule_id: int,
        *,
        name: str,
        push_token: str,
        cron_pattern: str,
        payload: Any,
    ) -> Dict[str, Any]:
        identity = self._authenticate(credential)
        self._find_owned(identity, schedule_id)

        _require_object(payload)
        now = self._clock()
        next_execution = cron.decode(cron_pattern, now)

        with self._persistence("update"):
            schedule = self.store.update_owned(
                schedule_id,
                identity.user_id,
                identity.audience,
                name=name,
                push_token=push_token,
                cron_pattern=cron_pattern,
                payload=payload,
                next_execution=next_execution,
                now=now,
            )
        if schedule is None:
            log.info("schedule_update_lost_race", schedule_id=schedule_id, user_id=identity.user_id)
            raise NotFoundError(NOT_FOUND_MESSAGE)

        log.info("schedule_updated", schedule_id=schedule_id, next_execution=schedule["next_execution"])
        return schedule

    def delete_schedule(self, credential: Optional[str], schedule_id: int) -> Dict[str, Any]:
        identity = self._authenticate(credential)
        self._find_owned(identity, schedule_id)

        with self._persistence("delete"):
            removed = self.store.delete_owned(schedule_id, identity.user_id, identity.audience)
        if removed is None:
            log.info("schedule_delete_lost_race", schedule_id=schedule_id, user_id=identity.user_id)
            raise NotFoundError(NOT_FOUND_MESSAGE)

        log.info("schedule_deleted", schedule_id=schedule_id, user_id=identity.user_id)
        return removed

    def _authenticate(self, credential: Optional[str]) -> Identity:
        try:
            return self.verifier.verify(credential)
        except AuthError as exc:
            log.info("auth_rejected", reason=exc.reason)
            raise

    def _find_owned(self, identity: Identity, schedule_id: int) -> Dict[str, Any]:
        """Early rejection only; the conditional write decides the real outcome."""
        with self._persistence("lookup"):
            schedule = self.store.get(schedule_id)
        if (
            schedule is None
            or schedule["owner_user_id"] != identity.user_id
            or schedule["owner_audience"] != identity.audience
        ):
            log.info("schedule_not_found", schedule_id=schedule_id, user_id=identity.user_id)
            raise NotFoundError(NOT_FOUND_MESSAGE)
        return schedule

    @contextmanager
    def _persistence(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            log.error("store_failure", operation=operation, error=str(exc))
            raise InternalError("Schedule store failure", details={"operation": operation}) from exc


def _require_object(payload: Any) -> None:
    if not isinstance(payload, dict):
        raise ValidationError(
            "Invalid payload: expected a JSON object",
            details={"payload_type": type(payload).__name__},
        )


def build_service(cfg: SchedulerConfig) -> ScheduleService:
    """Wire store, Firebase verifier and service from configuration."""
    store = ScheduleStore(cfg.database_url)
    store.init_db()

    allow_list = AudienceAllowList.of(cfg.audiences)
    if not len(allow_list):
        log.warning("audience_allow_list_empty", hint="set FIREBASE_PROJECTS or SERVICE_ACCOUNTS_DIR")

    return ScheduleService(store, FirebaseIdentityVerifier(allow_list))
