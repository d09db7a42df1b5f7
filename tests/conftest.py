from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Optional

import pytest

from push_scheduler.errors import AuthError
from push_scheduler.scheduler.db import dispose_engine
from push_scheduler.scheduler.identity import Identity, parse_bearer
from push_scheduler.scheduler.repo import ScheduleStore
from push_scheduler.scheduler.service import ScheduleService


U1_P1 = "Bearer u1-p1"
U2_P1 = "Bearer u2-p1"
U1_P2 = "Bearer u1-p2"


class FakeVerifier:
    """Maps fixed bearer tokens to identities, no credential material involved."""

    def __init__(self, tokens: Optional[Dict[str, Identity]] = None) -> None:
        self.tokens = tokens or {
            "u1-p1": Identity(user_id="U1", audience="P1"),
            "u2-p1": Identity(user_id="U2", audience="P1"),
            "u1-p2": Identity(user_id="U1", audience="P2"),
        }
        self.calls = 0

    def verify(self, credential: Optional[str]) -> Identity:
        self.calls += 1
        token = parse_bearer(credential)
        identity = self.tokens.get(token)
        if identity is None:
            raise AuthError("invalid_credential")
        return identity


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def database_url(tmp_path):
    url = f"sqlite:///{(tmp_path / 'scheduler.db').as_posix()}"
    yield url
    dispose_engine(url)


@pytest.fixture
def store(database_url):
    s = ScheduleStore(database_url)
    s.init_db()
    return s


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 5, 1, 8, 30, 0))


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def service(store, verifier, clock):
    return ScheduleService(store, verifier, clock=clock)
