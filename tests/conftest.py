"""
Shared fixtures: a sample snapshot, an in-memory store and a stub endpoint.
"""
import random
from typing import Any, Dict, List, Optional, Tuple

import pytest

from reysol_attendance.controller import AttendanceApp
from reysol_attendance.errors import RemoteError, SyncError
from reysol_attendance.snapshot import (
    AttendanceBook,
    League,
    Match,
    Member,
    Section,
    Snapshot,
)
from reysol_attendance.store import LocalSnapshotStore


HOME_MATCH_ID = 1001
AWAY_FREE_MATCH_ID = 1002
AWAY_RESERVED_MATCH_ID = 1003
LEAGUE_ID = '100'


class StubClient:
    """Stands in for RemoteSyncClient and records every mutation."""

    def __init__(self, snapshot: Optional[Snapshot] = None,
                 error: Optional[SyncError] = None) -> None:
        self.snapshot = snapshot
        self.error = error
        self.accept = True
        self.admin_password = 'secret'
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.fetches = 0
        self.closed = False

    def fetch_snapshot(self, previous: Optional[Snapshot] = None) -> Snapshot:
        self.fetches += 1
        if self.error is not None:
            raise self.error
        return self.snapshot

    def send_mutation(self, action: str, payload: Dict[str, Any]) -> bool:
        self.sent.append((action, payload))
        return self.accept

    def verify_admin(self, password: str) -> bool:
        return password == self.admin_password

    def update_admin_password(self, old_password: str, new_password: str) -> None:
        if old_password != self.admin_password:
            raise RemoteError('現在のパスワードが違います')
        self.admin_password = new_password

    def close(self) -> None:
        self.closed = True


def build_snapshot() -> Snapshot:
    members = [
        Member('田中', Section.MAIN),
        Member('佐藤', Section.BACK),
        Member('鈴木', Section.MAIN),
    ]
    matches = [
        Match(id=HOME_MATCH_ID, date='2025-03-01', opponent='浦和', location='home'),
        Match(id=AWAY_FREE_MATCH_ID, date='2025-04-05', opponent='鹿島', location='away',
              seat_type='free', queue_flag=True, queue_time='2025-04-05T06:00'),
        Match(id=AWAY_RESERVED_MATCH_ID, date='2025-05-10', opponent='横浜', location='away',
              seat_type='reserved'),
    ]
    leagues = [League(id=LEAGUE_ID, name='2025 J1', start='2025-02', end='2025-12')]
    return Snapshot(members=members, matches=matches, attendance=AttendanceBook(),
                    match_limit=10, leagues=leagues)


@pytest.fixture
def snapshot() -> Snapshot:
    return build_snapshot()


@pytest.fixture
def store():
    """Local store on an in-memory database, emptied around each test."""
    local = LocalSnapshotStore(':memory:')
    local.clear()
    yield local
    local.clear()


@pytest.fixture
def client(snapshot) -> StubClient:
    return StubClient(snapshot=snapshot)


@pytest.fixture
def messages() -> List[str]:
    return []


@pytest.fixture
def app(store, client, snapshot, messages) -> AttendanceApp:
    """Controller already holding the sample snapshot."""
    controller = AttendanceApp(store, client, notifier=messages.append, rng=random.Random(0))
    controller.snapshot = snapshot
    controller.ready = True
    return controller
