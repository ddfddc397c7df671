"""
Test configuration: repo root on sys.path, a throwaway SQLite database per test,
and a recording email transport in place of Resend.
"""

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import config  # noqa: E402
import store  # noqa: E402
from errors import UpstreamUnavailable  # noqa: E402

API_KEY = "test-key"
HOUR_MS = 60 * 60 * 1000
T0 = 1_700_000_000_000  # 2023-11-14T22:13:20Z


class FakeTransport:
    """Records every send; addresses in fail_for raise UpstreamUnavailable."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def send(self, to, subject, body):
        if to in self.fail_for:
            raise UpstreamUnavailable(f"mailbox {to} unreachable")
        self.sent.append({"to": to, "subject": subject, "body": body})
        return {"id": f"msg-{len(self.sent)}"}


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "DB_PATH", str(tmp_path / "dead_yet_test.db"))
    store.init_db()
    return config.DB_PATH


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(db, transport, monkeypatch):
    from fastapi.testclient import TestClient

    import server

    monkeypatch.setattr(config, "API_KEY", API_KEY)
    monkeypatch.setattr(config, "SWEEP_INTERVAL_SECONDS", 0)
    monkeypatch.setattr(server, "get_transport", lambda: transport)
    with TestClient(server.app) as c:
        c.headers.update({"X-API-Key": API_KEY})
        yield c


def check_in_at(user_id, ts):
    return store.record_checkin(user_id, store.checkin_date(ts), ts)
