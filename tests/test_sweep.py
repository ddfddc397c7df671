"""
Tests for the missed check-in sweep and the warning overview.

Tests validate:
- only overdue, un-notified users with contacts are notified
- repeated sweeps do not send duplicate alerts
- partial delivery failures still flag the user
- one user's failure does not stop the sweep
"""

import pytest

import store
import sweep
from errors import UpstreamUnavailable
from sweep import run_sweep, warning_overview
from tests.conftest import HOUR_MS, T0, FakeTransport, check_in_at


def user_with_contacts(user_id, emails, last_checkin=T0, username=None):
    store.create_profile(user_id, username or user_id.title())
    check_in_at(user_id, last_checkin)
    for i, email in enumerate(emails):
        store.add_contact(user_id, f"Contact {i}", email)


class TestRunSweep:
    def test_nothing_to_do(self, db, transport):
        summary = run_sweep(transport, now=T0)
        assert summary == {"users_checked": 0, "users_notified": 0, "per_user_results": []}
        assert transport.sent == []

    def test_threshold_scenario(self, db, transport):
        """At T+47h59m nobody is alerted; at T+48h every contact gets one email."""
        user_with_contacts("alice", ["mom@example.com", "sam@example.com"])

        summary = run_sweep(transport, now=T0 + 47 * HOUR_MS + 59 * 60 * 1000)
        assert summary["users_notified"] == 0
        assert transport.sent == []

        summary = run_sweep(transport, now=T0 + 48 * HOUR_MS + 1)
        assert summary["users_notified"] == 1
        assert sorted(m["to"] for m in transport.sent) == ["mom@example.com", "sam@example.com"]
        assert store.get_profile("alice")["notification_sent"] is True

        result = summary["per_user_results"][0]
        assert result["user_id"] == "alice"
        assert result["status"] == "notified"
        assert result["email_results"]["success"] == 2

    def test_second_sweep_is_noop(self, db, transport):
        user_with_contacts("alice", ["mom@example.com"])
        now = T0 + 72 * HOUR_MS

        first = run_sweep(transport, now=now)
        second = run_sweep(transport, now=now + 1000)

        assert first["users_notified"] == 1
        assert second["users_notified"] == 0
        assert len(transport.sent) == 1

    def test_checkin_rearms_notification(self, db, transport):
        user_with_contacts("alice", ["mom@example.com"])
        run_sweep(transport, now=T0 + 72 * HOUR_MS)

        check_in_at("alice", T0 + 73 * HOUR_MS)
        run_sweep(transport, now=T0 + 100 * HOUR_MS)
        assert len(transport.sent) == 1

        run_sweep(transport, now=T0 + 122 * HOUR_MS)
        assert len(transport.sent) == 2

    @pytest.mark.parametrize("elapsed_hours", [49, 100, 24 * 365])
    def test_user_without_contacts_never_flagged(self, db, transport, elapsed_hours):
        user_with_contacts("loner", [])

        summary = run_sweep(transport, now=T0 + elapsed_hours * HOUR_MS)

        assert summary["users_notified"] == 0
        assert summary["per_user_results"][0]["status"] == "skipped"
        assert summary["per_user_results"][0]["reason"] == "no_contacts"
        assert store.get_profile("loner")["notification_sent"] is False

    def test_partial_failure_still_flags_user(self, db):
        user_with_contacts("alice", ["a@example.com", "b@example.com", "c@example.com"])
        transport = FakeTransport(fail_for={"b@example.com"})

        summary = run_sweep(transport, now=T0 + 50 * HOUR_MS)

        email_results = summary["per_user_results"][0]["email_results"]
        assert email_results["success"] == 2
        assert email_results["failure"] == 1
        assert store.get_profile("alice")["notification_sent"] is True

    def test_checkin_during_alert_keeps_flag_clear(self, db):
        """A user who checks in while contacts are being emailed is not flagged."""
        user_with_contacts("alice", ["mom@example.com"])

        class CheckInWhileSending(FakeTransport):
            def send(self, to, subject, body):
                check_in_at("alice", T0 + 60 * HOUR_MS)
                return super().send(to, subject, body)

        transport = CheckInWhileSending()
        summary = run_sweep(transport, now=T0 + 50 * HOUR_MS)

        result = summary["per_user_results"][0]
        assert result["status"] == "notified_checked_in"
        assert result["email_results"]["success"] == 1
        assert summary["users_notified"] == 0
        assert store.get_profile("alice")["notification_sent"] is False
        assert len(transport.sent) == 1

    def test_one_user_failing_does_not_abort(self, db, transport, monkeypatch):
        user_with_contacts("alice", ["mom@example.com"], last_checkin=T0)
        user_with_contacts("bob", ["dad@example.com"], last_checkin=T0 + HOUR_MS)

        real_list_contacts = store.list_contacts

        def flaky_list_contacts(user_id):
            if user_id == "alice":
                raise UpstreamUnavailable("contacts table locked")
            return real_list_contacts(user_id)

        monkeypatch.setattr(store, "list_contacts", flaky_list_contacts)
        summary = run_sweep(transport, now=T0 + 60 * HOUR_MS)

        statuses = {r["user_id"]: r["status"] for r in summary["per_user_results"]}
        assert statuses == {"alice": "error", "bob": "notified"}
        assert store.get_profile("alice")["notification_sent"] is False
        assert [m["to"] for m in transport.sent] == ["dad@example.com"]

    def test_store_unreachable_aborts(self, db, transport, monkeypatch):
        def down(cutoff):
            raise UpstreamUnavailable("database offline")

        monkeypatch.setattr(store, "list_overdue_profiles", down)
        with pytest.raises(UpstreamUnavailable):
            run_sweep(transport, now=T0)

    def test_alert_mentions_user_and_last_checkin(self, db, transport):
        user_with_contacts("alice", ["mom@example.com"], username="Alice Smith")
        run_sweep(transport, now=T0 + 50 * HOUR_MS)

        message = transport.sent[0]
        assert "Alice Smith" in message["subject"]
        assert "2023-11-14 22:13 UTC" in message["body"]

    def test_custom_threshold(self, db, transport):
        user_with_contacts("alice", ["mom@example.com"])
        summary = run_sweep(transport, now=T0 + 13 * HOUR_MS, threshold_hours=12)
        assert summary["users_notified"] == 1


class TestWarningOverview:
    def test_sorted_by_urgency_with_summary(self, db):
        now = T0 + 100 * HOUR_MS
        user_with_contacts("safe", ["a@example.com"], last_checkin=now - HOUR_MS)
        user_with_contacts("warn", [], last_checkin=now - 30 * HOUR_MS)
        user_with_contacts("gone", ["b@example.com", "c@example.com"], last_checkin=now - 60 * HOUR_MS)
        store.create_profile("newbie", "Newbie")

        report = warning_overview(now=now)

        assert [u["user_id"] for u in report["users"]] == ["gone", "warn", "safe", "newbie"]
        assert report["summary"] == {"total": 4, "safe": 1, "warning": 1, "danger": 1, "never": 1}
        gone = report["users"][0]
        assert gone["hours_since_last_checkin"] == 60.0
        assert gone["emergency_contacts_count"] == 2
        assert report["users"][-1]["hours_since_last_checkin"] is None
        assert report["checked_at"].startswith("2023-11-19T02:13:20")

    def test_zero_hours_is_reported(self, db):
        user_with_contacts("alice", [], last_checkin=T0)
        report = sweep.warning_overview(now=T0)
        assert report["users"][0]["hours_since_last_checkin"] == 0.0
