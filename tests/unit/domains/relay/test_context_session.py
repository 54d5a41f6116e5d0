"""Tests for the ContextSession aggregate and the in-memory repository."""

from agentui.domains.relay import ContextSession, InMemoryContextRepository


def _session(**kwargs) -> ContextSession:
    return ContextSession(context_ref="ctx_a", created_at=0.0, last_activity=0.0, **kwargs)


def _result(request_id, ok=True, **extra):
    return dict({"requestId": request_id, "ok": ok, "resultingStateVersion": 1}, **extra)


class TestSnapshots:
    def test_newer_versions_only(self):
        session = _session()
        assert session.accept_snapshot({"version": 1})
        assert session.accept_snapshot({"version": 2})
        assert not session.accept_snapshot({"version": 2})
        assert session.snapshot_version == 2

    def test_reload_resets_history(self):
        session = _session()
        for version in (1, 2, 3):
            session.accept_snapshot({"version": version})
        assert session.accept_snapshot({"version": 1, "url": "reloaded"})
        assert list(session.history) == [{"version": 1, "url": "reloaded"}]

    def test_repeated_version_one_is_dropped(self):
        session = _session()
        session.accept_snapshot({"version": 1})
        assert not session.accept_snapshot({"version": 1})

    def test_history_size(self):
        session = _session(history_size=2)
        for version in (1, 2, 3):
            session.accept_snapshot({"version": version})
        assert [s["version"] for s in session.history] == [2, 3]

    def test_observed_type_ids_are_distinct(self):
        session = _session()
        view = {"typeId": "view:cart", "instanceId": "vi_1"}
        session.accept_snapshot({"version": 1, "view": view, "panels": [{"typeId": "panel:a"}]})
        session.accept_snapshot({"version": 2, "view": view, "panels": [{"typeId": "panel:a"}]})
        session.record_modal({"modalId": "modal:login"})
        assert session.observed == {
            "routes": [],
            "views": ["view:cart"],
            "panels": ["panel:a"],
            "modals": ["modal:login"],
        }


class TestEventRate:
    def test_sliding_window(self):
        session = _session()
        assert session.check_event_rate(0.0, limit=2) is None
        assert session.check_event_rate(10.0, limit=2) is None
        assert session.check_event_rate(20.0, limit=2) == 40.0
        assert session.check_event_rate(60.0, limit=2) is None
        assert session.event_count == 3


class TestResults:
    def test_first_result_wins(self):
        session = _session()
        assert session.store_result(_result("r1"))
        assert not session.store_result(_result("r1", ok=False))
        assert session.result_for("r1")["ok"] is True

    def test_raw_result_is_canonical_json(self):
        session = _session()
        session.store_result({"ok": True, "requestId": "r1", "resultingStateVersion": 3})
        assert session.raw_result_for("r1") == '{"ok":true,"requestId":"r1","resultingStateVersion":3}'

    def test_retention_drops_oldest(self):
        session = _session(result_retention=2)
        for request_id in ("a", "b", "c"):
            session.store_result(_result(request_id))
        assert session.result_for("a") is None
        assert session.result_for("c") is not None

    def test_result_clears_pending(self):
        session = _session()
        session.enqueue("r1", {"requestId": "r1"}, now=0.0, ttl=30.0)
        assert session.in_flight == 1
        session.store_result(_result("r1"))
        assert session.in_flight == 0

    def test_deliveries_are_counted(self):
        session = _session()
        pending = session.enqueue("r1", {"requestId": "r1", "command": "focus"}, now=0.0, ttl=30.0)
        session.take_deliverable()
        messages = session.take_deliverable()
        assert messages == [{"requestId": "r1", "command": "focus"}]
        assert pending.deliveries == 2

    def test_expire_overdue(self):
        session = _session()
        session.accept_snapshot({"version": 4})
        session.enqueue("r1", {"requestId": "r1"}, now=0.0, ttl=2.5)
        session.enqueue("r2", {"requestId": "r2"}, now=1.0, ttl=30.0)
        expired = session.expire_overdue(2.5)
        assert [c.request_id for c in expired] == ["r1"]
        result = session.result_for("r1")
        assert result["errorKind"] == "expired"
        assert result["error"] == "command expired after 2.5s without a result"
        assert result["resultingStateVersion"] == 4
        assert list(session.pending) == ["r2"]


class TestViews:
    def test_summary_and_state(self):
        session = _session()
        session.accept_snapshot({"version": 2, "route": {"typeId": "route:home"}})
        session.enqueue("r1", {"requestId": "r1"}, now=0.0, ttl=30.0)
        session.touch(12.0)
        summary = session.summary().to_dict()
        assert summary["snapshotVersion"] == 2
        assert summary["pendingCommands"] == 1
        assert summary["route"] == {"typeId": "route:home"}
        state = session.state_dict()
        assert state["lastActivity"] == 12.0
        assert state["historyLength"] == 1

    def test_idle(self):
        session = _session()
        assert not session.is_idle(10.0, ttl=10.0)
        assert session.is_idle(10.5, ttl=10.0)


class TestInMemoryContextRepository:
    def test_get_or_create(self):
        repository = InMemoryContextRepository()
        session, created = repository.get_or_create("ctx_a", _session)
        again, created_again = repository.get_or_create("ctx_a", _session)
        assert created and not created_again
        assert again is session
        assert repository.count() == 1

    def test_remove_if_checks_predicate(self):
        repository = InMemoryContextRepository()
        repository.get_or_create("ctx_a", _session)
        assert not repository.remove_if("ctx_a", lambda s: False)
        assert repository.remove_if("ctx_a", lambda s: True)
        assert repository.get("ctx_a") is None
        assert repository.remove("ctx_a") is None
