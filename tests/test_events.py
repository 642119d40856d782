import logging

from app.events import ProjectEvent, ProjectEvents, build_project_events


def test_listeners_run_in_subscription_order():
    events = ProjectEvents()
    calls = []
    events.subscribe(ProjectEvent.CREATED, lambda e, p: calls.append(("first", p)))
    events.subscribe(ProjectEvent.CREATED, lambda e, p: calls.append(("second", p)))

    events.publish(ProjectEvent.CREATED, {"id": "p1"})

    assert calls == [("first", {"id": "p1"}), ("second", {"id": "p1"})]


def test_only_matching_listeners_are_called():
    events = ProjectEvents()
    calls = []
    events.subscribe(ProjectEvent.DELETED, lambda e, p: calls.append(e))

    events.publish(ProjectEvent.UPDATED, {"id": "p1"})

    assert calls == []


def test_failing_listener_is_logged_and_skipped(caplog):
    events = ProjectEvents()
    calls = []

    def broken(event, payload):
        raise RuntimeError("boom")

    events.subscribe(ProjectEvent.UPDATED, broken)
    events.subscribe(ProjectEvent.UPDATED, lambda e, p: calls.append(p))

    with caplog.at_level(logging.ERROR, logger="app.events"):
        events.publish(ProjectEvent.UPDATED, {"id": "p1"})

    assert calls == [{"id": "p1"}]
    assert "broken" in caplog.text


def test_unsubscribe_stops_delivery():
    events = ProjectEvents()
    calls = []

    def listener(event, payload):
        calls.append(payload)

    events.subscribe("project:deleted", listener)
    events.unsubscribe(ProjectEvent.DELETED, listener)
    events.unsubscribe(ProjectEvent.DELETED, listener)

    events.publish(ProjectEvent.DELETED, {"id": "p1"})

    assert calls == []


def test_default_registry_logs_audit_line(caplog):
    events = build_project_events()

    with caplog.at_level(logging.INFO, logger="app.events"):
        events.publish(ProjectEvent.DELETED, {"id": "p9"})

    assert "project:deleted id=p9" in caplog.text
