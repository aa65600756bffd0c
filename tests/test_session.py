from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from service.taskflow.errors import FormValidationError, TaskNotFound
from service.taskflow.pipeline.state import AnchorKey, ReconciledView, RoleContext
from service.taskflow.session.forms import FormState
from service.taskflow.session.manager import UPLOAD_REQUIRED_MESSAGE, SessionStore, TaskSession
from service.taskflow.tools.upload_tool import Attachment

from conftest import FakeScriptClient, task_row


def _rows():
    return [
        task_row("TM-1", "Crane 3", serial="SN-9"),
        task_row("TM-2", "Crane 3", serial="SN-9", **{"Require Attachment": "Yes"}),
        task_row("TM-3", "Crane 3", serial="SN-9", done="2024-01-05"),
    ]


@pytest.fixture
def client():
    return FakeScriptClient(_rows())


@pytest.fixture
def session(settings, mapping, client):
    s = TaskSession(
        settings,
        role_ctx=RoleContext(role="user", username="ravi"),
        anchor=AnchorKey(serial_no="SN-9"),
        client=client,
        mapping=mapping,
    )
    s.reconcile()
    return s


def _mark_done(client, task_no, date="2024-03-10"):
    for row in client.rows:
        if row["Task No"] == task_no:
            row["Actual Date"] = date


def test_reconcile_applies_view(session):
    assert session.view.status == "ok"
    assert session.view.generation == 1
    assert session.view.progress_percent == 33
    assert [r.task_no for r in session.view.active] == ["TM-1", "TM-2"]


def test_successful_submit_clears_form_and_reconciles(session, client):
    session.check("TM-1")
    session.update("TM-1", status="Yes", remarks="greased", cost="50")

    def remote_update(payload):
        _mark_done(client, "TM-1")
        return {"success": True}

    client.post_update.side_effect = remote_update

    out = session.submit("TM-1")

    assert out.ok
    assert out.view is session.view
    assert [r.task_no for r in out.view.completed] == ["TM-1", "TM-3"]
    assert out.view.progress_percent == 66
    assert session.forms.entry("TM-1") is None
    payload = client.post_update.call_args.args[0]
    assert payload["Task Status"] == "Yes"
    assert payload["Maintenance Cost"] == "50"
    assert "Actual Date" in payload
    client.upload_file.assert_not_called()


def test_failed_submit_keeps_form_for_retry(session, client):
    session.check("TM-1")
    session.update("TM-1", status="No", remarks="waiting")
    client.post_update.return_value = {"success": False, "error": "Sheet busy"}

    out = session.submit("TM-1")

    assert not out.ok
    assert out.error == "Sheet busy"
    assert session.forms.entry("TM-1").remarks == "waiting"
    assert session.forms.state_of(session.view.find_active("TM-1")) == FormState.READY
    assert session.view.generation == 1


def test_attachment_uploaded_before_update(session, client):
    session.check("TM-2")
    session.update("TM-2", status="Yes")
    session.attach("TM-2", Attachment.from_bytes("hook.jpg", b"img"))

    out = session.submit("TM-2")

    assert out.ok
    assert client.upload_file.call_count == 1
    payload = client.post_update.call_args.args[0]
    assert payload["Image Link"] == "https://drive.example/f/1"
    assert payload["File Type"] == "jpg"


def test_required_attachment_upload_failure_blocks_update(session, client):
    session.check("TM-2")
    session.update("TM-2", status="Yes")
    session.attach("TM-2", Attachment.from_bytes("hook.jpg", b"img"))
    client.upload_file.return_value = {"success": False, "error": "quota"}

    out = session.submit("TM-2")

    assert not out.ok
    assert out.error == UPLOAD_REQUIRED_MESSAGE
    client.post_update.assert_not_called()
    assert session.forms.entry("TM-2").attachment is not None


def test_submit_not_ready_raises(session):
    session.check("TM-2")
    session.update("TM-2", status="Yes")

    with pytest.raises(FormValidationError):
        session.submit("TM-2")


def test_completed_task_is_not_editable(session):
    with pytest.raises(TaskNotFound):
        session.check("TM-3")


def test_stale_generation_is_dropped(session):
    newer = ReconciledView.empty_of("ok")

    def slow_then_overtaken(*args, **kwargs):
        # a second pass starts and lands while this one is still in flight
        with patch("service.taskflow.session.manager.run_reconcile_graph", return_value=newer):
            session.reconcile()
        return ReconciledView.empty_of("ok", logs=["stale"])

    with patch("service.taskflow.session.manager.run_reconcile_graph", side_effect=slow_then_overtaken):
        result = session.reconcile()

    assert session.view is newer
    assert newer.generation == 3
    assert result is newer


def test_stale_generation_never_prunes_forms(session):
    session.check("TM-1")
    current = session.view

    def overtaken(*args, **kwargs):
        # the newer pass lands first; the older one then returns an empty active set
        with patch("service.taskflow.session.manager.run_reconcile_graph", return_value=current):
            session.reconcile()
        return ReconciledView.empty_of("ok")

    with patch("service.taskflow.session.manager.run_reconcile_graph", side_effect=overtaken):
        session.reconcile()

    assert session.forms.entry("TM-1") is not None
    assert session.view is current


def test_refresh_after_remote_change_prunes_forms(session, client):
    session.check("TM-1")
    _mark_done(client, "TM-1")

    session.reconcile()

    assert session.forms.entry("TM-1") is None
    assert session.view.generation == 2


def test_unreadable_refresh_keeps_forms(session, client):
    session.check("TM-1")
    client.unreadable = True

    view = session.reconcile()

    assert view.status == "empty"
    assert session.forms.entry("TM-1") is not None


def test_anchor_change_regroups(session, client):
    client.rows.append(task_row("TM-7", "Stand 1", serial="SN-11"))

    view = session.set_anchor(AnchorKey(task_no="TM-7"))

    assert [r.task_no for r in view.active] == ["TM-7"]


def test_closed_session_ignores_results(session, client):
    session.close()
    client.close.assert_called_once()

    before = session.view
    assert session.reconcile() is before
    session.close()
    client.close.assert_called_once()


def test_store(session):
    store = SessionStore()
    store.add(session)

    assert store.get(session.session_id) is session
    assert store.close(session.session_id)
    assert session.closed
    assert store.get(session.session_id) is None
    assert not store.close(session.session_id)


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _stub(sid):
    return MagicMock(session_id=sid)


def test_store_closes_idle_sessions():
    clock = _Clock()
    store = SessionStore(idle_seconds=60, clock=clock)
    old, fresh = _stub("old"), _stub("fresh")
    store.add(old)
    clock.now += 50
    store.add(fresh)

    clock.now += 20
    assert store.get("fresh") is fresh

    assert store.get("old") is None
    old.close.assert_called_once()
    fresh.close.assert_not_called()
    assert len(store) == 1


def test_store_use_keeps_session_alive():
    clock = _Clock()
    store = SessionStore(idle_seconds=60, clock=clock)
    s = _stub("a")
    store.add(s)

    for _ in range(5):
        clock.now += 40
        assert store.get("a") is s

    s.close.assert_not_called()


def test_store_caps_open_sessions_lru():
    clock = _Clock()
    store = SessionStore(idle_seconds=0, max_sessions=2, clock=clock)
    a, b, c = _stub("a"), _stub("b"), _stub("c")
    store.add(a)
    store.add(b)
    store.get("a")

    store.add(c)

    assert store.get("b") is None
    b.close.assert_called_once()
    assert store.get("a") is a and store.get("c") is c
