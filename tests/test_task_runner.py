import threading
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from src import task_runner
from src.core.errors import NotFoundError, TaskDisabledError
from src.models.base import utcnow
from src.models.scheduled_task import RunStatus, ScheduledTask, TaskRun, TriggerSource
from src.models.session import UserSession
from src.services import task_execution, task_query
from src.tasks.quote_expiry import EXPIRE_EVENT


def _invoke(session_factory, dispatcher, function_id, **kwargs):
    return task_runner.run_invocation(
        function_id,
        session_factory=session_factory,
        dispatcher=dispatcher,
        **kwargs,
    )


def _run_count(db):
    return db.execute(select(func.count()).select_from(TaskRun)).scalar_one()


def test_scheduled_invocation_runs_handler(db, synced, session_factory, dispatcher):
    now = utcnow()
    db.add_all(
        [
            UserSession(user_id="u1", session_token="old-1", expires=now - timedelta(days=1)),
            UserSession(user_id="u2", session_token="old-2", expires=now - timedelta(minutes=5)),
            UserSession(user_id="u3", session_token="live", expires=now + timedelta(days=1)),
        ]
    )
    db.commit()

    run = _invoke(session_factory, dispatcher, "cleanup-sessions", dispatcher_run_id="01HRUN")
    assert run.status == RunStatus.SUCCEEDED.value
    assert run.triggered_by == TriggerSource.SCHEDULE.value
    assert run.result == {"deleted": 2}
    assert run.dispatcher_run_id == "01HRUN"
    assert run.duration_ms is not None


def test_trigger_source_from_event_name(synced, session_factory, dispatcher):
    run = _invoke(session_factory, dispatcher, "expire-quotes", event_name=EXPIRE_EVENT)
    assert run.triggered_by == TriggerSource.EVENT.value

    run = _invoke(
        session_factory,
        dispatcher,
        "expire-quotes",
        event_name="expire-quotes/manual",
        event_data={"triggeredBy": "ops-7"},
    )
    assert run.triggered_by == TriggerSource.MANUAL.value
    assert run.triggered_by_user == "ops-7"


def test_manual_trigger_reuses_pre_created_run(db, synced, session_factory, dispatcher):
    pending = task_execution.trigger_manually(db, synced["cleanup-sessions"], "admin-1", dispatcher)
    event = dispatcher.events[0]

    run = _invoke(
        session_factory,
        dispatcher,
        "cleanup-sessions",
        event_name=event.name,
        event_data=event.data,
        event_id=event.id,
        dispatcher_run_id="01HMANUAL",
    )
    assert run.id == pending.id
    assert run.status == RunStatus.SUCCEEDED.value
    assert run.triggered_by == TriggerSource.MANUAL.value
    assert run.dispatcher_run_id == "01HMANUAL"
    assert _run_count(db) == 1


def test_redelivery_of_finished_run_is_recorded_as_retry(db, synced, session_factory, dispatcher):
    first = _invoke(session_factory, dispatcher, "cleanup-sessions", dispatcher_run_id="01HSAME")
    second = _invoke(session_factory, dispatcher, "cleanup-sessions", dispatcher_run_id="01HSAME")

    assert second.id != first.id
    assert second.triggered_by == TriggerSource.RETRY.value
    assert second.status == RunStatus.SUCCEEDED.value
    assert _run_count(db) == 2


def test_handler_exception_fails_run(synced, session_factory, dispatcher, monkeypatch):
    def boom(ctx):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(task_runner, "get_handler", lambda function_id: boom)
    run = _invoke(session_factory, dispatcher, "update-overdue-invoices")

    assert run.status == RunStatus.FAILED.value
    assert run.error == "ledger unavailable"
    assert "RuntimeError" in run.stack_trace
    assert run.completed_at is not None


def test_missing_handler_fails_run(synced, session_factory, dispatcher, monkeypatch):
    monkeypatch.setattr(task_runner, "get_handler", lambda function_id: None)
    run = _invoke(session_factory, dispatcher, "update-overdue-invoices")
    assert run.status == RunStatus.FAILED.value
    assert "no handler" in run.error


def test_slow_handler_times_out(db, synced, session_factory, dispatcher, monkeypatch):
    release = threading.Event()

    def slow(ctx):
        release.wait(5)
        return {"late": True}

    task = db.get(ScheduledTask, synced["cleanup-sessions"])
    task.timeout = 1  # ms; the runner waits at least one second
    db.commit()

    monkeypatch.setattr(task_runner, "get_handler", lambda function_id: slow)
    try:
        run = _invoke(session_factory, dispatcher, "cleanup-sessions")
    finally:
        release.set()

    assert run.status == RunStatus.TIMED_OUT.value
    assert "timed out" in run.error
    assert run.result is None


def test_abandoned_handler_does_not_hold_up_later_runs(db, synced, session_factory, dispatcher, monkeypatch):
    release = threading.Event()

    def stuck(ctx):
        release.wait(10)
        return {"late": True}

    task = db.get(ScheduledTask, synced["cleanup-sessions"])
    task.timeout = 1
    db.commit()

    real_get_handler = task_runner.get_handler
    handlers = iter([stuck] * 5)
    monkeypatch.setattr(task_runner, "get_handler", lambda function_id: next(handlers))

    stuck_runs = []
    try:
        # more abandoned handlers than any fixed worker pool would hold
        for _ in range(5):
            stuck_runs.append(_invoke(session_factory, dispatcher, "cleanup-sessions"))

        db.add(UserSession(user_id="u1", session_token="stale", expires=utcnow() - timedelta(hours=1)))
        db.commit()
        monkeypatch.setattr(task_runner, "get_handler", real_get_handler)

        run = _invoke(session_factory, dispatcher, "cleanup-sessions")
        assert run.status == RunStatus.SUCCEEDED.value
        assert run.result == {"deleted": 1}
    finally:
        release.set()

    assert all(r.status == RunStatus.TIMED_OUT.value for r in stuck_runs)
    db.expire_all()
    for r in stuck_runs:
        assert task_execution.get_run(db, r.id).result is None


def test_disabled_task_is_blocked_before_recording(db, synced, session_factory, dispatcher):
    task_query.set_task_enabled(db, synced["cleanup-sessions"], False)
    with pytest.raises(TaskDisabledError):
        _invoke(session_factory, dispatcher, "cleanup-sessions")
    assert _run_count(db) == 0


def test_unknown_function_id(synced, session_factory, dispatcher):
    with pytest.raises(NotFoundError):
        _invoke(session_factory, dispatcher, "does-not-exist")
