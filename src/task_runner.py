from __future__ import annotations

import argparse
import logging
import traceback
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from src.core.config import get_settings
from src.core.dispatcher_client import JobDispatcher, get_dispatcher
from src.core.errors import NotFoundError, TaskDisabledError
from src.models.scheduled_task import RunStatus, ScheduledTask, TaskRun, TriggerSource
from src.services.task_execution import complete_run, find_by_dispatcher_run_id, start_run
from src.services.task_registry import find_by_function_id, sync_tasks_to_database
from src.tasks.registry import get_handler, list_definitions
from src.tasks.types import TaskContext, TaskHandler


logger = logging.getLogger("task-runner")


def _start_handler(handler: TaskHandler, ctx: TaskContext) -> Future:
    # one thread per invocation: the timeout clock starts with the handler, and
    # an abandoned handler never queues the next run behind it
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="task-handler")
    try:
        return pool.submit(handler, ctx)
    finally:
        pool.shutdown(wait=False)


def _trigger_source(task: ScheduledTask, event_name: str) -> TriggerSource:
    name = (event_name or "").strip()
    if name.endswith("/manual"):
        return TriggerSource.MANUAL
    if task.event_name and name == task.event_name:
        return TriggerSource.EVENT
    return TriggerSource.SCHEDULE


def _open_run(
    db: Session,
    task: ScheduledTask,
    *,
    event_name: str,
    event_id: Optional[str],
    event_data: Dict[str, Any],
    dispatcher_run_id: Optional[str],
) -> TaskRun:
    # manual triggers pre-create the run and pass its id through the event
    execution_id = event_data.get("executionId")
    if isinstance(execution_id, str) and execution_id:
        run = db.get(TaskRun, execution_id)
        if run and run.task_id == task.id and run.status == RunStatus.RUNNING.value:
            if dispatcher_run_id:
                run.dispatcher_run_id = dispatcher_run_id
            if event_id:
                run.dispatcher_event_id = event_id
            db.commit()
            db.refresh(run)
            return run

    # dispatcher retries re-deliver the same run id
    if dispatcher_run_id:
        run = find_by_dispatcher_run_id(db, dispatcher_run_id)
        if run and run.status == RunStatus.RUNNING.value:
            return run
        if run:
            # the earlier attempt is final; record the retry as its own run
            return start_run(
                db,
                task.id,
                triggered_by=TriggerSource.RETRY,
                triggered_by_user=run.triggered_by_user,
                dispatcher_event_id=event_id,
            )

    triggered_by = _trigger_source(task, event_name)
    user = event_data.get("triggeredBy")
    return start_run(
        db,
        task.id,
        triggered_by=triggered_by,
        triggered_by_user=user if isinstance(user, str) else None,
        dispatcher_run_id=dispatcher_run_id,
        dispatcher_event_id=event_id,
    )


def run_invocation(
    function_id: str,
    *,
    event_name: str = "",
    event_data: Optional[Dict[str, Any]] = None,
    event_id: Optional[str] = None,
    dispatcher_run_id: Optional[str] = None,
    session_factory: sessionmaker,
    dispatcher: JobDispatcher,
) -> TaskRun:
    """
    Run the registered handler for `function_id` and record the outcome.

    Raises NotFoundError for unsynced functions and TaskDisabledError for
    disabled ones; handler failures are recorded on the run, not raised.
    """
    event_data = dict(event_data or {})

    with session_factory() as db:
        task = find_by_function_id(db, function_id)
        if not task:
            raise NotFoundError(f"Task '{function_id}' is not registered")
        if not task.is_enabled:
            logger.warning("task is disabled, blocking execution function_id=%s", function_id)
            raise TaskDisabledError(f"Task '{function_id}' is currently disabled")

        run = _open_run(
            db,
            task,
            event_name=event_name,
            event_id=event_id,
            event_data=event_data,
            dispatcher_run_id=dispatcher_run_id,
        )
        run_id = run.id
        task_db_id = task.id
        timeout_seconds = max(1.0, (task.timeout or 300_000) / 1000.0)

    handler = get_handler(function_id)
    status = RunStatus.SUCCEEDED
    result: Optional[Dict[str, Any]] = None
    err: Optional[str] = None
    stack: Optional[str] = None

    if handler is None:
        status = RunStatus.FAILED
        err = f"no handler registered for '{function_id}'"
        logger.error("no handler registered function_id=%s run_id=%s", function_id, run_id)
    else:
        ctx = TaskContext(
            task_id=task_db_id,
            run_id=run_id,
            event_name=event_name,
            event_data=event_data,
            session_factory=session_factory,
            dispatcher=dispatcher,
            logger=logging.getLogger(f"task.{function_id}"),
        )
        future = _start_handler(handler, ctx)
        _, not_done = wait([future], timeout=timeout_seconds)
        if not_done:
            status = RunStatus.TIMED_OUT
            err = f"Task timed out after {timeout_seconds:g}s"
            if future.cancel():
                err = f"Task did not start within {timeout_seconds:g}s"
            logger.warning("task timed out function_id=%s run_id=%s", function_id, run_id)
        else:
            try:
                out = future.result()
                result = out if isinstance(out, dict) else {"output": out}
            except Exception as exc:
                status = RunStatus.FAILED
                err = str(exc) or exc.__class__.__name__
                stack = traceback.format_exc()
                logger.exception("task failed function_id=%s run_id=%s", function_id, run_id)

    with session_factory() as db:
        run = complete_run(db, run_id, status, result=result, error=err, stack_trace=stack)
        db.expunge(run)
    return run


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="bizadmin-api task runner")
    parser.add_argument("--sync", action="store_true", help="Sync the task registry into the database")
    parser.add_argument("--run", type=str, default="", help="Run one task in-process by its function id")
    parser.add_argument("--user", type=str, default="", help="User id recorded on a --run execution")
    parser.add_argument("--log-level", type=str, default="")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not args.sync and not args.run:
        parser.error("nothing to do: pass --sync and/or --run TASK_ID")

    from src.core.db import SessionLocal

    if args.sync:
        with SessionLocal() as db:
            res = sync_tasks_to_database(db, list_definitions(), code_version=settings.CODE_VERSION)
        logger.info("sync synced=%s created=%s updated=%s", res.synced, res.created, res.updated)

    if args.run:
        run = run_invocation(
            args.run,
            event_name=f"{args.run}/manual",
            event_data={"triggeredBy": args.user or None},
            event_id=f"cli-{uuid.uuid4().hex}",
            session_factory=SessionLocal,
            dispatcher=get_dispatcher(),
        )
        logger.info("run finished run_id=%s status=%s error=%s", run.id, run.status, run.error)
        return 0 if run.status == RunStatus.SUCCEEDED.value else 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
