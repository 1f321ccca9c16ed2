"""
RQ job entry point.

    rq worker --with-scheduler maintenance_tasks

Each job is one resume_or_run() invocation. While it runs, SIGTERM sets the
shutdown flag instead of killing the process, so the runner stops at the next
item, marks the run `interrupted` and re-enqueues it.
"""
import logging
import signal
import threading

from maintenance_tasks.database import SessionLocal
from maintenance_tasks.engine.runner import RunnerConfig, TaskRunner
from maintenance_tasks.services.scheduler import RQScheduler
from maintenance_tasks.tasks.base import registry, load_task_modules

logger = logging.getLogger('maintenance_tasks.jobs')

_shutdown = threading.Event()
_task_modules_loaded = False


def build_runner(scheduler=None, config: RunnerConfig = None, shutdown_requested=None) -> TaskRunner:
    """A TaskRunner wired to the configured database, RQ queue and task modules."""
    global _task_modules_loaded
    if not _task_modules_loaded:
        load_task_modules()
        _task_modules_loaded = True
    return TaskRunner(
        scheduler=scheduler or RQScheduler(),
        session_factory=SessionLocal,
        registry=registry,
        config=config,
        shutdown_requested=shutdown_requested,
    )


def _on_sigterm(signum, frame):
    logger.warning("SIGTERM received — interrupting the current run at the next item")
    _shutdown.set()


def perform_run(run_id):
    """Job function enqueued by RQScheduler."""
    _shutdown.clear()
    previous = None
    # signal handlers can only be installed from the main thread
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGTERM, _on_sigterm)
    try:
        runner = build_runner(shutdown_requested=_shutdown.is_set)
        return runner.resume_or_run(run_id)
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)
