"""
Task runner — the execution core.

start() validates parameters, creates a Run in `enqueued` and hands it to the
scheduler bridge. resume_or_run() is the unit of work the bridge calls back:

    claim the run (CAS → running)
    for each batch from the enumerator, starting at the run's cursor:
        process items one by one, committing each; fail fast on the first error
        tick the ticker, which periodically persists cursor + counters
        stop early when the invocation budget is spent or the host is shutting down
        at the batch boundary, honour pausing / cancelling / throttling
    collection exhausted → succeeded

All Run writes go through lifecycle.compare_and_set() guarded on this
invocation's lock_version, so a second worker on the same run, or an operator
force-cancelling a stuck run, makes this invocation stop without writing.
"""
import logging
import time
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError

from maintenance_tasks.config import (
    BATCH_SIZE, MAX_ITEMS_PER_JOB, MAX_JOB_SECONDS,
    TICKER_INTERVAL_SECONDS, STUCK_RUN_TIMEOUT_SECONDS, RESUMABLE_STATUSES,
)
from maintenance_tasks.database import SessionLocal
from maintenance_tasks.engine import cursor as cursor_codec
from maintenance_tasks.engine import lifecycle
from maintenance_tasks.engine.enumerator import CollectionEnumerator
from maintenance_tasks.engine.lifecycle import OWNED_STATUSES
from maintenance_tasks.engine.ticker import Ticker
from maintenance_tasks.errors import (
    AlreadyActiveError, ProcessingError, RunNotFoundError, TaskNotFoundError, ValidationError,
)
from maintenance_tasks.models.run import Run, utcnow
from maintenance_tasks.tasks.base import build_task, task_params, registry as default_registry
from maintenance_tasks.tasks.params import call_with_optional_task

logger = logging.getLogger('engine.runner')

_CONTINUE = object()
_CHECKPOINT_ATTEMPTS = 3


@dataclass
class RunnerConfig:
    """Per-runner knobs. Passed in explicitly; nothing here is global."""
    batch_size: int = BATCH_SIZE
    max_items: int = MAX_ITEMS_PER_JOB          # per invocation, 0 = unlimited
    max_seconds: float = MAX_JOB_SECONDS        # per invocation, 0 = unlimited
    ticker_interval: float = TICKER_INTERVAL_SECONDS
    stuck_timeout: int = STUCK_RUN_TIMEOUT_SECONDS
    process_delay: float = 0.0                  # sleep after each item; only for reproducing slow tasks in tests
    clock: Callable[[], float] = time.monotonic


@dataclass
class _Invocation:
    """In-memory state of one resume_or_run() call. Never outlives it."""
    session: Any
    run_id: int
    task: Any
    version: int
    position: Any
    tick_count: int
    time_running: float
    started: float
    raw_cursor: Optional[str] = None
    processed: int = 0
    ticker: Optional[Ticker] = None


def error_class_name(error: BaseException) -> str:
    cls = type(error)
    if cls.__module__ == 'builtins':
        return cls.__qualname__
    return f'{cls.__module__}.{cls.__qualname__}'


def error_values(error: BaseException) -> dict:
    return {
        'error_class': error_class_name(error),
        'error_message': str(error),
        'backtrace': [frame.rstrip('\n') for frame in traceback.format_tb(error.__traceback__)],
    }


class TaskRunner:
    """
    Drives task Runs.

    Args:
        scheduler:          SchedulerBridge used to start and continue runs.
        session_factory:    sessionmaker for the database holding the runs table
                            (and, for relational collections, the task's rows).
        registry:           TaskRegistry to resolve task names.
        config:             RunnerConfig.
        shutdown_requested: zero-arg callable; True once the host wants to stop.
    """

    def __init__(self, scheduler, session_factory=None, registry=None, config: RunnerConfig = None,
                 shutdown_requested: Callable[[], bool] = None):
        self.scheduler = scheduler
        self.session_factory = session_factory or SessionLocal
        self.registry = registry if registry is not None else default_registry
        self.config = config or RunnerConfig()
        self.shutdown_requested = shutdown_requested or (lambda: False)

    def _open_session(self):
        # Batch items must stay loaded across the per-item commits
        return self.session_factory(expire_on_commit=False)

    # ── Operator API ─────────────────────────────────────────────────────

    def start(self, task_name: str, params: dict = None) -> Run:
        """
        Validate params, create an `enqueued` Run and schedule it.

        Raises TaskNotFoundError, ValidationError or AlreadyActiveError.
        """
        task_cls = self.registry.get(task_name)
        task = build_task(task_cls, params)

        session = self._open_session()
        try:
            existing = Run.active_for(session, task_name)
            if existing is not None:
                raise AlreadyActiveError(task_name, existing.id)

            run = Run(
                task_name=task_name,
                status='enqueued',
                params=task_params(task, params),
                tick_count=0,
                time_running=0.0,
                lock_version=0,
            )
            session.add(run)
            try:
                session.commit()
            except IntegrityError:
                # Lost the race to a concurrent start(); the partial unique index caught it
                session.rollback()
                raise AlreadyActiveError(task_name)

            logger.info("Run %s created for task '%s'", run.id, task_name, extra={'run_id': run.id})
            self._enqueue(session, run.id)
            session.refresh(run)
            return run
        finally:
            session.close()

    def pause(self, run_id) -> Run:
        """Ask a run to pause at its next batch boundary."""
        session = self._open_session()
        try:
            return lifecycle.request_transition(
                session, run_id, 'pausing', allowed_from=('enqueued', 'running', 'interrupted'),
            )
        finally:
            session.close()

    def cancel(self, run_id) -> Run:
        """
        Ask a run to cancel at its next batch boundary.

        Paused and stuck runs have no worker left to observe the request, so
        they move straight to `cancelled`.
        """
        session = self._open_session()
        try:
            run = session.get(Run, run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if run.status == 'paused' or run.stuck(timeout=self.config.stuck_timeout):
                return lifecycle.request_transition(
                    session, run_id, 'cancelled', allowed_from=('paused', 'cancelling'), ended_at=utcnow(),
                )
            return lifecycle.request_transition(
                session, run_id, 'cancelling', allowed_from=('enqueued', 'running', 'pausing', 'interrupted'),
            )
        finally:
            session.close()

    def resume(self, run_id) -> Run:
        """Re-enqueue a paused run; it continues from its stored cursor."""
        session = self._open_session()
        try:
            run = lifecycle.request_transition(session, run_id, 'enqueued', allowed_from=('paused',))
            self._enqueue(session, run_id)
            session.refresh(run)
            return run
        finally:
            session.close()

    # ── Worker entry point ───────────────────────────────────────────────

    def resume_or_run(self, run_id) -> Optional[str]:
        """
        Advance a run as far as this invocation's budget allows.

        Returns the status this invocation left the run in, or None when it did
        nothing (run missing, not resumable, or claimed by someone else).
        """
        session = self._open_session()
        try:
            return self._resume_or_run(session, run_id)
        finally:
            session.close()

    def _resume_or_run(self, session, run_id) -> Optional[str]:
        run = session.get(Run, run_id)
        if run is None:
            logger.warning("Run %s not found — skipping", run_id)
            return None

        status = run.status
        if status not in RESUMABLE_STATUSES and status not in ('pausing', 'cancelling'):
            logger.info("Run %s is %s — nothing to do", run_id, status, extra={'run_id': run_id})
            return None

        task, task_error = self._load_task(run)

        if status in ('pausing', 'cancelling'):
            return self._honour_request(session, run, task)

        if task_error is not None:
            values = dict(error_values(task_error), ended_at=utcnow())
            if lifecycle.compare_and_set(session, run_id, status, 'errored',
                                         lock_version=run.lock_version, bump=True, **values):
                logger.error("Run %s errored before starting: %s", run_id, task_error, extra={'run_id': run_id})
                return 'errored'
            return None

        first_start = run.started_at is None
        if not lifecycle.compare_and_set(session, run_id, status, 'running', lock_version=run.lock_version,
                                         bump=True, started_at=run.started_at or utcnow()):
            logger.info("Run %s was claimed by another worker — exiting", run_id, extra={'run_id': run_id})
            return None

        inv = _Invocation(
            session=session,
            run_id=run_id,
            task=task,
            version=run.lock_version + 1,
            position=None,
            raw_cursor=run.cursor,
            tick_count=run.tick_count or 0,
            time_running=run.time_running or 0.0,
            started=self.config.clock(),
        )
        logger.info("Run %s (%s) running from tick %d", run_id, run.task_name, inv.tick_count,
                    extra={'run_id': run_id})

        task.session = session
        enumerator = CollectionEnumerator(self.config.batch_size, session=session)
        try:
            inv.position = cursor_codec.decode(run.cursor)
            collection = task.collection()
            if run.tick_total is None:
                total = self._count(task, enumerator, collection)
                if total is not None and not self._write(inv, tick_total=total):
                    return None
            batches = enumerator.batches(collection, inv.position)
        except Exception as e:
            return self._fail(inv, e)

        if first_start:
            self._callback(task, 'after_start')

        inv.ticker = Ticker(self.config.ticker_interval, lambda pending: self._persist(inv),
                            clock=self.config.clock)
        return self._iterate(inv, batches)

    def _iterate(self, inv: _Invocation, batches) -> Optional[str]:
        while True:
            try:
                batch = next(batches, None)
            except Exception as e:
                return self._fail(inv, e)
            if batch is None:
                return self._complete(inv)

            for item, item_position in batch:
                try:
                    inv.task.process(item)
                    inv.session.commit()
                except Exception as e:
                    inv.session.rollback()
                    return self._fail(inv, ProcessingError(e, item))

                inv.position = item_position
                inv.tick_count += 1
                inv.processed += 1
                if self.config.process_delay:
                    time.sleep(self.config.process_delay)

                try:
                    owned = inv.ticker.tick()
                except Exception as e:
                    return self._fail(inv, e)
                if not owned:
                    logger.info("Run %s no longer owned by this worker — exiting", inv.run_id)
                    return None
                if self.shutdown_requested() or self._budget_exhausted(inv):
                    return self._checkpoint(inv, yielding=True)

            outcome = self._checkpoint(inv, yielding=False)
            if outcome is not _CONTINUE:
                return outcome

    # ── Stopping points ──────────────────────────────────────────────────

    def _checkpoint(self, inv: _Invocation, yielding: bool):
        """
        Batch-boundary (or budget) check. Returns _CONTINUE to keep going, or the
        status the run was left in, or None when ownership was lost.
        """
        backoff = None
        if not yielding:
            try:
                backoff = self._throttle_backoff(inv.task)
            except Exception as e:
                return self._fail(inv, e)

        for _ in range(_CHECKPOINT_ATTEMPTS):
            state = lifecycle.read_state(inv.session, inv.run_id)
            if state is None or state[1] != inv.version or state[0] not in OWNED_STATUSES:
                logger.info("Run %s no longer owned by this worker — exiting", inv.run_id)
                return None
            status = state[0]

            try:
                values = self._progress_values(inv)
            except Exception as e:
                return self._fail(inv, e)
            to_status, callback, reenqueue, delay = None, None, False, None
            if status == 'pausing':
                to_status, callback = 'paused', 'after_pause'
            elif status == 'cancelling':
                to_status, callback = 'cancelled', 'after_cancel'
                values['ended_at'] = utcnow()
            elif self.shutdown_requested():
                to_status, callback, reenqueue = 'interrupted', 'after_interrupt', True
            elif backoff is not None:
                reenqueue, delay = True, backoff
            elif yielding:
                reenqueue = True
            else:
                return _CONTINUE

            if lifecycle.compare_and_set(inv.session, inv.run_id, status, to_status,
                                         lock_version=inv.version, bump=True, **values):
                inv.version += 1
                break
        else:
            return None

        final = to_status or status
        logger.info("Run %s → %s after %d items (%d total)", inv.run_id, final, inv.processed,
                    inv.tick_count, extra={'run_id': inv.run_id})
        if callback:
            self._callback(inv.task, callback)
        if reenqueue:
            self._enqueue(inv.session, inv.run_id, delay=delay)
        return final

    def _complete(self, inv: _Invocation) -> Optional[str]:
        try:
            values = dict(self._progress_values(inv), ended_at=utcnow())
        except Exception as e:
            return self._fail(inv, e)
        if not lifecycle.compare_and_set(inv.session, inv.run_id, OWNED_STATUSES, 'succeeded',
                                         lock_version=inv.version, bump=True, **values):
            return None
        inv.version += 1
        logger.info("Run %s succeeded — %d items", inv.run_id, inv.tick_count, extra={'run_id': inv.run_id})
        self._callback(inv.task, 'after_complete')
        return 'succeeded'

    def _fail(self, inv: _Invocation, error: Exception) -> Optional[str]:
        source = error.original if isinstance(error, ProcessingError) else error
        values = dict(self._progress_values(inv, keep_stored=True), ended_at=utcnow(), **error_values(source))
        if not lifecycle.compare_and_set(inv.session, inv.run_id, OWNED_STATUSES, 'errored',
                                         lock_version=inv.version, bump=True, **values):
            return None
        inv.version += 1
        logger.error("Run %s errored after %d items: %s: %s", inv.run_id, inv.tick_count,
                     values['error_class'], values['error_message'], extra={'run_id': inv.run_id})
        self._callback(inv.task, 'after_error', source)
        return 'errored'

    def _honour_request(self, session, run: Run, task) -> Optional[str]:
        """A pause/cancel request was waiting when this worker picked the run up."""
        to_status = 'paused' if run.status == 'pausing' else 'cancelled'
        values = {'ended_at': utcnow()} if to_status == 'cancelled' else {}
        if not lifecycle.compare_and_set(session, run.id, run.status, to_status,
                                         lock_version=run.lock_version, bump=True, **values):
            return None
        logger.info("Run %s → %s at pickup", run.id, to_status, extra={'run_id': run.id})
        self._callback(task, 'after_pause' if to_status == 'paused' else 'after_cancel')
        return to_status

    # ── Helpers ──────────────────────────────────────────────────────────

    def _load_task(self, run: Run):
        try:
            task_cls = self.registry.get(run.task_name)
            return build_task(task_cls, run.params or {}, validate=False), None
        except (TaskNotFoundError, ValidationError) as e:
            return None, e

    @staticmethod
    def _count(task, enumerator, collection) -> Optional[int]:
        count = getattr(task, 'count', None)
        total = count() if callable(count) else None
        if total is None:
            total = enumerator.count(collection)
        return total

    def _budget_exhausted(self, inv: _Invocation) -> bool:
        if self.config.max_items and inv.processed >= self.config.max_items:
            return True
        if self.config.max_seconds and self.config.clock() - inv.started >= self.config.max_seconds:
            return True
        return False

    @staticmethod
    def _throttle_backoff(task) -> Optional[float]:
        for predicate, backoff in getattr(task, 'throttle_conditions', ()):
            if call_with_optional_task(predicate, task):
                return backoff
        return None

    def _progress_values(self, inv: _Invocation, keep_stored: bool = False) -> dict:
        """
        Cursor and counters to write. With keep_stored, a position that will not
        encode falls back to the stored cursor instead of raising.
        """
        # Until a position decodes, keep whatever was stored (even if corrupt)
        cursor = inv.raw_cursor
        if inv.position is not None:
            try:
                cursor = cursor_codec.encode(inv.position)
            except (TypeError, ValueError):
                if not keep_stored:
                    raise
        return {
            'cursor': cursor,
            'tick_count': inv.tick_count,
            'time_running': round(inv.time_running + self.config.clock() - inv.started, 3),
        }

    def _write(self, inv: _Invocation, **values) -> bool:
        ok = lifecycle.compare_and_set(inv.session, inv.run_id, OWNED_STATUSES,
                                       lock_version=inv.version, bump=True, **values)
        if ok:
            inv.version += 1
        return ok

    def _persist(self, inv: _Invocation) -> bool:
        return self._write(inv, **self._progress_values(inv))

    def _enqueue(self, session, run_id, delay: float = None) -> str:
        try:
            job_id = self.scheduler.enqueue(run_id, delay=delay)
        except Exception as e:
            logger.error("Failed to enqueue run %s", run_id, exc_info=True)
            lifecycle.compare_and_set(session, run_id, ('enqueued', 'running', 'interrupted'), 'errored',
                                      ended_at=utcnow(), **error_values(e))
            raise
        lifecycle.set_job_id(session, run_id, job_id)
        return job_id

    @staticmethod
    def _callback(task, name: str, *args):
        fn = getattr(task, name, None) if task is not None else None
        if not callable(fn):
            return
        try:
            fn(*args)
        except Exception:
            logger.exception("Callback %s failed for task %s", name, getattr(task, 'name', task))
