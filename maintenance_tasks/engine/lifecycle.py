"""
Run lifecycle — legal status transitions and compare-and-set writes.

Every status-changing write is a single conditional UPDATE:

    UPDATE runs SET ... WHERE id = :id AND status IN (:expected) [AND lock_version = :v]

Zero affected rows means another actor got there first. Worker invocations
treat that as "not mine any more" and stop quietly; operator requests re-read
and retry a bounded number of times before giving up.
"""
import logging
from typing import Iterable, Optional, Tuple

from sqlalchemy import select, update

from maintenance_tasks.errors import InvalidTransitionError, RunNotFoundError
from maintenance_tasks.models.run import Run

logger = logging.getLogger('engine.lifecycle')

TRANSITIONS = {
    'enqueued': {'running', 'pausing', 'cancelling', 'errored'},
    'running': {'running', 'succeeded', 'pausing', 'cancelling', 'interrupted', 'errored'},
    'pausing': {'paused', 'cancelling', 'succeeded', 'errored'},
    'cancelling': {'cancelled', 'succeeded', 'errored'},
    'paused': {'enqueued', 'cancelled'},
    'interrupted': {'running', 'pausing', 'cancelling', 'errored'},
}

# Statuses in which a claimed worker still owns the run and may write progress
OWNED_STATUSES = ('running', 'pausing', 'cancelling')

_OPERATOR_ATTEMPTS = 3


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, ())


def read_state(session, run_id) -> Optional[Tuple[str, int]]:
    """Fresh (status, lock_version) straight from the table, bypassing the identity map."""
    row = session.execute(
        select(Run.status, Run.lock_version).where(Run.id == run_id)
    ).one_or_none()
    return (row.status, row.lock_version) if row else None


def compare_and_set(
    session,
    run_id,
    expected: Iterable[str],
    to_status: str = None,
    lock_version: int = None,
    bump: bool = False,
    **values,
) -> bool:
    """
    Apply `values` (and optionally a status change) only if the run is still in
    one of the `expected` statuses and, when given, at `lock_version`.

    Commits and returns True when exactly one row changed.
    """
    expected = [expected] if isinstance(expected, str) else list(expected)
    if to_status is not None:
        illegal = [s for s in expected if not can_transition(s, to_status)]
        if illegal:
            raise ValueError(f"Illegal transition {illegal} -> '{to_status}'")
        values['status'] = to_status

    stmt = update(Run).where(Run.id == run_id, Run.status.in_(expected))
    if lock_version is not None:
        stmt = stmt.where(Run.lock_version == lock_version)
    if bump:
        values['lock_version'] = Run.lock_version + 1

    result = session.execute(stmt.values(**values).execution_options(synchronize_session=False))
    session.commit()
    won = result.rowcount == 1
    if not won:
        logger.debug("CAS on run %s lost (expected %s, version %s)", run_id, expected, lock_version)
    return won


def set_job_id(session, run_id, job_id):
    """Record the latest scheduled job. Not status-guarded: the newest id is always right."""
    session.execute(
        update(Run).where(Run.id == run_id).values(job_id=job_id)
        .execution_options(synchronize_session=False)
    )
    session.commit()


def request_transition(session, run_id, to_status: str, allowed_from: Iterable[str] = None, **values) -> Run:
    """
    Operator-side transition (pause / cancel / resume).

    Raises RunNotFoundError or InvalidTransitionError. Never touches lock_version,
    so a worker mid-batch keeps ownership and observes the new status at its
    next batch boundary.
    """
    allowed = set(allowed_from) if allowed_from is not None else None
    for _ in range(_OPERATOR_ATTEMPTS):
        state = read_state(session, run_id)
        if state is None:
            raise RunNotFoundError(run_id)
        status = state[0]
        if not can_transition(status, to_status) or (allowed is not None and status not in allowed):
            raise InvalidTransitionError(run_id, status, to_status)
        if compare_and_set(session, run_id, status, to_status, **values):
            logger.info("Run %s: %s → %s", run_id, status, to_status)
            run = session.get(Run, run_id)
            session.refresh(run)
            return run
    state = read_state(session, run_id)
    raise InvalidTransitionError(run_id, state[0] if state else None, to_status)
