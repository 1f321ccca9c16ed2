"""
Run record — durable state for one execution attempt of a Task.

The row is the only channel between worker invocations: cursor, counters and
status cross process boundaries through here and nowhere else.
"""
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional

from sqlalchemy import Column, Integer, Float, Text, DateTime, JSON, Index, select, text
from sqlalchemy.sql import func

from maintenance_tasks.config import ACTIVE_STATUSES, COMPLETED_STATUSES, STUCK_RUN_TIMEOUT_SECONDS
from maintenance_tasks.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


_ACTIVE_SQL = 'status IN ({})'.format(', '.join(f"'{s}'" for s in ACTIVE_STATUSES))


class Run(Base):
    __tablename__ = 'runs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_name = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default='enqueued')
    cursor = Column(Text, nullable=True)
    tick_count = Column(Integer, nullable=False, default=0)
    tick_total = Column(Integer, nullable=True)
    error_class = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    backtrace = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    job_id = Column(Text, nullable=True)
    params = Column(JSON, default=dict)
    time_running = Column(Float, nullable=False, default=0.0)
    # Bumped by every worker-side write; operator requests leave it alone
    lock_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # Backstop for the one-active-run-per-task check done at start time.
        # Partial indexes only exist on SQLite and Postgres.
        Index(
            'uq_runs_active_task_name', 'task_name', unique=True,
            sqlite_where=text(_ACTIVE_SQL),
            postgresql_where=text(_ACTIVE_SQL),
        ).ddl_if(dialect=('sqlite', 'postgresql')),
        Index('ix_runs_task_name_created_at', 'task_name', 'created_at'),
    )

    # ── Derived state ────────────────────────────────────────────────────

    @property
    def active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def completed(self) -> bool:
        return self.status in COMPLETED_STATUSES

    @property
    def progress(self) -> Optional[float]:
        """Percentage complete, or None when the total is unknown."""
        if not self.tick_total:
            return None
        return round(min(self.tick_count or 0, self.tick_total) * 100.0 / self.tick_total, 2)

    def stuck(self, now: datetime = None, timeout: int = STUCK_RUN_TIMEOUT_SECONDS) -> bool:
        """A cancelling run nobody has touched for `timeout` seconds has lost its worker."""
        if self.status != 'cancelling' or self.updated_at is None:
            return False
        now = now or utcnow()
        return as_utc(self.updated_at) + timedelta(seconds=timeout) < now

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'task_name': self.task_name,
            'status': self.status,
            'cursor': self.cursor,
            'tick_count': self.tick_count or 0,
            'tick_total': self.tick_total,
            'progress': self.progress,
            'error_class': self.error_class,
            'error_message': self.error_message,
            'backtrace': self.backtrace,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'ended_at': self.ended_at.isoformat() if self.ended_at else None,
            'time_running': self.time_running or 0.0,
            'job_id': self.job_id,
            'params': self.params or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    # ── Queries ──────────────────────────────────────────────────────────

    @classmethod
    def active_for(cls, session, task_name: str) -> Optional['Run']:
        """The active Run for a task, if any."""
        stmt = select(cls).where(cls.task_name == task_name, cls.status.in_(ACTIVE_STATUSES))
        return session.scalars(stmt.limit(1)).first()

    @classmethod
    def latest_for(cls, session, task_name: str) -> Optional['Run']:
        stmt = select(cls).where(cls.task_name == task_name).order_by(cls.id.desc())
        return session.scalars(stmt.limit(1)).first()

    @classmethod
    def history_for(cls, session, task_name: str, exclude_id: int = None) -> List['Run']:
        """All Runs for a task, newest first."""
        stmt = select(cls).where(cls.task_name == task_name)
        if exclude_id is not None:
            stmt = stmt.where(cls.id != exclude_id)
        return list(session.scalars(stmt.order_by(cls.id.desc())))

    @classmethod
    def task_names(cls, session):
        """Distinct task names that have at least one Run."""
        return list(session.scalars(select(cls.task_name).distinct()))

    def __repr__(self):
        return f'<Run id={self.id} task={self.task_name!r} status={self.status}>'
