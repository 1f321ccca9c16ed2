"""Shared test fixtures."""
import pytest
from unittest.mock import patch
from sqlalchemy import create_engine, Column, Date, Integer, Text
from sqlalchemy.orm import sessionmaker

from maintenance_tasks.database import Base
from maintenance_tasks.engine.runner import RunnerConfig, TaskRunner
from maintenance_tasks.models.run import Run
from maintenance_tasks.tasks.base import TaskRegistry


class Post(Base):
    """Test-only table used as a relational task collection."""
    __tablename__ = 'posts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, default='')
    content = Column(Text, default='')


class Event(Base):
    """Test-only table keyed by date, for relations ordered by non-JSON keys."""
    __tablename__ = 'events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(Date, nullable=False)


class FakeScheduler:
    """Records enqueues instead of talking to Redis."""

    def __init__(self):
        self.enqueued = []
        self._counter = 0

    def enqueue(self, run_id, delay=None):
        self._counter += 1
        self.enqueued.append((run_id, delay))
        return f'job-{self._counter}'


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def db_engine(tmp_path):
    """File-backed SQLite engine with schema created.

    A file (rather than :memory:) gives each session its own connection, the way
    separate worker processes would see the database.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={'check_same_thread': False})
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """SQLAlchemy session for arranging and asserting. Rolls back after each test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(session_factory):
    """Route all get_session() calls to the test database."""
    with patch('maintenance_tasks.database.get_session', side_effect=lambda: session_factory()):
        yield


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def task_registry():
    """Isolated registry so tests never leak task definitions into each other."""
    return TaskRegistry()


@pytest.fixture
def make_runner(scheduler, session_factory, task_registry):
    """Factory fixture — TaskRunner wired to the test DB, fake scheduler and registry.

    Defaults: batch_size=2, persist on every tick, no invocation budget.
    """
    def _make(shutdown_requested=None, **overrides):
        settings = dict(batch_size=2, ticker_interval=0, max_items=0, max_seconds=0)
        settings.update(overrides)
        return TaskRunner(
            scheduler=scheduler,
            session_factory=session_factory,
            registry=task_registry,
            config=RunnerConfig(**settings),
            shutdown_requested=shutdown_requested,
        )
    return _make


@pytest.fixture
def reload_run(session_factory):
    """Fresh copy of a Run straight from the database."""
    def _reload(run_id):
        session = session_factory()
        try:
            return session.get(Run, run_id)
        finally:
            session.close()
    return _reload


@pytest.fixture
def create_run(session_factory):
    """Insert a Run row directly, bypassing the runner."""
    def _create(**fields):
        defaults = dict(task_name='Maintenance::TestTask', status='enqueued', tick_count=0,
                        time_running=0.0, lock_version=0, params={})
        defaults.update(fields)
        session = session_factory()
        try:
            run = Run(**defaults)
            session.add(run)
            session.commit()
            return run.id
        finally:
            session.close()
    return _create


@pytest.fixture
def drain(scheduler):
    """Run every enqueued job (including continuations) until the queue is empty."""
    def _drain(runner, limit=100):
        outcomes = []
        while scheduler.enqueued:
            assert len(outcomes) < limit, 'runner kept re-enqueueing'
            run_id, _delay = scheduler.enqueued.pop(0)
            outcomes.append(runner.resume_or_run(run_id))
        return outcomes
    return _drain


@pytest.fixture
def app():
    """Flask app for route and CLI tests. Restores root logging afterwards."""
    import logging
    root = logging.getLogger()
    original_level, original_handlers = root.level, root.handlers[:]

    from maintenance_tasks import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app

    root.setLevel(original_level)
    root.handlers = original_handlers


@pytest.fixture
def client(app):
    return app.test_client()
