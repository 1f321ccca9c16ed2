"""
TaskData — what the operator surface knows about a task.

Wraps a task name rather than a task class, so tasks that were deleted from
the codebase but still have Runs can be looked up and inspected.
"""
import inspect
import logging
from typing import Any, Dict, List, Optional

from maintenance_tasks.errors import TaskNotFoundError
from maintenance_tasks.models.run import Run
from maintenance_tasks.tasks.base import Task, registry as default_registry

logger = logging.getLogger('services.task_data')

CATEGORY_ORDER = ['active', 'new', 'completed']

_UNSET = object()


class TaskData:
    def __init__(self, name: str, last_run=_UNSET, session=None, registry=None):
        self.name = name
        self._last_run = last_run
        self._session = session
        self._registry = registry if registry is not None else default_registry

    @classmethod
    def find(cls, name: str, session, registry=None) -> 'TaskData':
        """
        TaskData for a registered task, or for a deleted task that still has Runs.

        Raises TaskNotFoundError otherwise.
        """
        registry = registry if registry is not None else default_registry
        if name in registry:
            return cls(name, session=session, registry=registry)
        last_run = Run.latest_for(session, name)
        if last_run is None:
            raise TaskNotFoundError(name)
        return cls(name, last_run=last_run, session=session, registry=registry)

    @classmethod
    def available_tasks(cls, session, registry=None) -> List['TaskData']:
        """Registered tasks: active first, then never-run, then completed; alphabetical within each."""
        registry = registry if registry is not None else default_registry
        tasks = [cls(name, last_run=Run.latest_for(session, name), session=session, registry=registry)
                 for name in registry.names()]
        return sorted(tasks, key=lambda t: (CATEGORY_ORDER.index(t.category), t.name))

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def last_run(self) -> Optional[Run]:
        if self._last_run is _UNSET:
            self._last_run = Run.latest_for(self._session, self.name) if self._session is not None else None
        return self._last_run

    @property
    def previous_runs(self) -> List[Run]:
        """Every Run for the task except the latest, newest first."""
        run = self.last_run
        if run is None or self._session is None:
            return []
        return Run.history_for(self._session, self.name, exclude_id=run.id)

    @property
    def status(self) -> str:
        """Status of the latest Run, or 'new' when the task has never run."""
        run = self.last_run
        return run.status if run is not None else 'new'

    @property
    def deleted(self) -> bool:
        return self.name not in self._registry

    @property
    def task_class(self):
        return None if self.deleted else self._registry.get(self.name)

    @property
    def category(self) -> str:
        run = self.last_run
        if run is None:
            return 'new'
        return 'active' if run.active else 'completed'

    @property
    def code(self) -> Optional[str]:
        """Source of the task class, or None when deleted or unavailable."""
        task_cls = self.task_class
        if task_cls is None:
            return None
        try:
            return inspect.getsource(task_cls)
        except (OSError, TypeError):
            return None

    @property
    def parameters(self) -> List[Dict[str, Any]]:
        task_cls = self.task_class
        if not (isinstance(task_cls, type) and issubclass(task_cls, Task)):
            return []
        return [attr.describe() for attr in task_cls.attributes().values()]

    def to_dict(self, history: bool = True) -> Dict[str, Any]:
        """Serializable form. history=False leaves out previous_runs, for listings."""
        run = self.last_run
        data = {
            'name': self.name,
            'status': self.status,
            'category': self.category,
            'deleted': self.deleted,
            'parameters': self.parameters,
            'last_run': run.to_dict() if run is not None else None,
        }
        if history:
            data['previous_runs'] = [r.to_dict() for r in self.previous_runs]
        return data

    def __str__(self):
        return self.name
