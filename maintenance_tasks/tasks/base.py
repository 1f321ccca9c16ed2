"""
Task definition contract and the name-keyed task registry.

A task is anything that exposes collection() and process(item); count() is
optional. Subclassing Task adds typed parameters, lifecycle callbacks and
throttling, but the registry only checks capabilities:

    @register
    class UpdatePostsTask(Task):
        def collection(self):
            return select(Post).where(Post.content.is_(None))

        def process(self, post):
            post.content = 'backfilled'

The runner looks tasks up by string name at start and at every resume, so a
deploy that removes a task surfaces as TaskNotFoundError on its old runs.
"""
import importlib
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from maintenance_tasks.config import TASK_MODULES
from maintenance_tasks.errors import TaskNotFoundError, ValidationError
from maintenance_tasks.tasks.params import Attribute, serialize

logger = logging.getLogger('tasks.base')

CALLBACKS = (
    'after_start',
    'after_pause',
    'after_interrupt',
    'after_cancel',
    'after_complete',
    'after_error',
)


class Task:
    """
    Convenience base class for task definitions.

    Subclasses override collection() and process(item), and optionally count().
    The runner sets `session` to the SQLAlchemy session it iterates with before
    calling collection(), so process() can add or modify rows through it.
    """
    name: str = ''
    throttle_conditions: List[Tuple[Callable, float]] = []

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if not cls.__dict__.get('name'):
            cls.name = f'{cls.__module__}.{cls.__qualname__}'
        # Each subclass gets its own throttle list
        cls.throttle_conditions = list(cls.throttle_conditions)

    def __init__(self, **params):
        self.__dict__.setdefault('_cast_errors', {})
        self.session = None
        attributes = self.attributes()
        for key, value in params.items():
            if key in attributes:
                setattr(self, key, value)
            else:
                self._cast_errors[key] = ['is not a known parameter']

    # ── Contract ─────────────────────────────────────────────────────────

    def collection(self):
        raise NotImplementedError

    def process(self, item):
        raise NotImplementedError

    def count(self) -> Optional[int]:
        """Estimated number of items. None falls back to the collection's length."""
        return None

    # ── Lifecycle callbacks (no-ops by default) ──────────────────────────

    def after_start(self):
        pass

    def after_pause(self):
        pass

    def after_interrupt(self):
        pass

    def after_cancel(self):
        pass

    def after_complete(self):
        pass

    def after_error(self, error):
        pass

    # ── Throttling ───────────────────────────────────────────────────────

    @classmethod
    def throttle_on(cls, predicate: Callable, backoff: float = 30.0):
        """Stop at the next batch boundary and retry after `backoff` seconds while predicate holds."""
        cls.throttle_conditions.append((predicate, backoff))

    # ── Parameters ───────────────────────────────────────────────────────

    @classmethod
    def attributes(cls) -> Dict[str, Attribute]:
        attrs = {}
        for klass in reversed(cls.__mro__):
            for key, value in vars(klass).items():
                if isinstance(value, Attribute):
                    attrs[key] = value
        return attrs

    @classmethod
    def choices(cls, attribute: str) -> Optional[List[Any]]:
        """Finite option list for a parameter, or None when it has no fixed set."""
        attr = cls.attributes().get(attribute)
        return attr.choices() if attr else None

    def validate(self) -> Dict[str, List[str]]:
        """Per-field error messages. Raises InclusionUndefinedError for unresolvable sets."""
        errors = {key: list(msgs) for key, msgs in self._cast_errors.items()}
        for key, attr in self.attributes().items():
            if key in errors:
                continue
            messages = attr.validate(self)
            if messages:
                errors[key] = messages
        return errors

    def to_params(self) -> Dict[str, Any]:
        return {key: serialize(getattr(self, key)) for key in self.attributes()}


def build_task(task_cls, params: Dict[str, Any] = None, validate: bool = True):
    """
    Instantiate a task, validating its parameters unless told otherwise.

    Runs are validated once at start; resumes rebuild the task from the frozen
    params without re-validating, since computed inclusion sets may have moved.
    """
    params = params or {}
    if isinstance(task_cls, type) and issubclass(task_cls, Task):
        task = task_cls(**params)
        if validate:
            errors = task.validate()
            if errors:
                raise ValidationError(errors)
        return task

    try:
        task = task_cls(**params)
    except TypeError as e:
        raise ValidationError({'params': [str(e)]}) from e
    check = getattr(task, 'validate', None)
    if validate and callable(check):
        errors = check()
        if errors:
            raise ValidationError(errors)
    return task


def task_params(task, raw: Dict[str, Any] = None) -> Dict[str, Any]:
    """Serialized parameters to freeze on the Run."""
    to_params = getattr(task, 'to_params', None)
    if callable(to_params):
        return to_params()
    return dict(raw or {})


# ── Registry ─────────────────────────────────────────────────────────────────

class TaskRegistry:
    """Maps task names to task definitions."""

    REQUIRED = ('collection', 'process')

    def __init__(self):
        self._tasks: Dict[str, Any] = {}

    def register(self, task_cls=None, *, name: str = None):
        """Register a task class. Usable as @register, @register(name=...) or register(cls)."""
        def _register(cls):
            for capability in self.REQUIRED:
                method = getattr(cls, capability, None)
                if not callable(method) or method is getattr(Task, capability):
                    raise TypeError(f'{cls.__qualname__} must implement {capability}()')
            task_name = name or getattr(cls, 'name', '') or f'{cls.__module__}.{cls.__qualname__}'
            if name:
                cls.name = name
            if task_name in self._tasks and self._tasks[task_name] is not cls:
                logger.warning("Task '%s' re-registered — replacing %s", task_name, self._tasks[task_name])
            self._tasks[task_name] = cls
            return cls

        if task_cls is not None:
            return _register(task_cls)
        return _register

    def unregister(self, name: str):
        self._tasks.pop(name, None)

    def get(self, name: str):
        task_cls = self._tasks.get(name)
        if task_cls is None:
            raise TaskNotFoundError(name)
        return task_cls

    def names(self) -> List[str]:
        return sorted(self._tasks)

    def __contains__(self, name):
        return name in self._tasks

    def __len__(self):
        return len(self._tasks)


registry = TaskRegistry()
register = registry.register


def load_task_modules(modules: List[str] = None):
    """Import the configured task modules so their @register decorators run."""
    for module in (TASK_MODULES if modules is None else modules):
        importlib.import_module(module)
        logger.debug("Loaded task module %s", module)
