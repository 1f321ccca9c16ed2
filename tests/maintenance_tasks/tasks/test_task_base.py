"""Tests for maintenance_tasks.tasks.base — Task contract, build_task and the registry."""
from unittest.mock import patch

import pytest

from maintenance_tasks.errors import TaskNotFoundError, ValidationError
from maintenance_tasks.tasks.base import Task, TaskRegistry, build_task, load_task_modules, task_params
from maintenance_tasks.tasks.params import Attribute


class LimitTask(Task):
    limit = Attribute('integer', default=10, presence=True)

    def collection(self):
        return list(range(self.limit))

    def process(self, item):
        pass


class DuckTask:
    """Not a Task subclass; only has the two required capabilities."""

    def __init__(self, region='eu'):
        self.region = region

    def collection(self):
        return []

    def process(self, item):
        pass


# ── Task ─────────────────────────────────────────────────────────────────────

class TestTask:

    def test_default_name_is_dotted_path(self):
        assert LimitTask.name == f'{__name__}.LimitTask'

    def test_explicit_name_kept(self):
        class Named(Task):
            name = 'Maintenance::Named'
        assert Named.name == 'Maintenance::Named'

    def test_count_defaults_to_none(self):
        assert LimitTask().count() is None

    def test_base_contract_not_implemented(self):
        with pytest.raises(NotImplementedError):
            Task().collection()
        with pytest.raises(NotImplementedError):
            Task().process(1)

    def test_unknown_param_reported(self):
        assert LimitTask(bogus=1).validate() == {'bogus': ['is not a known parameter']}

    def test_to_params(self):
        assert LimitTask(limit='5').to_params() == {'limit': 5}

    def test_attributes_inherited(self):
        class Child(LimitTask):
            extra = Attribute('boolean')
        assert list(Child.attributes()) == ['limit', 'extra']

    def test_throttle_conditions_are_per_class(self):
        class First(LimitTask):
            pass

        class Second(LimitTask):
            pass

        First.throttle_on(lambda: True, backoff=5)
        assert len(First.throttle_conditions) == 1
        assert First.throttle_conditions[0][1] == 5
        assert Second.throttle_conditions == []
        assert LimitTask.throttle_conditions == []


class TestBuildTask:

    def test_builds_and_validates(self):
        task = build_task(LimitTask, {'limit': '3'})
        assert task.limit == 3

    def test_invalid_params_raise(self):
        with pytest.raises(ValidationError) as exc:
            build_task(LimitTask, {'limit': 'many'})
        assert exc.value.errors == {'limit': ['is not a valid integer']}

    def test_validation_can_be_skipped(self):
        task = build_task(LimitTask, {'limit': 'many'}, validate=False)
        assert task.limit == 'many'

    def test_duck_typed_task(self):
        task = build_task(DuckTask, {'region': 'us'})
        assert task.region == 'us'
        assert task_params(task, {'region': 'us'}) == {'region': 'us'}

    def test_duck_typed_task_bad_kwargs(self):
        with pytest.raises(ValidationError) as exc:
            build_task(DuckTask, {'zone': 'a'})
        assert 'params' in exc.value.errors

    def test_duck_typed_task_validate_hook(self):
        class Checked(DuckTask):
            def validate(self):
                return {} if self.region in ('eu', 'us') else {'region': ['is not supported']}

        assert build_task(Checked, {'region': 'us'}).region == 'us'
        with pytest.raises(ValidationError):
            build_task(Checked, {'region': 'mars'})


# ── Registry ─────────────────────────────────────────────────────────────────

class TestTaskRegistry:

    def test_register_and_get(self):
        registry = TaskRegistry()
        registry.register(LimitTask)
        assert registry.get(LimitTask.name) is LimitTask
        assert LimitTask.name in registry
        assert len(registry) == 1

    def test_decorator_with_name(self):
        registry = TaskRegistry()

        @registry.register(name='Maintenance::Renamed')
        class Renamed(LimitTask):
            pass

        assert registry.get('Maintenance::Renamed') is Renamed
        assert Renamed.name == 'Maintenance::Renamed'

    def test_duck_typed_registration(self):
        registry = TaskRegistry()
        registry.register(DuckTask)
        assert registry.names() == [f'{__name__}.DuckTask']

    def test_missing_process_rejected(self):
        class Incomplete(Task):
            def collection(self):
                return []

        with pytest.raises(TypeError, match='process'):
            TaskRegistry().register(Incomplete)

    def test_unknown_name(self):
        with pytest.raises(TaskNotFoundError) as exc:
            TaskRegistry().get('Maintenance::DoesNotExist')
        assert str(exc.value) == "Task 'Maintenance::DoesNotExist' not found"

    def test_unregister(self):
        registry = TaskRegistry()
        registry.register(LimitTask)
        registry.unregister(LimitTask.name)
        assert LimitTask.name not in registry

    def test_names_sorted(self):
        class Later(LimitTask):
            name = 'b'

        class Earlier(LimitTask):
            name = 'a'

        registry = TaskRegistry()
        registry.register(Later)
        registry.register(Earlier)
        assert registry.names() == ['a', 'b']


class TestLoadTaskModules:

    def test_imports_each_module(self):
        with patch('maintenance_tasks.tasks.base.importlib.import_module') as mock_import:
            load_task_modules(['app_tasks.backfill', 'app_tasks.cleanup'])
        assert [c.args[0] for c in mock_import.call_args_list] == ['app_tasks.backfill', 'app_tasks.cleanup']

    def test_defaults_to_configured_modules(self):
        with patch('maintenance_tasks.tasks.base.TASK_MODULES', ['configured.tasks']), \
                patch('maintenance_tasks.tasks.base.importlib.import_module') as mock_import:
            load_task_modules()
        mock_import.assert_called_once_with('configured.tasks')
