"""
CLI commands, mounted on the Flask CLI:

    flask --app wsgi maintenance-tasks list
    flask --app wsgi maintenance-tasks perform Maintenance.UpdatePostsTask --arguments post_ids:1,2,3
"""
import click
from flask.cli import AppGroup

from maintenance_tasks.errors import MaintenanceTasksError, ValidationError

cli = AppGroup('maintenance-tasks', help='Start and inspect maintenance task runs.')


def parse_arguments(pairs):
    """['key:value', ...] → {'key': 'value'}; values may contain ':'."""
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition(':')
        if not sep or not key:
            raise click.BadParameter(f"expected key:value, got '{pair}'", param_hint='--arguments')
        params[key] = value
    return params


@cli.command('perform')
@click.argument('name')
@click.option('--arguments', '-a', multiple=True, help='Task parameter as key:value. Repeatable.')
def perform(name, arguments):
    """Start a run of task NAME."""
    from maintenance_tasks.routes.api import _get_runner

    params = parse_arguments(arguments)
    try:
        run = _get_runner().start(name, params)
    except ValidationError as e:
        for field, messages in e.errors.items():
            click.echo(f'{field}: {", ".join(messages)}', err=True)
        raise click.ClickException('Run not created: invalid parameters')
    except MaintenanceTasksError as e:
        raise click.ClickException(str(e))
    click.echo(f'Enqueued run {run.id} of {name} (job {run.job_id})')


@cli.command('list')
def list_tasks():
    """List registered tasks with the status of their latest run."""
    from maintenance_tasks.database import get_session
    from maintenance_tasks.services.task_data import TaskData

    session = get_session()
    try:
        for task in TaskData.available_tasks(session):
            click.echo(f'{task.name}\t{task.status}')
    finally:
        session.close()
