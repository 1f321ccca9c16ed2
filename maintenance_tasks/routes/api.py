"""
JSON API — list tasks, start runs, and pause / cancel / resume them.
"""
import logging

from flask import Blueprint, request, jsonify

from maintenance_tasks.errors import (
    AlreadyActiveError, InvalidTransitionError, RunNotFoundError, TaskNotFoundError, ValidationError,
)
from maintenance_tasks.models.run import Run
from maintenance_tasks.services.task_data import TaskData

logger = logging.getLogger('routes.api')

bp = Blueprint('api', __name__)


# ── Lazy runner (avoids building the RQ queue at import time) ────────────────

_runner = None


def _get_runner():
    global _runner
    if _runner is None:
        from maintenance_tasks.jobs import build_runner
        _runner = build_runner()
    return _runner


# ── Error mapping ────────────────────────────────────────────────────────────

@bp.errorhandler(TaskNotFoundError)
@bp.errorhandler(RunNotFoundError)
def _not_found(e):
    return jsonify({'error': str(e)}), 404


@bp.errorhandler(ValidationError)
def _invalid(e):
    return jsonify({'error': str(e), 'errors': e.errors}), 422


@bp.errorhandler(AlreadyActiveError)
@bp.errorhandler(InvalidTransitionError)
def _conflict(e):
    return jsonify({'error': str(e)}), 409


# ── Health ───────────────────────────────────────────────────────────────────

@bp.route('/health')
def health():
    return jsonify({'status': 'ok'})


# ── Tasks ────────────────────────────────────────────────────────────────────

@bp.route('/api/tasks')
def list_tasks():
    """All registered tasks, active first."""
    from maintenance_tasks.database import get_session
    session = get_session()
    try:
        tasks = TaskData.available_tasks(session)
        return jsonify([t.to_dict(history=False) for t in tasks])
    finally:
        session.close()


@bp.route('/api/tasks/<path:name>')
def get_task(name):
    """One task, including deleted tasks that still have runs."""
    from maintenance_tasks.database import get_session
    session = get_session()
    try:
        return jsonify(TaskData.find(name, session).to_dict())
    finally:
        session.close()


@bp.route('/api/tasks/<path:name>/runs', methods=['POST'])
def start_run(name):
    """Start a run. Body: {"params": {...}}."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'request body must be an object'}), 400
    params = data.get('params') or {}
    if not isinstance(params, dict):
        return jsonify({'error': 'params must be an object'}), 400

    run = _get_runner().start(name, params)
    return jsonify(run.to_dict()), 202


# ── Runs ─────────────────────────────────────────────────────────────────────

@bp.route('/api/runs/<int:run_id>')
def get_run(run_id):
    from maintenance_tasks.database import get_session
    session = get_session()
    try:
        run = session.get(Run, run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return jsonify(run.to_dict())
    finally:
        session.close()


@bp.route('/api/runs/<int:run_id>/pause', methods=['POST'])
def pause_run(run_id):
    return jsonify(_get_runner().pause(run_id).to_dict())


@bp.route('/api/runs/<int:run_id>/cancel', methods=['POST'])
def cancel_run(run_id):
    return jsonify(_get_runner().cancel(run_id).to_dict())


@bp.route('/api/runs/<int:run_id>/resume', methods=['POST'])
def resume_run(run_id):
    return jsonify(_get_runner().resume(run_id).to_dict())
