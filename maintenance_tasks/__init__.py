"""
Flask application factory.

Creates the JSON API app and mounts the maintenance-tasks CLI group.
"""


def create_app():
    """Create and configure the Flask application."""
    from flask import Flask
    from maintenance_tasks.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    from maintenance_tasks.routes.api import bp as api_bp
    app.register_blueprint(api_bp)

    from maintenance_tasks.cli import cli
    app.cli.add_command(cli)

    # Register task definitions so the API can list them
    from maintenance_tasks.tasks.base import load_task_modules
    load_task_modules()

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic, so no init_db() call here.
    import importlib
    importlib.import_module('maintenance_tasks.models.run')

    return app
