"""
Flask application factory.

Creates and configures the Flask app, registers the sync and schedule
blueprints and, when SCHEDULER_ENABLED is set, starts the schedule registry.
"""
import atexit
import importlib

from flask import Flask


def create_app(start_scheduler=None):
    """Create and configure the Flask application."""
    from greenbook.config import SCHEDULER_ENABLED
    from greenbook.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # ── Blueprints ──────────────────────────────────────────────────────
    from greenbook.routes.sync import bp as sync_bp
    from greenbook.routes.schedules import bp as schedules_bp

    app.register_blueprint(sync_bp)
    app.register_blueprint(schedules_bp)

    # Circuit breakers for external API services
    from greenbook.extensions import redis_client
    from greenbook.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    # Import models so Base.metadata knows about them.
    # Schema is managed by Alembic, no create_all() call.
    for module in ('reference', 'staff', 'sync_schedule', 'sync_log'):
        importlib.import_module(f'greenbook.models.{module}')

    # ── Schedule registry ───────────────────────────────────────────────
    # Run with a single web worker (or a dedicated process) when enabled,
    # otherwise every worker fires every schedule.
    if start_scheduler is None:
        start_scheduler = SCHEDULER_ENABLED
    if start_scheduler:
        from greenbook.services.scheduler import SyncScheduler
        scheduler = SyncScheduler()
        scheduler.start()
        atexit.register(scheduler.shutdown)
        app.extensions['sync_scheduler'] = scheduler

    return app
