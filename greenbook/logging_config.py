"""
Logging setup for the web app and the RQ worker.

LOG_LEVEL (default INFO) and LOG_FORMAT ("text" or "json") are read from the
environment on every configure_logging() call.

Every record carries a run_id: an explicit extra={'run_id': ...} wins,
otherwise the id bound by the enclosing run_context() (if any). That way
Graph, store and breaker messages emitted during a sync can be grouped by run
without threading the id through every call.
"""
import contextvars
import json
import logging
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone

_current_run_id = contextvars.ContextVar('greenbook_run_id', default=None)


@contextmanager
def run_context(run_id):
    """Bind run_id to every log record emitted inside the block (same thread / task)."""
    token = _current_run_id.set(run_id)
    try:
        yield
    finally:
        _current_run_id.reset(token)


class RunIdFilter(logging.Filter):
    """Fills record.run_id from the active run_context and builds the short text tag."""

    def filter(self, record):
        run_id = getattr(record, 'run_id', None) or _current_run_id.get()
        record.run_id = run_id
        record.run_tag = f' [{run_id[:8]}]' if run_id else ''
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregators."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        run_id = getattr(record, 'run_id', None)
        if run_id:
            entry['run_id'] = run_id
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s%(run_tag)s: %(message)s'

# Chatty at INFO
_NOISY_LOGGERS = [
    'urllib3',
    'msal',
    'apscheduler',
    'rq.worker',
]


def configure_logging(app=None):
    """Replace root handlers with one stderr handler; safe to call repeatedly."""
    level = getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(RunIdFilter())
    if os.getenv('LOG_FORMAT', 'text').lower() == 'json':
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if app is not None:
        app.logger.handlers.clear()
        app.logger.propagate = True
