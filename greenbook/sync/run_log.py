"""
Run logger + cancellation protocol on top of the sync_logs table.

Every write opens its own session and commits immediately, so progress is
visible to other processes (status page, cancel endpoint) while a run is
still executing. Terminal rows are never overwritten: finalize and cancel
are conditional updates guarded by status = 'running'.
"""
import logging
from datetime import datetime, timezone

from greenbook.config import SYNC_KINDS, TERMINAL_STATUSES
from greenbook.database import get_session
from greenbook.models.sync_log import SyncLog
from greenbook.sync.base import CANCELLED_MESSAGE, SyncCancelled

logger = logging.getLogger('sync.run_log')


def _now():
    return datetime.now(timezone.utc)


def create_run(kind, parent_run_id=None, schedule_id=None):
    """Insert a 'running' SyncLog row and return its id."""
    if kind not in SYNC_KINDS:
        raise ValueError(f"Unknown sync run kind: {kind!r}")
    session = get_session()
    try:
        row = SyncLog(
            kind=kind,
            status='running',
            records_processed=0,
            records_failed=0,
            started_at=_now(),
            parent_run_id=parent_run_id,
            schedule_id=schedule_id,
        )
        session.add(row)
        session.commit()
        logger.debug("Created %s run %s (parent=%s)", kind, row.id, parent_run_id)
        return row.id
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def increment_counters(run_id, processed=0, failed=0):
    """Atomically add to a run's counters (counter = counter + n in SQL)."""
    if not processed and not failed:
        return
    session = get_session()
    try:
        session.query(SyncLog).filter(SyncLog.id == run_id).update(
            {
                SyncLog.records_processed: SyncLog.records_processed + processed,
                SyncLog.records_failed: SyncLog.records_failed + failed,
            },
            synchronize_session=False,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def finalize_run(run_id, status, message=None, processed=None, failed=None):
    """
    Move a running row to a terminal status.

    Returns False when the row is missing or already terminal (for example
    an operator cancelled it first); the existing terminal state wins.
    """
    if status not in TERMINAL_STATUSES:
        raise ValueError(f"Not a terminal status: {status}")

    values = {SyncLog.status: status, SyncLog.completed_at: _now()}
    if message is not None:
        values[SyncLog.message] = message
    if processed is not None:
        values[SyncLog.records_processed] = processed
    if failed is not None:
        values[SyncLog.records_failed] = failed

    session = get_session()
    try:
        updated = session.query(SyncLog).filter(
            SyncLog.id == run_id,
            SyncLog.status == 'running',
        ).update(values, synchronize_session=False)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if not updated:
        logger.info("Run %s already terminal, not marking %s", run_id, status)
    return bool(updated)


def get_run_status(run_id):
    """Current persisted status of a run, or None if it does not exist."""
    session = get_session()
    try:
        return session.query(SyncLog.status).filter(SyncLog.id == run_id).scalar()
    finally:
        session.close()


def status_for_counts(processed, failed):
    """Terminal status for a loop that ran to completion."""
    return 'success' if failed == 0 else 'partial'


class CancellationMonitor:
    """
    Polled cancellation check for one run.

    Calling the monitor reads the run's persisted status and raises
    SyncCancelled if an operator flipped it to 'cancelled'. Work committed
    before the check stays committed.
    """

    def __init__(self, run_id):
        self.run_id = run_id
        self.checks = 0

    def __call__(self):
        self.checks += 1
        if get_run_status(self.run_id) == 'cancelled':
            logger.info("Cancellation detected for run %s", self.run_id, extra={'run_id': self.run_id})
            raise SyncCancelled(self.run_id)


def cancel_run(run_id):
    """
    Flip a running run to 'cancelled'.

    Returns False if the run does not exist or is not running. The executing
    worker notices at its next checkpoint.
    """
    session = get_session()
    try:
        updated = session.query(SyncLog).filter(
            SyncLog.id == run_id,
            SyncLog.status == 'running',
        ).update(
            {
                SyncLog.status: 'cancelled',
                SyncLog.message: CANCELLED_MESSAGE,
                SyncLog.completed_at: _now(),
            },
            synchronize_session=False,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if updated:
        logger.info("Run %s cancelled by operator", run_id, extra={'run_id': run_id})
    return bool(updated)
