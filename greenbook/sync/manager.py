"""
Sync Manager — top-level run orchestration.

A top-level run pages the whole directory once, then runs the selected
phases in fixed order:
  USERS → REFERENCE DATA → REFERENCE LINKS → HIERARCHY

Each phase writes its own child SyncLog row. The top-level row ends in
'success' when no step raised, otherwise 'error' or 'cancelled'; child rows
keep whatever state they reached. Runs launched from the API or scheduler
are pre-created here and executed by an RQ worker (run_sync_job).
"""
import logging

from greenbook.config import SYNC_JOB_TIMEOUT, SYNC_QUEUE_NAME
from greenbook.database import get_session
from greenbook.logging_config import run_context
from greenbook.models.sync_log import SyncLog
from greenbook.services.notifications import notify_sync_failed
from greenbook.services.staff import count_totals
from greenbook.sync import run_log
from greenbook.sync.base import (
    CANCELLED_MESSAGE, InvalidSyncOptions, PhaseResult, SyncCancelled,
    SyncOptions, SyncResults,
)
from greenbook.sync.hierarchy import HierarchyPair, HierarchySyncPhase
from greenbook.sync.link_references import ReferenceLinkSyncPhase
from greenbook.sync.reference_data import ReferenceDataSyncPhase
from greenbook.sync.users import UserSyncPhase

logger = logging.getLogger('sync.manager')

# API / schedule mode → top-level run kind
MODES = {
    'selective': 'selective_sync',
    'full': 'full_sync',
    'incremental': 'incremental_sync',
}

# Always on for incremental runs
_INCREMENTAL_OPTIONS = SyncOptions(users=True, hierarchy=True)


# ── Lazy RQ queue (avoids import-time Redis connection) ──────────────────────

_queue = None

def _get_queue():
    global _queue
    if _queue is None:
        from greenbook.extensions import redis_client
        from rq import Queue
        _queue = Queue(SYNC_QUEUE_NAME, connection=redis_client)
    return _queue


# ── Directory source ──────────────────────────────────────────────────────────

_source = None

def get_directory_source():
    """Shared GraphClient, built on first use so tests and imports need no credentials."""
    global _source
    if _source is None:
        from greenbook.services.graph import GraphClient
        _source = GraphClient()
    return _source


def fetch_all_users(source, check_cancelled):
    """Page through list_users from page one, checking cancellation around every page."""
    records = []
    token = None
    pages = 0
    while True:
        check_cancelled()
        page = source.list_users(token)
        check_cancelled()
        pages += 1
        records.extend(page.records)
        if not page.next_page_token:
            break
        token = page.next_page_token
    logger.info("Fetched %d directory users in %d pages", len(records), pages)
    return records


def resolve_hierarchy_pairs(source, records, check_cancelled):
    """
    One get_manager call per user → HierarchyPair list.

    A lookup that fails still yields a pair, carrying the error, so the
    hierarchy phase counts it as failed and leaves the existing link alone.
    """
    pairs = []
    failed = 0
    for record in records:
        external_id = record.get('id')
        if not external_id:
            continue
        check_cancelled()
        try:
            manager = source.get_manager(external_id)
        except Exception as e:
            failed += 1
            logger.warning("Manager lookup failed for %s, keeping existing link: %s", external_id, e)
            pairs.append(HierarchyPair(external_id, None, lookup_error=str(e) or type(e).__name__))
            continue
        check_cancelled()
        pairs.append(HierarchyPair(external_id, (manager or {}).get('id')))
    if failed:
        logger.warning("%d manager lookups failed; those users keep their current manager", failed)
    return pairs


# ── Orchestration ─────────────────────────────────────────────────────────────

def _run_phases(options, results, source, check_cancelled):
    parent = results.run_id
    records = []
    if options.needs_directory():
        records = fetch_all_users(source, check_cancelled)

    users_ran = False
    if options.users or options.hierarchy:
        results.phases['users'] = UserSyncPhase().execute(records, parent, check_cancelled)
        users_ran = True

    if options.reference_data:
        check_cancelled()
        results.phases['reference_data'] = ReferenceDataSyncPhase().execute(records, parent, check_cancelled)

    if options.link_references and (users_ran or options.reference_data):
        check_cancelled()
        results.phases['link_references'] = ReferenceLinkSyncPhase().execute(records, parent, check_cancelled)

    if options.hierarchy:
        check_cancelled()
        pairs = resolve_hierarchy_pairs(source, records, check_cancelled)
        results.phases['hierarchy'] = HierarchySyncPhase().execute(pairs, parent, check_cancelled)


def _orchestrate(kind, options, schedule_id=None, source=None, run_id=None):
    if run_id is None:
        run_id = run_log.create_run(kind, schedule_id=schedule_id)
    with run_context(run_id):
        return _orchestrate_run(kind, options, run_id, source or get_directory_source())


def _orchestrate_run(kind, options, run_id, source):
    check_cancelled = run_log.CancellationMonitor(run_id)
    results = SyncResults(run_id=run_id, kind=kind)

    logger.info("Starting %s run %s with %s", kind, run_id, options.to_dict())

    try:
        _run_phases(options, results, source, check_cancelled)
    except SyncCancelled:
        results.status = 'cancelled'
        results.message = CANCELLED_MESSAGE
        run_log.finalize_run(run_id, 'cancelled', message=CANCELLED_MESSAGE,
                             processed=results.total_processed, failed=results.total_failed)
        logger.info("Run %s cancelled", run_id)
        raise
    except Exception as e:
        results.status = 'error'
        results.message = str(e)
        run_log.finalize_run(run_id, 'error', message=str(e),
                             processed=results.total_processed, failed=results.total_failed)
        logger.error("Run %s failed: %s", run_id, e, exc_info=True)
        notify_sync_failed(results)
        raise

    results.status = 'success'
    run_log.finalize_run(run_id, 'success',
                         processed=results.total_processed, failed=results.total_failed)
    logger.info("Run %s finished: %d processed, %d failed", run_id,
                results.total_processed, results.total_failed)
    return results


def _parse_options(options):
    return options if isinstance(options, SyncOptions) else SyncOptions.from_dict(options)


# ── Public API ────────────────────────────────────────────────────────────────

def selective_sync(options, schedule_id=None, source=None, run_id=None) -> SyncResults:
    """Run the selected phases. Raises InvalidSyncOptions when nothing is selected."""
    options = _parse_options(options)
    if not options.any_selected():
        raise InvalidSyncOptions('Select at least one sync phase')
    return _orchestrate('selective_sync', options, schedule_id, source, run_id)


def sync_all_users(schedule_id=None, source=None, run_id=None) -> SyncResults:
    return _orchestrate('full_sync', SyncOptions.all(), schedule_id, source, run_id)


def incremental_sync(options=None, schedule_id=None, source=None, run_id=None) -> SyncResults:
    """Users + hierarchy plus whatever the caller adds. Still re-reads the whole directory."""
    options = _parse_options(options).merge(_INCREMENTAL_OPTIONS)
    return _orchestrate('incremental_sync', options, schedule_id, source, run_id)


def sync_user(external_id, source=None):
    """
    Re-sync one user and their manager link, outside any top-level run.

    Returns {'users': PhaseResult, 'hierarchy': PhaseResult}. A manager
    lookup failure becomes an 'error' hierarchy result instead of raising;
    a missing profile raises GraphNotFound.
    """
    source = source or get_directory_source()
    profile = source.get_profile(external_id)
    results = {'users': UserSyncPhase().execute([profile])}

    try:
        manager = source.get_manager(external_id)
    except Exception as e:
        message = f'Manager lookup failed: {e}'
        logger.warning("sync_user %s: %s", external_id, message)
        hierarchy_run = run_log.create_run('hierarchy')
        run_log.finalize_run(hierarchy_run, 'error', message=message, processed=0, failed=1)
        results['hierarchy'] = PhaseResult(
            run_id=hierarchy_run, kind='hierarchy', status='error',
            records_processed=0, records_failed=1, message=message,
        )
        return results

    pair = HierarchyPair(external_id, (manager or {}).get('id'))
    results['hierarchy'] = HierarchySyncPhase().execute([pair])
    return results


def cancel_run(run_id):
    return run_log.cancel_run(run_id)


# ── Status ────────────────────────────────────────────────────────────────────

def _summarize(row, children):
    data = row.to_dict()
    data['child_runs'] = [child.to_dict() for child in children]
    if children:
        data['total_processed'] = sum(c.records_processed or 0 for c in children)
        data['total_failed'] = sum(c.records_failed or 0 for c in children)
    else:
        # single-phase run with no children: its own counters
        data['total_processed'] = row.records_processed or 0
        data['total_failed'] = row.records_failed or 0
    return data


def _children_by_parent(session, parent_ids):
    grouped = {pid: [] for pid in parent_ids}
    if not parent_ids:
        return grouped
    children = (
        session.query(SyncLog)
        .filter(SyncLog.parent_run_id.in_(parent_ids))
        .order_by(SyncLog.started_at.asc(), SyncLog.created_at.asc())
        .all()
    )
    for child in children:
        grouped[child.parent_run_id].append(child)
    return grouped


def get_run(run_id):
    """One run with its child runs and aggregate counters, or None."""
    session = get_session()
    try:
        row = session.get(SyncLog, run_id)
        if row is None:
            return None
        children = _children_by_parent(session, [row.id])[row.id]
        return _summarize(row, children)
    finally:
        session.close()


def get_sync_status(limit=20):
    """
    Recent top-level runs (newest first) with nested child runs, the
    most recent running top-level run, and store totals.

    active_run is advisory only; nothing prevents overlapping runs.
    """
    session = get_session()
    try:
        top_level = (
            session.query(SyncLog)
            .filter(SyncLog.parent_run_id.is_(None))
            .order_by(SyncLog.started_at.desc(), SyncLog.created_at.desc())
            .limit(limit)
            .all()
        )
        children = _children_by_parent(session, [row.id for row in top_level])
        recent = [_summarize(row, children[row.id]) for row in top_level]

        active = (
            session.query(SyncLog)
            .filter(SyncLog.parent_run_id.is_(None), SyncLog.status == 'running')
            .order_by(SyncLog.started_at.desc())
            .first()
        )
        active_run = None
        if active is not None:
            active_run = next((r for r in recent if r['id'] == active.id), None)
            if active_run is None:
                active_run = _summarize(active, _children_by_parent(session, [active.id])[active.id])
    finally:
        session.close()

    return {
        'recent_runs': recent,
        'active_run': active_run,
        'totals': count_totals(),
    }


# ── Background execution ──────────────────────────────────────────────────────

def launch_sync(mode, options=None, schedule_id=None):
    """
    Create the top-level run and enqueue it on the sync queue.

    Returns (run_id, job_id). Options are validated before anything is
    written, so a bad request never leaves a 'running' row behind.
    """
    kind = MODES.get(mode)
    if kind is None:
        raise InvalidSyncOptions(f"Unknown sync mode: {mode}. Available: {list(MODES)}")
    parsed = _parse_options(options)
    if mode == 'selective' and not parsed.any_selected():
        raise InvalidSyncOptions('Select at least one sync phase')

    run_id = run_log.create_run(kind, schedule_id=schedule_id)
    try:
        job = _get_queue().enqueue(run_sync_job, run_id, mode, parsed.to_dict(), job_timeout=SYNC_JOB_TIMEOUT)
    except Exception as e:
        run_log.finalize_run(run_id, 'error', message=f'Could not enqueue sync: {e}')
        raise

    logger.info("Enqueued %s run %s as job %s", kind, run_id, job.id, extra={'run_id': run_id})
    return run_id, job.id


def run_sync_job(run_id, mode, options=None):
    """
    RQ entry point: execute a pre-created top-level run.

    Cancellation is a normal way for a job to end, so it is not re-raised.
    Any other error propagates and RQ records the job as failed.
    """
    try:
        if mode == 'full':
            results = sync_all_users(run_id=run_id)
        elif mode == 'incremental':
            results = incremental_sync(options, run_id=run_id)
        elif mode == 'selective':
            results = selective_sync(options, run_id=run_id)
        else:
            raise InvalidSyncOptions(f"Unknown sync mode: {mode}")
    except InvalidSyncOptions as e:
        # rejected before orchestration started, so the run row is still 'running'
        run_log.finalize_run(run_id, 'error', message=str(e))
        raise
    except SyncCancelled:
        logger.info("Job for run %s ended by cancellation", run_id, extra={'run_id': run_id})
        return {'run_id': run_id, 'status': 'cancelled'}
    return results.to_dict()
