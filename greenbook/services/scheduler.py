"""
Schedule registry — cron schedules that launch sync runs.

SyncScheduler owns the only APScheduler instance. The app factory builds
and starts it when SCHEDULER_ENABLED is set; everything else goes through
the instance on app.extensions['sync_scheduler'] (or gets None and only
touches the table).

Cron expressions are standard 5-field crontab strings evaluated in UTC.
"""
import logging
import re
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from greenbook.config import SCHEDULE_TYPES, SCHEDULER_TIMEZONE
from greenbook.database import get_session
from greenbook.models.sync_log import SyncLog
from greenbook.models.sync_schedule import SyncSchedule
from greenbook.sync.base import GreenbookError, InvalidSyncOptions, SyncOptions

logger = logging.getLogger('services.scheduler')


class InvalidSchedule(GreenbookError, ValueError):
    """Schedule payload failed validation."""


def _now():
    return datetime.now(timezone.utc)


_CRON_DAYS = ['sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun']
_DAY_NUMBERS = {name: str(number) for number, name in enumerate(_CRON_DAYS[:7])}


def _day_number(match):
    try:
        return _DAY_NUMBERS[match.group()]
    except KeyError:
        raise ValueError(f"unknown day of week: {match.group()}")


def _day_of_week(field):
    """Crontab weekday field → APScheduler day names (APScheduler counts 0 as Monday)."""
    items = []
    for item in field.lower().split(','):
        base, _, step = item.partition('/')
        if base == '*':
            if not step:
                items.append(item)
                continue
            base = '0-6'
        base = re.sub(r'[a-z]+', _day_number, base)
        if not re.fullmatch(r'\d+(-\d+)?', base) or (step and not step.isdigit()):
            raise ValueError(f"invalid day of week: {item}")
        start, _, end = base.partition('-')
        end = end or (7 if step else start)
        days = range(int(start), int(end) + 1, int(step or 1))
        if int(end) > 7 or not days:
            raise ValueError(f"day of week out of range: {item}")
        items.extend(_CRON_DAYS[d] for d in days)
    return ','.join(dict.fromkeys(items))


def build_trigger(expression):
    """5-field crontab → CronTrigger, weekday numbers read the crontab way (0 and 7 = Sunday)."""
    try:
        fields = expression.split()
        if len(fields) != 5:
            raise ValueError(f"expected 5 fields, got {len(fields)}")
        minute, hour, day, month, day_of_week = fields
        return CronTrigger(minute=minute, hour=hour, day=day, month=month,
                           day_of_week=_day_of_week(day_of_week), timezone=SCHEDULER_TIMEZONE)
    except (TypeError, ValueError) as e:
        raise InvalidSchedule(f"Invalid cron expression '{expression}': {e}")


def dispatch_sync(sync_type, options, schedule_id):
    """Default dispatcher: enqueue the run like a manual API launch."""
    from greenbook.sync.manager import launch_sync
    return launch_sync(sync_type, options, schedule_id=schedule_id)


class SyncScheduler:
    """Wraps one BackgroundScheduler; one cron job per enabled schedule, job id = schedule id."""

    def __init__(self, dispatcher=None):
        self._dispatcher = dispatcher or dispatch_sync
        self._scheduler = None

    @property
    def running(self):
        return self._scheduler is not None and self._scheduler.running

    def start(self):
        """Start the scheduler and register every enabled schedule."""
        if self.running:
            return
        self._scheduler = BackgroundScheduler(timezone=SCHEDULER_TIMEZONE)
        self._scheduler.start()

        session = get_session()
        try:
            schedules = session.query(SyncSchedule).filter(SyncSchedule.enabled.is_(True)).all()
        finally:
            session.close()

        for schedule in schedules:
            try:
                self.start_schedule(schedule)
            except InvalidSchedule as e:
                logger.error("Schedule %s (%s) not started: %s", schedule.id, schedule.name, e)
        logger.info("Sync scheduler started with %d schedules", len(self._scheduler.get_jobs()))

    def shutdown(self):
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Sync scheduler stopped")

    def start_schedule(self, schedule):
        """(Re)register the cron job for a schedule row. Returns its next fire time."""
        trigger = build_trigger(schedule.cron_expression)
        if not self.running:
            return None
        job = self._scheduler.add_job(
            self.fire,
            trigger=trigger,
            args=[schedule.id],
            id=schedule.id,
            name=schedule.name,
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=300,
        )
        _set_next_run(schedule.id, job.next_run_time)
        logger.info("Scheduled '%s' (%s) next at %s", schedule.name, schedule.cron_expression, job.next_run_time)
        return job.next_run_time

    def stop_schedule(self, schedule_id):
        if self.running and self._scheduler.get_job(schedule_id) is not None:
            self._scheduler.remove_job(schedule_id)
            logger.info("Unscheduled %s", schedule_id)

    def is_scheduled(self, schedule_id):
        return self.running and self._scheduler.get_job(schedule_id) is not None

    def next_run_time(self, schedule_id):
        if not self.running:
            return None
        job = self._scheduler.get_job(schedule_id)
        return job.next_run_time if job else None

    def fire(self, schedule_id):
        """Cron callback: stamp last_run, dispatch the sync, refresh next_run."""
        session = get_session()
        try:
            schedule = session.get(SyncSchedule, schedule_id)
            if schedule is None or not schedule.enabled:
                logger.warning("Schedule %s missing or disabled, skipping", schedule_id)
                self.stop_schedule(schedule_id)
                return None
            schedule.last_run = _now()
            session.commit()
            sync_type = schedule.sync_type
            options = dict(schedule.sync_options or {})
            name = schedule.name
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("Schedule '%s' firing %s sync", name, sync_type)
        result = None
        try:
            result = self._dispatcher(sync_type, options, schedule_id)
        except Exception:
            logger.error("Schedule '%s' failed to dispatch %s sync", name, sync_type, exc_info=True)

        _set_next_run(schedule_id, self.next_run_time(schedule_id))
        return result


def _set_next_run(schedule_id, when):
    session = get_session()
    try:
        schedule = session.get(SyncSchedule, schedule_id)
        if schedule is not None:
            schedule.next_run = when
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ── Validation ────────────────────────────────────────────────────────────────

def _clean(data, existing=None):
    """Validate a create/update payload; returns column values to write."""
    if not isinstance(data, dict):
        raise InvalidSchedule('Schedule payload must be an object')
    values = {}

    if 'name' in data or existing is None:
        name = data.get('name')
        if not isinstance(name, str) or not name.strip():
            raise InvalidSchedule('Schedule name is required')
        values['name'] = name.strip()

    if 'description' in data:
        values['description'] = data.get('description') or None

    sync_type = data.get('sync_type', existing.sync_type if existing else 'incremental')
    if sync_type not in SCHEDULE_TYPES:
        raise InvalidSchedule(f"sync_type must be one of {SCHEDULE_TYPES}")
    values['sync_type'] = sync_type

    if 'cron_expression' in data or existing is None:
        expression = data.get('cron_expression')
        if not isinstance(expression, str) or not expression.strip():
            raise InvalidSchedule('cron_expression is required')
        build_trigger(expression.strip())
        values['cron_expression'] = expression.strip()

    raw_options = data.get('sync_options', existing.sync_options if existing else None)
    try:
        options = SyncOptions.from_dict(raw_options or {})
    except InvalidSyncOptions as e:
        raise InvalidSchedule(str(e))
    if sync_type == 'selective' and not options.any_selected():
        raise InvalidSchedule('A selective schedule needs at least one sync option')
    values['sync_options'] = options.to_dict()

    if 'enabled' in data:
        if not isinstance(data['enabled'], bool):
            raise InvalidSchedule('enabled must be true or false')
        values['enabled'] = data['enabled']

    return values


def _serialize(schedule, scheduler):
    data = schedule.to_dict()
    data['active'] = bool(scheduler and scheduler.is_scheduled(schedule.id))
    return data


def _name_taken(session, name, exclude_id=None):
    query = session.query(SyncSchedule.id).filter(SyncSchedule.name == name)
    if exclude_id:
        query = query.filter(SyncSchedule.id != exclude_id)
    return query.first() is not None


def _resync(scheduler, schedule):
    if scheduler is None:
        return
    scheduler.stop_schedule(schedule.id)
    if schedule.enabled:
        scheduler.start_schedule(schedule)


# ── CRUD ──────────────────────────────────────────────────────────────────────

def list_schedules(scheduler=None):
    session = get_session()
    try:
        rows = session.query(SyncSchedule).order_by(SyncSchedule.name).all()
        return [_serialize(row, scheduler) for row in rows]
    finally:
        session.close()


def get_schedule(schedule_id, scheduler=None):
    session = get_session()
    try:
        row = session.get(SyncSchedule, schedule_id)
        return _serialize(row, scheduler) if row else None
    finally:
        session.close()


def create_schedule(data, scheduler=None):
    values = _clean(data)
    session = get_session()
    try:
        if _name_taken(session, values['name']):
            raise InvalidSchedule(f"A schedule named '{values['name']}' already exists")
        values.setdefault('enabled', True)
        schedule = SyncSchedule(**values)
        session.add(schedule)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    logger.info("Created schedule '%s' (%s)", schedule.name, schedule.cron_expression)
    _resync(scheduler, schedule)
    return get_schedule(schedule.id, scheduler)


def update_schedule(schedule_id, data, scheduler=None):
    """Returns the updated schedule, or None if it does not exist."""
    session = get_session()
    try:
        schedule = session.get(SyncSchedule, schedule_id)
        if schedule is None:
            return None
        values = _clean(data, existing=schedule)
        if 'name' in values and _name_taken(session, values['name'], exclude_id=schedule_id):
            raise InvalidSchedule(f"A schedule named '{values['name']}' already exists")
        for key, value in values.items():
            setattr(schedule, key, value)
        if not schedule.enabled:
            schedule.next_run = None
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    _resync(scheduler, schedule)
    return get_schedule(schedule_id, scheduler)


def toggle_schedule(schedule_id, scheduler=None):
    """Flip enabled. Returns the updated schedule, or None if it does not exist."""
    session = get_session()
    try:
        schedule = session.get(SyncSchedule, schedule_id)
        if schedule is None:
            return None
        schedule.enabled = not schedule.enabled
        if not schedule.enabled:
            schedule.next_run = None
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    logger.info("Schedule '%s' %s", schedule.name, 'enabled' if schedule.enabled else 'disabled')
    _resync(scheduler, schedule)
    return get_schedule(schedule_id, scheduler)


def delete_schedule(schedule_id, scheduler=None):
    """Delete a schedule; past runs keep their rows with schedule_id cleared."""
    session = get_session()
    try:
        schedule = session.get(SyncSchedule, schedule_id)
        if schedule is None:
            return False
        session.query(SyncLog).filter(SyncLog.schedule_id == schedule_id).update(
            {SyncLog.schedule_id: None}, synchronize_session=False,
        )
        session.delete(schedule)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if scheduler is not None:
        scheduler.stop_schedule(schedule_id)
    logger.info("Deleted schedule %s", schedule_id)
    return True


# ── Defaults ──────────────────────────────────────────────────────────────────

DEFAULT_SCHEDULES = [
    {
        'name': 'Daily Selective Sync',
        'description': 'Daily selective sync for users and hierarchy',
        'sync_type': 'selective',
        'cron_expression': '0 2 * * *',
        'sync_options': {'users': True, 'reference_data': False, 'hierarchy': True, 'link_references': True},
        'enabled': True,
    },
    {
        'name': 'Weekly Full Sync',
        'description': 'Weekly full sync including reference data',
        'sync_type': 'selective',
        'cron_expression': '0 3 * * 0',
        'sync_options': {'users': True, 'reference_data': True, 'hierarchy': True, 'link_references': True},
        'enabled': True,
    },
    {
        'name': 'Hourly Incremental Sync',
        'description': 'Hourly incremental sync during business hours',
        'sync_type': 'incremental',
        'cron_expression': '0 9-17 * * 1-5',
        'sync_options': {'users': True, 'hierarchy': True},
        'enabled': True,
    },
]


def seed_default_schedules(scheduler=None):
    """Create the default schedules, or reset existing ones with the same name. Returns them."""
    session = get_session()
    try:
        existing = {name: sid for sid, name in session.query(SyncSchedule.id, SyncSchedule.name)}
    finally:
        session.close()

    seeded = []
    for definition in DEFAULT_SCHEDULES:
        schedule_id = existing.get(definition['name'])
        if schedule_id:
            seeded.append(update_schedule(schedule_id, definition, scheduler))
        else:
            seeded.append(create_schedule(definition, scheduler))
    return seeded
