"""Tests for greenbook.services.scheduler — schedule CRUD, cron registration, firing, defaults."""
import pytest
from unittest.mock import MagicMock

from greenbook.models.sync_log import SyncLog
from greenbook.models.sync_schedule import SyncSchedule
from greenbook.services import scheduler as schedules
from greenbook.services.scheduler import InvalidSchedule, SyncScheduler, build_trigger


@pytest.fixture
def dispatcher():
    return MagicMock(return_value=('run-1', 'job-1'))


@pytest.fixture
def sync_scheduler(dispatcher):
    sched = SyncScheduler(dispatcher=dispatcher)
    sched.start()
    yield sched
    sched.shutdown()


def _payload(**overrides):
    data = {
        'name': 'Nightly',
        'sync_type': 'incremental',
        'cron_expression': '0 2 * * *',
    }
    data.update(overrides)
    return data


class TestBuildTrigger:

    def test_valid_crontab(self):
        assert build_trigger('0 9-17 * * 1-5') is not None

    @pytest.mark.parametrize('field,expected', [
        ('1-5', 'mon,tue,wed,thu,fri'),
        ('0', 'sun'),
        ('7', 'sun'),
        ('0,7', 'sun'),
        ('*', '*'),
        ('sat,sun', 'sat,sun'),
        ('1-5/2', 'mon,wed,fri'),
        ('*/2', 'sun,tue,thu,sat'),
        ('mon-fri/2', 'mon,wed,fri'),
        ('SUN-TUE', 'sun,mon,tue'),
        ('sat/3', 'sat'),
    ])
    def test_weekday_numbers_follow_crontab(self, field, expected):
        assert schedules._day_of_week(field) == expected

    def test_business_hours_fire_on_weekdays(self):
        from datetime import datetime, timezone
        trigger = build_trigger('0 9-17 * * 1-5')
        friday_evening = datetime(2026, 10, 16, 18, 0, tzinfo=timezone.utc)
        assert trigger.get_next_fire_time(None, friday_evening) == datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

    def test_stepped_weekdays_fire_on_crontab_days(self):
        from datetime import datetime, timezone
        trigger = build_trigger('0 3 * * */2')
        monday_morning = datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)
        assert trigger.get_next_fire_time(None, monday_morning) == datetime(2026, 10, 20, 3, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize('expression', [
        'every day', '61 * * * *', '* * *', '0 2 * * 8',
        '0 2 * * L', '0 2 * * fri-mon', '0 2 * * */x',
    ])
    def test_invalid_crontab(self, expression):
        with pytest.raises(InvalidSchedule):
            build_trigger(expression)


class TestValidation:

    def test_name_required(self):
        with pytest.raises(InvalidSchedule, match='name'):
            schedules.create_schedule(_payload(name='  '))

    def test_unknown_sync_type(self):
        with pytest.raises(InvalidSchedule, match='sync_type'):
            schedules.create_schedule(_payload(sync_type='hourly'))

    def test_bad_cron(self):
        with pytest.raises(InvalidSchedule, match='cron'):
            schedules.create_schedule(_payload(cron_expression='whenever'))

    def test_selective_needs_an_option(self):
        with pytest.raises(InvalidSchedule):
            schedules.create_schedule(_payload(sync_type='selective', sync_options={}))

    def test_unknown_option(self):
        with pytest.raises(InvalidSchedule):
            schedules.create_schedule(_payload(sync_options={'photos': True}))

    def test_duplicate_name(self):
        schedules.create_schedule(_payload())
        with pytest.raises(InvalidSchedule, match='already exists'):
            schedules.create_schedule(_payload())

    def test_invalid_schedule_is_value_error(self):
        assert issubclass(InvalidSchedule, ValueError)


class TestCrudWithoutScheduler:

    def test_create_and_get(self):
        created = schedules.create_schedule(_payload(sync_options={'referenceData': True}))
        assert created['enabled'] is True
        assert created['active'] is False
        assert created['sync_options']['reference_data'] is True
        assert schedules.get_schedule(created['id'])['name'] == 'Nightly'

    def test_list_sorted_by_name(self):
        schedules.create_schedule(_payload(name='Zulu'))
        schedules.create_schedule(_payload(name='Alpha'))
        assert [s['name'] for s in schedules.list_schedules()] == ['Alpha', 'Zulu']

    def test_update(self):
        created = schedules.create_schedule(_payload())
        updated = schedules.update_schedule(created['id'], {'cron_expression': '30 4 * * *', 'description': 'early'})
        assert updated['cron_expression'] == '30 4 * * *'
        assert updated['description'] == 'early'
        assert updated['name'] == 'Nightly'

    def test_update_missing(self):
        assert schedules.update_schedule('missing', {'name': 'x'}) is None

    def test_toggle(self):
        created = schedules.create_schedule(_payload())
        assert schedules.toggle_schedule(created['id'])['enabled'] is False
        assert schedules.toggle_schedule(created['id'])['enabled'] is True
        assert schedules.toggle_schedule('missing') is None

    def test_delete_keeps_run_history(self, db_session):
        created = schedules.create_schedule(_payload())
        db_session.add(SyncLog(id='run-1', kind='incremental_sync', status='success', schedule_id=created['id']))
        db_session.commit()

        assert schedules.delete_schedule(created['id']) is True
        assert schedules.delete_schedule(created['id']) is False
        db_session.expire_all()
        assert db_session.get(SyncLog, 'run-1').schedule_id is None
        assert db_session.query(SyncSchedule).count() == 0


class TestSyncScheduler:

    def test_start_registers_enabled_schedules(self, db_session, dispatcher):
        on = schedules.create_schedule(_payload(name='On'))
        off = schedules.create_schedule(_payload(name='Off', enabled=False))
        sched = SyncScheduler(dispatcher=dispatcher)
        sched.start()
        try:
            assert sched.is_scheduled(on['id'])
            assert not sched.is_scheduled(off['id'])
            db_session.expire_all()
            assert db_session.get(SyncSchedule, on['id']).next_run is not None
        finally:
            sched.shutdown()
        assert sched.running is False

    def test_create_registers_job(self, sync_scheduler):
        created = schedules.create_schedule(_payload(), scheduler=sync_scheduler)
        assert created['active'] is True
        assert created['next_run'] is not None
        assert sync_scheduler.next_run_time(created['id']) is not None

    def test_toggle_off_unregisters(self, sync_scheduler):
        created = schedules.create_schedule(_payload(), scheduler=sync_scheduler)
        toggled = schedules.toggle_schedule(created['id'], scheduler=sync_scheduler)
        assert toggled['active'] is False
        assert toggled['next_run'] is None
        assert not sync_scheduler.is_scheduled(created['id'])

    def test_update_reschedules(self, sync_scheduler):
        created = schedules.create_schedule(_payload(), scheduler=sync_scheduler)
        before = sync_scheduler.next_run_time(created['id'])
        schedules.update_schedule(created['id'], {'cron_expression': '0 3 * * 0'}, scheduler=sync_scheduler)
        after = sync_scheduler.next_run_time(created['id'])
        assert after != before
        assert after.weekday() == 6

    def test_delete_unregisters(self, sync_scheduler):
        created = schedules.create_schedule(_payload(), scheduler=sync_scheduler)
        schedules.delete_schedule(created['id'], scheduler=sync_scheduler)
        assert not sync_scheduler.is_scheduled(created['id'])

    def test_stopped_scheduler_registers_nothing(self, dispatcher):
        sched = SyncScheduler(dispatcher=dispatcher)
        created = schedules.create_schedule(_payload(), scheduler=sched)
        assert created['active'] is False
        assert sched.next_run_time(created['id']) is None


class TestFire:

    def test_dispatches_with_schedule_options(self, db_session, dispatcher):
        created = schedules.create_schedule(_payload(sync_type='selective', sync_options={'hierarchy': True}))
        sched = SyncScheduler(dispatcher=dispatcher)

        assert sched.fire(created['id']) == ('run-1', 'job-1')
        sync_type, options, schedule_id = dispatcher.call_args[0]
        assert sync_type == 'selective'
        assert options['hierarchy'] is True
        assert schedule_id == created['id']
        db_session.expire_all()
        assert db_session.get(SyncSchedule, created['id']).last_run is not None

    def test_disabled_schedule_skipped(self, dispatcher):
        created = schedules.create_schedule(_payload(enabled=False))
        assert SyncScheduler(dispatcher=dispatcher).fire(created['id']) is None
        dispatcher.assert_not_called()

    def test_missing_schedule_skipped(self, dispatcher):
        assert SyncScheduler(dispatcher=dispatcher).fire('missing') is None
        dispatcher.assert_not_called()

    def test_dispatch_failure_is_logged_not_raised(self, db_session):
        created = schedules.create_schedule(_payload())
        sched = SyncScheduler(dispatcher=MagicMock(side_effect=ConnectionError('redis down')))
        assert sched.fire(created['id']) is None
        db_session.expire_all()
        assert db_session.get(SyncSchedule, created['id']).last_run is not None


class TestDefaults:

    def test_seeds_three_schedules(self):
        seeded = schedules.seed_default_schedules()
        assert [s['name'] for s in seeded] == [
            'Daily Selective Sync', 'Weekly Full Sync', 'Hourly Incremental Sync',
        ]
        hourly = seeded[2]
        assert hourly['sync_type'] == 'incremental'
        assert hourly['cron_expression'] == '0 9-17 * * 1-5'

    def test_reseed_resets_instead_of_duplicating(self, db_session):
        first = schedules.seed_default_schedules()
        schedules.update_schedule(first[0]['id'], {'cron_expression': '15 1 * * *'})
        second = schedules.seed_default_schedules()
        assert db_session.query(SyncSchedule).count() == 3
        assert second[0]['id'] == first[0]['id']
        assert second[0]['cron_expression'] == '0 2 * * *'

    def test_reseed_reenables_disabled_default(self, db_session):
        first = schedules.seed_default_schedules()
        assert schedules.toggle_schedule(first[1]['id'])['enabled'] is False
        second = schedules.seed_default_schedules()
        assert second[1]['id'] == first[1]['id']
        assert second[1]['enabled'] is True
        db_session.expire_all()
        assert db_session.get(SyncSchedule, first[1]['id']).enabled is True
