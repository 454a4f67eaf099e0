"""Tests for greenbook.sync.base — options, results, and the shared phase loop."""
import pytest
from unittest.mock import MagicMock

from greenbook.models.sync_log import SyncLog
from greenbook.sync import run_log
from greenbook.sync.base import (
    CANCELLED_MESSAGE, InvalidSyncOptions, PhaseResult, SyncCancelled,
    SyncOptions, SyncPhase, SyncResults,
)


# ── Helpers ──────────────────────────────────────────────────────────────────

class _RecordingPhase(SyncPhase):
    """Phase that records applied units and fails on the ones listed."""
    kind = 'users'

    def __init__(self, fail_on=()):
        self.applied = []
        self.fail_on = set(fail_on)

    def apply(self, unit):
        if unit in self.fail_on:
            raise ValueError(f'bad record {unit}')
        self.applied.append(unit)


def _row(db_session, run_id):
    db_session.expire_all()
    return db_session.get(SyncLog, run_id)


# ── SyncOptions ──────────────────────────────────────────────────────────────

class TestSyncOptions:

    def test_defaults_select_nothing(self):
        assert SyncOptions().any_selected() is False

    def test_all_selects_every_phase(self):
        assert SyncOptions.all().to_dict() == {
            'users': True, 'reference_data': True, 'hierarchy': True, 'link_references': True,
        }

    def test_from_dict_snake_case(self):
        opts = SyncOptions.from_dict({'users': True, 'link_references': True})
        assert opts.users is True
        assert opts.link_references is True
        assert opts.hierarchy is False

    def test_from_dict_camel_case(self):
        opts = SyncOptions.from_dict({'referenceData': True, 'linkReferences': False})
        assert opts.reference_data is True
        assert opts.link_references is False

    def test_from_dict_none_is_empty(self):
        assert SyncOptions.from_dict(None) == SyncOptions()

    def test_from_dict_rejects_unknown_key(self):
        with pytest.raises(InvalidSyncOptions, match='Unknown sync option'):
            SyncOptions.from_dict({'photos': True})

    def test_from_dict_rejects_non_bool(self):
        with pytest.raises(InvalidSyncOptions):
            SyncOptions.from_dict({'users': 'yes'})

    def test_from_dict_rejects_non_dict(self):
        with pytest.raises(InvalidSyncOptions):
            SyncOptions.from_dict(['users'])

    def test_invalid_options_is_value_error(self):
        assert issubclass(InvalidSyncOptions, ValueError)

    def test_merge_is_union(self):
        merged = SyncOptions(reference_data=True).merge(SyncOptions(users=True, hierarchy=True))
        assert merged == SyncOptions(users=True, reference_data=True, hierarchy=True)

    def test_needs_directory(self):
        assert SyncOptions(hierarchy=True).needs_directory() is True
        assert SyncOptions(link_references=True).needs_directory() is False

    def test_frozen(self):
        with pytest.raises(Exception):
            SyncOptions().users = True


# ── Results ──────────────────────────────────────────────────────────────────

class TestSyncResults:

    def test_totals_sum_phases(self):
        results = SyncResults(run_id='r1', kind='full_sync')
        results.phases['users'] = PhaseResult('p1', 'users', 'partial', 4, 1)
        results.phases['hierarchy'] = PhaseResult('p2', 'hierarchy', 'success', 5, 0)
        assert results.total_processed == 9
        assert results.total_failed == 1
        assert results.users.run_id == 'p1'
        assert results.reference_data is None

    def test_to_dict(self):
        results = SyncResults(run_id='r1', kind='selective_sync', status='success')
        results.phases['users'] = PhaseResult('p1', 'users', 'success', 2, 0)
        data = results.to_dict()
        assert data['status'] == 'success'
        assert data['total_processed'] == 2
        assert data['phases']['users']['records_processed'] == 2


# ── SyncPhase.execute ────────────────────────────────────────────────────────

class TestSyncPhaseExecute:

    def test_all_succeed_is_success(self, db_session):
        phase = _RecordingPhase()
        result = phase.execute(['a', 'b', 'c'], check_cancelled=lambda: None)
        assert result.status == 'success'
        assert result.records_processed == 3
        assert result.records_failed == 0
        row = _row(db_session, result.run_id)
        assert row.status == 'success'
        assert row.records_processed == 3
        assert row.completed_at is not None

    def test_failure_isolated_and_partial(self, db_session):
        phase = _RecordingPhase(fail_on={'b'})
        result = phase.execute(['a', 'b', 'c'], check_cancelled=lambda: None)
        assert phase.applied == ['a', 'c']
        assert result.status == 'partial'
        assert (result.records_processed, result.records_failed) == (2, 1)
        row = _row(db_session, result.run_id)
        assert (row.records_processed, row.records_failed) == (2, 1)

    def test_all_failed_is_partial(self):
        phase = _RecordingPhase(fail_on={'a', 'b'})
        result = phase.execute(['a', 'b'], check_cancelled=lambda: None)
        assert result.status == 'partial'
        assert result.records_failed == 2

    def test_empty_input_is_success(self):
        result = _RecordingPhase().execute([], check_cancelled=lambda: None)
        assert result.status == 'success'
        assert result.records_processed == 0

    def test_links_parent_run(self, db_session):
        parent = run_log.create_run('selective_sync')
        result = _RecordingPhase().execute(['a'], parent_run_id=parent, check_cancelled=lambda: None)
        assert _row(db_session, result.run_id).parent_run_id == parent

    def test_checks_before_and_after_each_write(self):
        check = MagicMock()
        _RecordingPhase().execute(['a', 'b'], check_cancelled=check)
        assert check.call_count == 4

    def test_cancellation_is_not_swallowed_per_record(self, db_session):
        calls = {'n': 0}

        def check():
            calls['n'] += 1
            if calls['n'] == 3:  # before the second record
                raise SyncCancelled('top')

        phase = _RecordingPhase()
        with pytest.raises(SyncCancelled):
            phase.execute(['a', 'b', 'c'], check_cancelled=check)
        assert phase.applied == ['a']
        row = db_session.query(SyncLog).filter_by(kind='users').one()
        assert row.status == 'cancelled'
        assert row.message == CANCELLED_MESSAGE
        assert row.records_processed == 1

    def test_cancel_raised_inside_apply_propagates(self, db_session):
        class _Cancelling(_RecordingPhase):
            def apply(self, unit):
                raise SyncCancelled('x')

        with pytest.raises(SyncCancelled):
            _Cancelling().execute(['a'], check_cancelled=lambda: None)
        row = db_session.query(SyncLog).one()
        assert row.status == 'cancelled'
        assert row.records_failed == 0

    def test_unexpected_error_finalizes_error(self, db_session):
        class _BrokenUnits(_RecordingPhase):
            def units(self, records):
                raise RuntimeError('cannot derive units')

        with pytest.raises(RuntimeError):
            _BrokenUnits().execute(['a'], check_cancelled=lambda: None)
        row = db_session.query(SyncLog).one()
        assert row.status == 'error'
        assert row.message == 'cannot derive units'

    def test_defaults_to_own_run_monitor(self, db_session):
        seen = []

        class _CancelOwnRun(_RecordingPhase):
            def apply(self, unit):
                self.applied.append(unit)
                run_id = db_session.query(SyncLog.id).scalar()
                seen.append(run_id)
                run_log.cancel_run(run_id)

        phase = _CancelOwnRun()
        with pytest.raises(SyncCancelled):
            phase.execute(['a', 'b'])
        assert phase.applied == ['a']
        assert _row(db_session, seen[0]).status == 'cancelled'

    def test_cancelling_phase_row_stops_loop_with_outer_check(self, db_session):
        outer = MagicMock()

        class _CancelOwnRun(_RecordingPhase):
            def apply(self, unit):
                self.applied.append(unit)
                run_log.cancel_run(db_session.query(SyncLog.id).filter_by(kind='users').scalar())

        phase = _CancelOwnRun()
        with pytest.raises(SyncCancelled):
            phase.execute(['a', 'b', 'c'], check_cancelled=outer)
        assert phase.applied == ['a']
        assert outer.call_count == 2
        row = db_session.query(SyncLog).filter_by(kind='users').one()
        assert row.status == 'cancelled'
        assert row.records_processed == 0
