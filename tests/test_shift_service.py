import pytest
from datetime import date, time

import psycopg2

from config import Config, ShiftCode
from services import shift_service as ss
from conftest import FakeCursor

DAY = date(2025, 1, 15)


def assignment(shift_type='day', start_time=None):
    return {'shift_type': shift_type, 'start_time': start_time, 'end_time': None, 'schedule_status': 'published'}


# ---------------- Shift Resolver ----------------

def test_explicit_shift_wins_over_everything():
    cursor = FakeCursor().on('FROM shift_assignments', assignment('day'))

    assert ss.resolve_shift(cursor, 1, DAY, provided_shift='night', default_shift='day') == 'night'
    assert cursor.executed('FROM shift_assignments') == []


def test_assignment_beats_default_shift():
    cursor = FakeCursor().on('FROM shift_assignments', assignment('night'))

    assert ss.resolve_shift(cursor, 1, DAY, default_shift='day', position='Cashier') == 'night'

    sql, params = cursor.executed('FROM shift_assignments')[0]
    assert params == (1, DAY, ('published', 'draft'))


def test_default_shift_used_without_assignment():
    cursor = FakeCursor().on('FROM shift_assignments', None)

    assert ss.resolve_shift(cursor, 1, DAY, default_shift='night', position='Cashier') == 'night'


@pytest.mark.parametrize('position', [
    'Night guard', 'Ночной охранник', 'ночная смена', 'Tungi qorovul', 'tun operator', 'NIGHT cashier'
])
def test_night_keywords_in_position(position):
    assert ss.resolve_shift(FakeCursor(), 1, DAY, position=position) == ShiftCode.NIGHT


@pytest.mark.parametrize('position', [None, '', 'Cashier', 'Nightingale trainer', 'Tuna chef'])
def test_position_without_night_word_is_day(position):
    assert ss.resolve_shift(FakeCursor(), 1, DAY, position=position) == ShiftCode.DAY


def test_assignment_lookup_failure_degrades_to_next_source():
    cursor = FakeCursor().on('FROM shift_assignments', psycopg2.ProgrammingError('relation does not exist'))

    assert ss.resolve_shift(cursor, 1, DAY, default_shift='night') == 'night'
    assert cursor.executed('ROLLBACK TO SAVEPOINT sp_shift_assignment')


def test_resolver_has_no_clock_input():
    # Same inputs always resolve the same way, whatever the time of day
    cursor = FakeCursor().on('FROM shift_assignments', None)
    results = {ss.resolve_shift(cursor, 1, DAY, position='Cashier') for _ in range(3)}
    assert results == {ShiftCode.DAY}


def test_custom_strategy_list():
    strategies = [lambda ctx: None, lambda ctx: 'night']
    assert ss.resolve_shift(None, 1, DAY, strategies=strategies) == 'night'


def test_position_keyword_ignores_case():
    assert ss.resolve_shift(None, 1, DAY, position='Старший НОЧНОЙ кассир') == ShiftCode.NIGHT
    assert ss.resolve_shift(None, 1, DAY, position='Manager') == ShiftCode.DAY


# ---------------- Late-Threshold Resolver ----------------

def test_custom_start_time_plus_grace():
    cursor = FakeCursor().on('FROM shift_assignments', assignment('day', time(10, 0)))

    threshold = ss.resolve_late_threshold(cursor, 1, 'day', DAY)

    assert threshold == 10 * 60 + Config.LATE_GRACE_MINUTES
    assert cursor.executed('FROM shifts') == []


def test_custom_start_time_as_string():
    cursor = FakeCursor().on('FROM shift_assignments', assignment('day', '08:30:00'))

    assert ss.resolve_late_threshold(cursor, 1, 'day', DAY) == 8 * 60 + 30 + Config.LATE_GRACE_MINUTES


def test_assignment_shift_definition_used_before_resolved_shift():
    def shifts(params):
        return {'start_hour': 18, 'late_threshold_minutes': 10} if params == ('night',) else \
            {'start_hour': 9, 'late_threshold_minutes': 15}

    cursor = FakeCursor() \
        .on('FROM shift_assignments', assignment('night')) \
        .on('FROM shifts', shifts)

    assert ss.resolve_late_threshold(cursor, 1, 'day', DAY) == 18 * 60 + 10


def test_resolved_shift_definition_without_assignment():
    cursor = FakeCursor() \
        .on('FROM shift_assignments', None) \
        .on('FROM shifts', {'start_hour': 9, 'late_threshold_minutes': 20})

    assert ss.resolve_late_threshold(cursor, 1, 'day', DAY) == 9 * 60 + 20


def test_assignment_loaded_once_per_resolution():
    cursor = FakeCursor() \
        .on('FROM shift_assignments', None) \
        .on('FROM shifts', {'start_hour': 9, 'late_threshold_minutes': 15})

    ss.resolve_late_threshold(cursor, 1, 'day', DAY)

    assert len(cursor.executed('FROM shift_assignments')) == 1


@pytest.mark.parametrize('shift_code, expected', [('day', 9 * 60 + 15), ('night', 18 * 60 + 15)])
def test_degraded_fallback_when_storage_fails(shift_code, expected, caplog):
    cursor = FakeCursor() \
        .on('FROM shift_assignments', psycopg2.OperationalError('boom')) \
        .on('FROM shifts', psycopg2.OperationalError('boom'))

    assert ss.resolve_late_threshold(cursor, 1, shift_code, DAY) == expected
    assert 'DEGRADED MODE' in caplog.text


def test_degraded_fallback_when_nothing_configured():
    cursor = FakeCursor().on('FROM shift_assignments', None).on('FROM shifts', None)

    assert ss.resolve_late_threshold(cursor, 1, 'day', DAY) == 555


def test_fallback_in_isolation():
    assert ss.resolve_late_threshold(None, 1, 'night', DAY, strategies=[lambda ctx: None]) == 1095


def test_is_late_boundary():
    cursor = FakeCursor() \
        .on('FROM shift_assignments', None) \
        .on('FROM shifts', {'start_hour': 9, 'late_threshold_minutes': 15})

    assert ss.is_late(cursor, 1, 'day', DAY, 9 * 60 + 14.9) is False
    assert ss.is_late(cursor, 1, 'day', DAY, 9 * 60 + 15) is True


# ---------------- Legacy heuristic ----------------

@pytest.mark.parametrize('check_in, expected', [
    (time(9, 0), 'day'),
    (time(15, 30), 'day'),
    (time(15, 31), 'night'),
    ('18:02:00', 'night'),
    (None, 'day'),
])
def test_legacy_shift_from_check_in(check_in, expected):
    assert ss.legacy_shift_from_check_in(check_in) == expected
