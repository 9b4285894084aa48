"""
Shift Service
Resolves the shift code and the late-arrival threshold for a worker on a date.

Both resolvers walk an ordered list of strategies. A strategy returns a value
or None ("no opinion") and the first value wins, so adding or reordering a
source means editing the list, not the control flow.
"""

from datetime import date
from typing import Callable, List, Optional
import re
import logging

from config import Config, ShiftCode
from database.connection import savepoint
from utils.timez import to_time

logger = logging.getLogger(__name__)

# Fallback cutoffs (minutes since midnight) for degraded mode only
FALLBACK_LATE_THRESHOLDS = {
    ShiftCode.DAY: 9 * 60 + 15,
    ShiftCode.NIGHT: 18 * 60 + 15,
}

# Whole-word night indicators: English, Russian, Uzbek
NIGHT_POSITION_PATTERN = re.compile(r'\b(night|ночн\w*|tun(gi)?)\b', re.IGNORECASE | re.UNICODE)

PUBLISHED_OR_DRAFT = ('published', 'draft')


# ==========================================
# Lookups
# ==========================================

def get_shift_assignment(cursor, employee_id, target_date: date) -> Optional[dict]:
    """Published or draft assignment for (worker, date), or None"""
    cursor.execute("""
        SELECT sa.shift_type, sa.start_time, sa.end_time, ss.status AS schedule_status
        FROM shift_assignments sa
        JOIN shift_schedules ss ON ss.id = sa.schedule_id
        WHERE sa.employee_id = %s
          AND sa.date = %s
          AND ss.status IN %s
        LIMIT 1
    """, (employee_id, target_date, PUBLISHED_OR_DRAFT))
    return cursor.fetchone()


def get_shift_threshold(cursor, shift_code: str) -> Optional[int]:
    """start_hour * 60 + late_threshold_minutes for a shift definition"""
    cursor.execute("""
        SELECT start_hour, late_threshold_minutes
        FROM shifts
        WHERE id = %s
    """, (shift_code,))
    row = cursor.fetchone()
    if row and row['start_hour'] is not None and row['late_threshold_minutes'] is not None:
        return int(row['start_hour']) * 60 + int(row['late_threshold_minutes'])
    return None


def _safe_assignment(cursor, employee_id, target_date, purpose):
    """Assignment lookup that degrades to None on storage errors"""
    try:
        with savepoint(cursor, 'sp_shift_assignment'):
            return get_shift_assignment(cursor, employee_id, target_date)
    except Exception as e:
        logger.warning(f"Shift assignment lookup failed ({purpose}) for employee {employee_id}: {e}")
        return None


def _safe_threshold(cursor, shift_code):
    try:
        with savepoint(cursor, 'sp_shift_threshold'):
            return get_shift_threshold(cursor, shift_code)
    except Exception as e:
        logger.warning(f"Shift definition lookup failed for '{shift_code}': {e}")
        return None


# ==========================================
# Shift Resolver
# ==========================================

class ShiftContext:
    """Inputs shared by shift resolution strategies"""

    def __init__(self, cursor, employee_id, target_date: date, provided_shift: str = None,
                 default_shift: str = None, position: str = None):
        self.cursor = cursor
        self.employee_id = employee_id
        self.target_date = target_date
        self.provided_shift = provided_shift
        self.default_shift = default_shift
        self.position = position


def _explicit_shift(ctx: ShiftContext) -> Optional[str]:
    return ctx.provided_shift or None


def _assigned_shift(ctx: ShiftContext) -> Optional[str]:
    if ctx.cursor is None:
        return None
    assignment = _safe_assignment(ctx.cursor, ctx.employee_id, ctx.target_date, 'shift resolution')
    if assignment and assignment.get('shift_type'):
        return assignment['shift_type']
    return None


def _default_shift(ctx: ShiftContext) -> Optional[str]:
    return ctx.default_shift or None


def _position_shift(ctx: ShiftContext) -> Optional[str]:
    if ctx.position and NIGHT_POSITION_PATTERN.search(ctx.position):
        return ShiftCode.NIGHT
    return ShiftCode.DAY


SHIFT_STRATEGIES: List[Callable[[ShiftContext], Optional[str]]] = [
    _explicit_shift,
    _assigned_shift,
    _default_shift,
    _position_shift,
]


def resolve_shift(cursor, employee_id, target_date: date, provided_shift: str = None,
                  default_shift: str = None, position: str = None,
                  strategies=None) -> str:
    """
    Determine the shift code for a worker on a date.

    Resolution order:
    1. Shift code supplied by the caller
    2. Published or draft shift assignment for the date
    3. Worker's default shift
    4. Night keywords in the position title, otherwise day

    Always returns a value.
    """
    ctx = ShiftContext(cursor, employee_id, target_date, provided_shift, default_shift, position)
    for strategy in strategies or SHIFT_STRATEGIES:
        shift_code = strategy(ctx)
        if shift_code:
            return shift_code
    return ShiftCode.DAY


# ==========================================
# Late-Threshold Resolver
# ==========================================

class ThresholdContext:
    """Inputs shared by late-threshold strategies"""

    def __init__(self, cursor, employee_id, shift_code: str, target_date: date):
        self.cursor = cursor
        self.employee_id = employee_id
        self.shift_code = shift_code
        self.target_date = target_date
        self._assignment = None
        self._assignment_loaded = False

    @property
    def assignment(self) -> Optional[dict]:
        if not self._assignment_loaded:
            self._assignment_loaded = True
            if self.cursor is not None:
                self._assignment = _safe_assignment(
                    self.cursor, self.employee_id, self.target_date, 'late threshold'
                )
        return self._assignment


def _custom_start_threshold(ctx: ThresholdContext) -> Optional[int]:
    assignment = ctx.assignment
    start = to_time(assignment.get('start_time')) if assignment else None
    if start is None:
        return None
    return start.hour * 60 + start.minute + Config.LATE_GRACE_MINUTES


def _assignment_shift_threshold(ctx: ThresholdContext) -> Optional[int]:
    assignment = ctx.assignment
    if not assignment or not assignment.get('shift_type'):
        return None
    return _safe_threshold(ctx.cursor, assignment['shift_type'])


def _shift_definition_threshold(ctx: ThresholdContext) -> Optional[int]:
    if ctx.cursor is None:
        return None
    return _safe_threshold(ctx.cursor, ctx.shift_code)


THRESHOLD_STRATEGIES: List[Callable[[ThresholdContext], Optional[int]]] = [
    _custom_start_threshold,
    _assignment_shift_threshold,
    _shift_definition_threshold,
]


def fallback_late_threshold(shift_code: str) -> int:
    """Hard-coded cutoff used when configuration cannot be read"""
    if shift_code == ShiftCode.NIGHT:
        return FALLBACK_LATE_THRESHOLDS[ShiftCode.NIGHT]
    return FALLBACK_LATE_THRESHOLDS[ShiftCode.DAY]


def resolve_late_threshold(cursor, employee_id, shift_code: str, target_date: date,
                           strategies=None) -> int:
    """
    Cutoff in minutes since midnight after which arrival counts as late.

    Resolution order:
    1. Assignment custom start time + grace period
    2. Assignment's shift code in the shifts table
    3. Resolved shift code in the shifts table
    4. Hard-coded day=09:15 / night=18:15 (degraded mode, logged)
    """
    ctx = ThresholdContext(cursor, employee_id, shift_code, target_date)
    for strategy in strategies or THRESHOLD_STRATEGIES:
        threshold = strategy(ctx)
        if threshold is not None:
            return threshold

    threshold = fallback_late_threshold(shift_code)
    logger.warning(
        f"DEGRADED MODE: no configured late threshold for employee {employee_id} "
        f"shift '{shift_code}' on {target_date}; using fallback {threshold // 60:02d}:{threshold % 60:02d}"
    )
    return threshold


def is_late(cursor, employee_id, shift_code: str, target_date: date, current_minutes: float,
            strategies=None) -> bool:
    """True when current_minutes >= resolved late threshold"""
    threshold = resolve_late_threshold(cursor, employee_id, shift_code, target_date, strategies)
    return current_minutes >= threshold


def legacy_shift_from_check_in(check_in) -> str:
    """
    Label a reminder from the session's check-in time when no shift code is
    stored: at or before the cutoff is day, later is night. Not used for
    shift assignment.
    """
    check_in_time = to_time(check_in)
    if check_in_time is None:
        return ShiftCode.DAY
    cutoff = to_time(Config.LEGACY_NIGHT_CUTOFF)
    if (check_in_time.hour, check_in_time.minute) <= (cutoff.hour, cutoff.minute):
        return ShiftCode.DAY
    return ShiftCode.NIGHT
