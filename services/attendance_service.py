"""
Attendance Service
Presence sessions: check-in (in-person / remote), check-out and duration arithmetic
"""

from datetime import datetime, date, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional
import logging

from config import Config, ShiftCode, SessionStatus, VerificationType, CheckoutType
from database.connection import get_db_cursor
from services.exceptions import Conflict, NotFound, ValidationError, RemoteWorkNotAllowed
from services.geofence_service import verify_location
from services.shift_service import resolve_shift, is_late
from utils.timez import (
    now_local, minutes_since_midnight, parse_time_of_day, parse_date, to_time, to_date
)

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

SESSION_COLUMNS = """
    id, employee_id, date, check_in, check_in_branch_id, check_out, check_out_date,
    shift_id, is_late, status, total_hours, verification_type, checkout_type, ip_address
"""


# ==========================================
# Duration arithmetic
# ==========================================

def compute_elapsed_minutes(check_in_date: date, check_in_time: time,
                            check_out_time: time, check_out_date: date = None) -> float:
    """
    Minutes between check-in and check-out.

    Full timestamps are built from the dates; when that yields a negative
    value or more than MAX_SANE_SESSION_HOURS, only the time-of-day
    difference is used (wrapped past midnight), giving a value in [0, 24h).
    """
    start = datetime.combine(check_in_date, check_in_time)
    end = datetime.combine(check_out_date or check_in_date, check_out_time)
    elapsed = (end - start).total_seconds() / 60

    if elapsed < 0 or elapsed > Config.MAX_SANE_SESSION_HOURS * 60:
        elapsed = minutes_since_midnight(check_out_time) - minutes_since_midnight(check_in_time)
        if elapsed < 0:
            elapsed += MINUTES_PER_DAY

    return elapsed


def round_hours(minutes: float) -> float:
    """Minutes to hours, one decimal place, half-up"""
    hours = Decimal(str(minutes)) / Decimal(60)
    return float(hours.quantize(Decimal('0.1'), rounding=ROUND_HALF_UP))


def early_leave_threshold_minutes(shift_code: str) -> int:
    if shift_code == ShiftCode.NIGHT:
        return Config.NIGHT_EARLY_LEAVE_HOUR * 60
    return Config.DAY_EARLY_LEAVE_HOUR * 60


def is_early_leave(check_out_time: time, total_hours: float, shift_code: str) -> bool:
    """Left before the shift's early threshold without a full shift worked"""
    before_threshold = minutes_since_midnight(check_out_time) < early_leave_threshold_minutes(shift_code)
    return before_threshold and total_hours < Config.MIN_FULL_SHIFT_HOURS


# ==========================================
# Lookups
# ==========================================

def get_employee_by_telegram(cursor, telegram_id) -> Dict:
    """Worker by external messaging handle; raises NotFound"""
    cursor.execute("""
        SELECT id, full_name, branch_id, default_shift, position,
               telegram_id, preferred_language, remote_work_enabled
        FROM employees
        WHERE telegram_id = %s
    """, (str(telegram_id),))

    employee = cursor.fetchone()
    if not employee:
        raise NotFound("Employee not found", {"telegram_id": str(telegram_id)})
    return employee


def get_session(cursor, attendance_id) -> Optional[Dict]:
    cursor.execute(f"""
        SELECT {SESSION_COLUMNS}
        FROM attendance
        WHERE id = %s
    """, (attendance_id,))
    return cursor.fetchone()


def get_active_session(cursor, employee_id) -> Optional[Dict]:
    """Latest open session for a worker, or None"""
    cursor.execute(f"""
        SELECT {SESSION_COLUMNS}
        FROM attendance
        WHERE employee_id = %s AND check_out IS NULL
        ORDER BY date DESC, check_in DESC
        LIMIT 1
    """, (employee_id,))
    return cursor.fetchone()


def get_branch_name(cursor, branch_id) -> str:
    if branch_id is None:
        return ''
    cursor.execute("SELECT name FROM branches WHERE id = %s", (branch_id,))
    row = cursor.fetchone()
    return row['name'] if row else ''


def serialize_session(record: Dict) -> Dict:
    """JSON-safe view of an attendance row"""
    data = {}
    for key, value in record.items():
        if isinstance(value, (datetime, date)):
            data[key] = value.isoformat()
        elif isinstance(value, time):
            data[key] = value.strftime('%H:%M:%S')
        elif isinstance(value, Decimal):
            data[key] = float(value)
        else:
            data[key] = value
    return data


# ==========================================
# Open
# ==========================================

def open_session_with_cursor(cursor, employee: Dict, target_date: date, observed_time: time,
                             branch_id, shift_code: str, verification_type: str,
                             ip_address: str = None) -> Dict:
    """
    Insert an open session unless the worker already has one.

    The partial unique index on (employee_id) WHERE check_out IS NULL makes
    the insert the only guard; an empty RETURNING is the conflict case.
    """
    late = is_late(cursor, employee['id'], shift_code, target_date, minutes_since_midnight(observed_time))
    status = SessionStatus.LATE if late else SessionStatus.PRESENT

    cursor.execute(f"""
        INSERT INTO attendance (
            employee_id, date, check_in, check_in_branch_id,
            shift_id, is_late, status, verification_type, ip_address
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (employee_id) WHERE check_out IS NULL DO NOTHING
        RETURNING {SESSION_COLUMNS}
    """, (
        employee['id'], target_date, observed_time, branch_id,
        shift_code, late, status, verification_type, ip_address
    ))

    record = cursor.fetchone()
    if record is None:
        existing = get_active_session(cursor, employee['id'])
        check_in = to_time(existing['check_in']) if existing else None
        check_in_str = check_in.strftime('%H:%M') if check_in else None
        raise Conflict(
            f"Already checked in at {check_in_str}. Please check out first." if check_in_str
            else "Already checked in. Please check out first.",
            {
                "active_attendance_id": existing['id'] if existing else None,
                "check_in": check_in_str
            }
        )

    logger.info(
        f"✅ Session opened: employee {employee['id']} attendance {record['id']} "
        f"shift={shift_code} late={late} via {verification_type}"
    )
    return record


def open_session(employee_id, target_date: date, branch_id, shift_code: str,
                 observed_time: time, verification_type: str = VerificationType.IN_PERSON,
                 ip_address: str = None) -> Dict:
    """Open a presence session for a known worker"""
    with get_db_cursor() as cursor:
        cursor.execute("""
            SELECT id, full_name, branch_id, default_shift, position,
                   telegram_id, preferred_language, remote_work_enabled
            FROM employees
            WHERE id = %s
        """, (employee_id,))
        employee = cursor.fetchone()
        if not employee:
            raise NotFound("Employee not found", {"employee_id": employee_id})

        record = open_session_with_cursor(
            cursor, employee, target_date, observed_time, branch_id,
            shift_code, verification_type, ip_address
        )
        return serialize_session(record)


def _validate_shift(shift_id):
    if shift_id and not ShiftCode.is_valid(shift_id):
        raise ValidationError(f"Invalid shift '{shift_id}'. Use one of {ShiftCode.all()}")


def _check_in_payload(record: Dict, employee: Dict, branch_name: str, is_remote: bool) -> Dict:
    check_in = to_time(record['check_in'])
    return {
        "id": record['id'],
        "checkIn": check_in.strftime('%H:%M') if check_in else None,
        "branchId": record['check_in_branch_id'],
        "branchName": branch_name,
        "verificationType": record['verification_type'],
        "isLate": bool(record['is_late']),
        "isRemote": is_remote,
        "shiftId": record['shift_id'],
        "employeeName": employee['full_name'],
        "language": employee.get('preferred_language') or 'uz'
    }


def check_in_by_ip(telegram_id, client_ip: str, shift_id: str = None, now: datetime = None) -> Dict:
    """
    In-person check-in: the observed address must belong to a branch.
    A miss is reported, not raised, so the client can offer remote check-in.
    """
    _validate_shift(shift_id)
    now = now or now_local()

    with get_db_cursor() as cursor:
        employee = get_employee_by_telegram(cursor, telegram_id)

        geofence = verify_location(cursor, client_ip)
        if not geofence['matched']:
            return {
                "success": False,
                "error": "ip_not_matched",
                "message": "Office network not detected",
                "detectedIp": client_ip,
                "remoteWorkEnabled": bool(employee.get('remote_work_enabled'))
            }

        shift_code = resolve_shift(
            cursor, employee['id'], now.date(), shift_id,
            employee.get('default_shift'), employee.get('position')
        )
        record = open_session_with_cursor(
            cursor, employee, now.date(), now.time().replace(microsecond=0, tzinfo=None),
            geofence['branch']['id'], shift_code, VerificationType.IN_PERSON, client_ip
        )

        return {
            "success": True,
            "data": _check_in_payload(record, employee, geofence['branch']['name'], is_remote=False)
        }


def remote_check_in(telegram_id, shift_id: str = None, now: datetime = None) -> Dict:
    """Remote check-in at the worker's home branch; no geofence"""
    _validate_shift(shift_id)
    now = now or now_local()

    with get_db_cursor() as cursor:
        employee = get_employee_by_telegram(cursor, telegram_id)

        if not employee.get('remote_work_enabled'):
            raise RemoteWorkNotAllowed("Remote work is not enabled for this employee")

        shift_code = resolve_shift(
            cursor, employee['id'], now.date(), shift_id,
            employee.get('default_shift'), employee.get('position')
        )
        record = open_session_with_cursor(
            cursor, employee, now.date(), now.time().replace(microsecond=0, tzinfo=None),
            employee.get('branch_id'), shift_code, VerificationType.REMOTE
        )

        return {
            "success": True,
            "data": _check_in_payload(record, employee, 'Remote', is_remote=True)
        }


# ==========================================
# Close
# ==========================================

def close_session_with_cursor(cursor, attendance_id, check_out_time: time,
                              check_out_date: date = None,
                              checkout_type: str = CheckoutType.MANUAL) -> Dict:
    """
    Close an open session. NotFound for unknown ids, Conflict when the
    session is already closed (including losing a concurrent close).
    """
    record = get_session(cursor, attendance_id)
    if not record:
        raise NotFound("Attendance record not found", {"attendance_id": attendance_id})

    if record['check_out'] is not None:
        raise Conflict("Employee has already checked out", {
            "attendance_id": record['id'],
            "check_out": str(record['check_out'])
        })

    check_in_date = to_date(record['date'])
    check_in_time = to_time(record['check_in'])
    shift_code = record.get('shift_id') or ShiftCode.DAY

    elapsed_minutes = compute_elapsed_minutes(check_in_date, check_in_time, check_out_time, check_out_date)
    total_hours = round_hours(elapsed_minutes)
    early_leave = is_early_leave(check_out_time, total_hours, shift_code)
    new_status = SessionStatus.EARLY_LEAVE if early_leave else record['status']

    cursor.execute(f"""
        UPDATE attendance
        SET
            check_out = %s,
            check_out_date = %s,
            total_hours = %s,
            status = %s,
            checkout_type = %s,
            updated_at = NOW()
        WHERE id = %s AND check_out IS NULL
        RETURNING {SESSION_COLUMNS}
    """, (
        check_out_time, check_out_date, total_hours, new_status, checkout_type, attendance_id
    ))

    updated = cursor.fetchone()
    if updated is None:
        raise Conflict("Employee has already checked out", {"attendance_id": attendance_id})

    logger.info(
        f"✅ Session closed: attendance {attendance_id} at {check_out_time} "
        f"({total_hours}h, early_leave={early_leave}, via {checkout_type})"
    )

    return {
        "record": updated,
        "totalHours": total_hours,
        "isEarlyLeave": early_leave
    }


def close_session(attendance_id, check_out_time: str, check_out_date: str = None) -> Dict:
    """
    Administrative checkout.

    check_out_time: 'HH:MM' or 'HH:MM:SS'
    check_out_date: optional 'YYYY-MM-DD'
    """
    if not check_out_time:
        raise ValidationError("Check-out time is required")
    try:
        parsed_time = parse_time_of_day(check_out_time)
    except (TypeError, ValueError):
        raise ValidationError("Invalid time format. Use HH:MM or HH:MM:SS")

    parsed_date = None
    if check_out_date:
        try:
            parsed_date = parse_date(check_out_date)
        except (TypeError, ValueError):
            raise ValidationError("Invalid date format. Use YYYY-MM-DD")

    with get_db_cursor() as cursor:
        result = close_session_with_cursor(cursor, attendance_id, parsed_time, parsed_date)

    return {
        "success": True,
        "record": serialize_session(result['record']),
        "totalHours": result['totalHours'],
        "isEarlyLeave": result['isEarlyLeave']
    }


# ==========================================
# Status
# ==========================================

def get_presence_status(telegram_id) -> Dict:
    """Worker's open session, if any"""
    with get_db_cursor() as cursor:
        employee = get_employee_by_telegram(cursor, telegram_id)
        session = get_active_session(cursor, employee['id'])

        if not session:
            return {
                "success": True,
                "data": {
                    "is_checked_in": False,
                    "employee_name": employee['full_name']
                }
            }

        return {
            "success": True,
            "data": {
                "is_checked_in": True,
                "employee_name": employee['full_name'],
                "branch_name": get_branch_name(cursor, session['check_in_branch_id']),
                "session": serialize_session(session)
            }
        }
