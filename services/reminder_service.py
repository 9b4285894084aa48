"""
Reminder Service
Checkout reminder state machine: presence probe, worker responses,
ladder start and due-reminder dispatch
"""

from datetime import datetime, timedelta
from typing import Dict, Optional
import logging

from config import ReminderStatus, ResponseType, CheckoutType
from database.connection import get_db_cursor
from services.exceptions import Conflict, NotFound, ValidationError, UpstreamDeliveryFailure
from services.attendance_service import (
    get_employee_by_telegram, get_session, get_active_session, get_branch_name,
    close_session_with_cursor
)
from services.geofence_service import verify_location
from services.shift_service import legacy_shift_from_check_in
from services.telegram_service import send_checkout_prompt
from utils.timez import now_local, end_of_day

logger = logging.getLogger(__name__)

# Delay until the next prompt; None means "end of the civil day"
NEXT_PROMPT_DELAYS = {
    ResponseType.IN_45_MIN: timedelta(minutes=45),
    ResponseType.AT_WORK: timedelta(minutes=45),
    ResponseType.IN_2_HOURS: timedelta(hours=2),
    ResponseType.ALL_DAY: None,
}

# Responses that do not schedule a follow-up prompt
TERMINAL_RESPONSES = (ResponseType.I_LEFT, ResponseType.ALL_DAY)

ACTIVE_STATUSES = tuple(ReminderStatus.active())
WAITING_STATUSES = tuple(ReminderStatus.waiting())


def next_prompt_time(response_type: str, now: datetime) -> Optional[datetime]:
    """When the worker should be asked again; None for i_left"""
    if response_type == ResponseType.I_LEFT:
        return None
    delay = NEXT_PROMPT_DELAYS[response_type]
    if delay is None:
        return end_of_day(now)
    return now + delay


def session_shift_code(session: Dict) -> str:
    """Stored shift code, else the check-in time heuristic"""
    return session.get('shift_id') or legacy_shift_from_check_in(session.get('check_in'))


def _resolve_session(cursor, employee: Dict, attendance_id=None) -> Dict:
    """Given session of this worker, or the worker's open one"""
    if attendance_id is not None:
        session = get_session(cursor, attendance_id)
        if not session or session['employee_id'] != employee['id']:
            raise NotFound("Attendance record not found", {"attendance_id": attendance_id})
        return session

    session = get_active_session(cursor, employee['id'])
    if not session:
        raise NotFound("No active attendance session", {"employee_id": employee['id']})
    return session


def get_latest_active_reminder(cursor, attendance_id) -> Optional[Dict]:
    cursor.execute("""
        SELECT id, employee_id, attendance_id, shift_type, status, scheduled_for
        FROM checkout_reminders
        WHERE attendance_id = %s AND status IN %s
        ORDER BY created_at DESC, id DESC
        LIMIT 1
    """, (attendance_id, ACTIVE_STATUSES))
    return cursor.fetchone()


# ==========================================
# Probe
# ==========================================

def _stamp_verification(cursor, attendance_id, ip_address: str, ip_verified: bool) -> Optional[int]:
    cursor.execute("""
        UPDATE checkout_reminders
        SET ip_address = %s, ip_verified = %s
        WHERE attendance_id = %s AND status IN %s
        RETURNING id
    """, (ip_address, ip_verified, attendance_id, ACTIVE_STATUSES))
    row = cursor.fetchone()
    return row['id'] if row else None


def _insert_sent_reminder(cursor, session: Dict, ip_address: str, ip_verified: bool,
                          now: datetime) -> Optional[int]:
    cursor.execute("""
        INSERT INTO checkout_reminders (
            employee_id, attendance_id, shift_type, status,
            scheduled_for, reminder_sent_at, ip_address, ip_verified
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT DO NOTHING
        RETURNING id
    """, (
        session['employee_id'], session['id'], session_shift_code(session), ReminderStatus.SENT,
        now, now, ip_address, ip_verified
    ))
    row = cursor.fetchone()
    return row['id'] if row else None


def probe(telegram_id, client_ip: str, attendance_id=None, now: datetime = None) -> Dict:
    """
    Presence probe from the mini-app.

    Verifies the observed address and records the result on the session's
    active reminder, creating a 'sent' reminder when none exists.
    """
    now = now or now_local()

    with get_db_cursor() as cursor:
        employee = get_employee_by_telegram(cursor, telegram_id)
        session = _resolve_session(cursor, employee, attendance_id)
        geofence = verify_location(cursor, client_ip)
        matched = geofence['matched']

        reminder_id = _stamp_verification(cursor, session['id'], client_ip, matched)
        if reminder_id is None:
            reminder_id = _insert_sent_reminder(cursor, session, client_ip, matched, now)
            if reminder_id is None:
                # A concurrent probe created the reminder first
                reminder_id = _stamp_verification(cursor, session['id'], client_ip, matched)
                if reminder_id is None:
                    raise Conflict("Reminder changed concurrently, retry", {"attendance_id": session['id']})
            else:
                logger.info(f"Reminder {reminder_id} created by probe for attendance {session['id']}")

        if matched:
            branch_name = geofence['branch']['name']
        else:
            branch_name = get_branch_name(cursor, session['check_in_branch_id'])

        return {
            "success": True,
            "data": {
                "ipMatched": matched,
                "branchName": branch_name,
                "attendanceId": session['id'],
                "reminderId": reminder_id,
                "clientIp": client_ip
            }
        }


# ==========================================
# Respond
# ==========================================

def _claim_reminder(cursor, reminder_id, employee: Dict, response_type: str,
                    ip_address: Optional[str], ip_verified: Optional[bool], now: datetime) -> Dict:
    """Complete a reminder exactly once; NotFound or Conflict otherwise"""
    cursor.execute("""
        UPDATE checkout_reminders
        SET
            status = %s,
            response_type = %s,
            response_received_at = %s,
            ip_address = COALESCE(%s, ip_address),
            ip_verified = COALESCE(%s, ip_verified)
        WHERE id = %s AND employee_id = %s AND status <> %s
        RETURNING id, employee_id, attendance_id, shift_type
    """, (
        ReminderStatus.COMPLETED, response_type, now, ip_address, ip_verified,
        reminder_id, employee['id'], ReminderStatus.COMPLETED
    ))
    claimed = cursor.fetchone()
    if claimed:
        return claimed

    cursor.execute("""
        SELECT id, employee_id, status, response_type
        FROM checkout_reminders
        WHERE id = %s
    """, (reminder_id,))
    existing = cursor.fetchone()

    if not existing or existing['employee_id'] != employee['id']:
        raise NotFound("Reminder not found", {"reminder_id": reminder_id})

    raise Conflict("Reminder already answered", {
        "reminder_id": reminder_id,
        "response_type": existing['response_type']
    })


def _schedule_follow_up(cursor, session: Dict, shift_code: str, scheduled_for: datetime) -> Optional[int]:
    cursor.execute("""
        INSERT INTO checkout_reminders (
            employee_id, attendance_id, shift_type, status, scheduled_for
        ) VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT DO NOTHING
        RETURNING id
    """, (session['employee_id'], session['id'], shift_code, ReminderStatus.SCHEDULED, scheduled_for))
    row = cursor.fetchone()
    return row['id'] if row else None


def respond(telegram_id, response_type: str, reminder_id=None, attendance_id=None,
            ip_address: str = None, ip_verified: bool = None, now: datetime = None) -> Dict:
    """
    Apply a worker's answer to a checkout prompt.

    i_left closes the session at `now`; all_day completes the reminder with
    no follow-up; the rest schedule a new reminder from NEXT_PROMPT_DELAYS.
    Runs in one transaction.
    """
    if not ResponseType.is_valid(response_type):
        raise ValidationError(
            f"Invalid response type '{response_type}'. Use one of {ResponseType.all()}",
            {"response_type": response_type}
        )

    now = now or now_local()

    with get_db_cursor() as cursor:
        employee = get_employee_by_telegram(cursor, telegram_id)

        reminder = None
        if reminder_id is not None:
            reminder = _claim_reminder(cursor, reminder_id, employee, response_type, ip_address, ip_verified, now)
            if attendance_id is not None and attendance_id != reminder['attendance_id']:
                raise NotFound("Reminder does not belong to this attendance record", {
                    "reminder_id": reminder_id,
                    "attendance_id": attendance_id
                })
            session = _resolve_session(cursor, employee, reminder['attendance_id'])
        else:
            session = _resolve_session(cursor, employee, attendance_id)
            latest = get_latest_active_reminder(cursor, session['id'])
            if latest:
                reminder = _claim_reminder(cursor, latest['id'], employee, response_type, ip_address, ip_verified, now)
            else:
                logger.info(f"No active reminder for attendance {session['id']}, processing {response_type} without one")

        result = {
            "responseType": response_type,
            "reminderId": reminder['id'] if reminder else None,
            "attendanceId": session['id'],
            "checkedOut": False,
            "language": employee.get('preferred_language') or 'uz',
            "nextReminderId": None,
            "nextReminderAt": None
        }

        if response_type == ResponseType.I_LEFT:
            closed = close_session_with_cursor(
                cursor, session['id'], now.time().replace(microsecond=0), now.date(),
                CheckoutType.REMINDER_CONFIRMED
            )
            result.update({
                "checkedOut": True,
                "totalHours": closed['totalHours'],
                "isEarlyLeave": closed['isEarlyLeave']
            })
            return {"success": True, "data": result}

        next_at = next_prompt_time(response_type, now)
        result["nextReminderAt"] = next_at.isoformat()

        if response_type in TERMINAL_RESPONSES:
            logger.info(f"Attendance {session['id']}: {response_type}, no more prompts today")
            return {"success": True, "data": result}

        if session['check_out'] is not None:
            logger.info(f"Attendance {session['id']} already closed, no follow-up scheduled")
            return {"success": True, "data": result}

        shift_code = (reminder or {}).get('shift_type') or session_shift_code(session)
        next_id = _schedule_follow_up(cursor, session, shift_code, next_at)
        if next_id is None:
            logger.warning(f"⚠️ Attendance {session['id']} already has an active reminder, follow-up not created")
        else:
            logger.info(f"Reminder {next_id} scheduled for {next_at} (attendance {session['id']}, {response_type})")

        result["nextReminderId"] = next_id
        return {"success": True, "data": result}


# ==========================================
# Ladder start & dispatch
# ==========================================

def start_reminder_ladder(shift_code: str, now: datetime = None) -> int:
    """
    Schedule a first reminder, due now, for every open session of the shift
    whose worker can be messaged and has no active reminder.
    """
    now = now or now_local()
    created = 0

    with get_db_cursor() as cursor:
        cursor.execute("""
            SELECT a.id, a.employee_id, a.shift_id, a.check_in
            FROM attendance a
            JOIN employees e ON e.id = a.employee_id
            WHERE a.check_out IS NULL
              AND e.telegram_id IS NOT NULL
              AND NOT EXISTS (
                  SELECT 1 FROM checkout_reminders r
                  WHERE r.attendance_id = a.id AND r.status IN %s
              )
        """, (ACTIVE_STATUSES,))
        sessions = cursor.fetchall() or []

        for session in sessions:
            session_shift = session_shift_code(session)
            if session_shift != shift_code:
                continue
            if _schedule_follow_up(cursor, session, session_shift, now):
                created += 1

    logger.info(f"Reminder ladder started for {created} open '{shift_code}' sessions")
    return created


def _complete_closed_session_reminders(cursor) -> int:
    cursor.execute("""
        UPDATE checkout_reminders r
        SET status = %s
        FROM attendance a
        WHERE a.id = r.attendance_id
          AND a.check_out IS NOT NULL
          AND r.status IN %s
        RETURNING r.id
    """, (ReminderStatus.COMPLETED, ACTIVE_STATUSES))
    return len(cursor.fetchall() or [])


def _claim_for_delivery(reminder_id, now: datetime) -> bool:
    with get_db_cursor() as cursor:
        cursor.execute("""
            UPDATE checkout_reminders
            SET status = %s, reminder_sent_at = %s, delivery_error = NULL
            WHERE id = %s AND status IN %s
            RETURNING id
        """, (ReminderStatus.SENT, now, reminder_id, WAITING_STATUSES))
        return cursor.fetchone() is not None


def _record_delivery(reminder_id, message_id=None, error: str = None):
    with get_db_cursor() as cursor:
        cursor.execute("""
            UPDATE checkout_reminders
            SET telegram_message_id = COALESCE(%s, telegram_message_id), delivery_error = %s
            WHERE id = %s
        """, (message_id, error, reminder_id))


def dispatch_due_reminders(now: datetime = None) -> Dict:
    """
    Send every due reminder of an open session.

    Each reminder is claimed (scheduled -> sent) and committed before the
    prompt goes out; a delivery failure is recorded on the row and does not
    undo the claim.
    """
    now = now or now_local()
    stats = {"completed": 0, "sent": 0, "failed": 0, "skipped": 0}

    with get_db_cursor() as cursor:
        stats["completed"] = _complete_closed_session_reminders(cursor)

        cursor.execute("""
            SELECT r.id, r.attendance_id, r.employee_id,
                   e.telegram_id, e.full_name, e.preferred_language
            FROM checkout_reminders r
            JOIN attendance a ON a.id = r.attendance_id
            JOIN employees e ON e.id = r.employee_id
            WHERE r.status IN %s
              AND r.scheduled_for <= %s
              AND a.check_out IS NULL
              AND e.telegram_id IS NOT NULL
            ORDER BY r.scheduled_for
        """, (WAITING_STATUSES, now))
        due = cursor.fetchall() or []

    for reminder in due:
        if not _claim_for_delivery(reminder['id'], now):
            stats["skipped"] += 1
            continue

        try:
            message_id = send_checkout_prompt(reminder, reminder['id'])
        except UpstreamDeliveryFailure as e:
            logger.error(f"❌ Reminder {reminder['id']} delivery failed: {e.message}")
            _record_delivery(reminder['id'], error=e.message)
            stats["failed"] += 1
            continue

        if message_id is not None:
            _record_delivery(reminder['id'], message_id=message_id)
        stats["sent"] += 1

    logger.info(
        f"Reminder sweep: {stats['sent']} sent, {stats['failed']} failed, "
        f"{stats['skipped']} skipped, {stats['completed']} completed for closed sessions"
    )
    return stats


def run_reminder_cycle(shift_code: str = None, now: datetime = None) -> Dict:
    """Optional ladder start for one shift, then dispatch everything due"""
    now = now or now_local()
    started = start_reminder_ladder(shift_code, now) if shift_code else 0
    stats = dispatch_due_reminders(now)
    stats["started"] = started
    return stats
