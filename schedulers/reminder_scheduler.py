"""
Reminder Scheduler
Runs checkout reminder jobs:
  - Day shift ladder start at DAY_REMINDER_TIME (default 18:00)
  - Night shift ladder start at NIGHT_REMINDER_TIME (default 09:00)
  - Due-reminder sweep every REMINDER_SWEEP_MINUTES
"""

from apscheduler.schedulers.background import BackgroundScheduler
from config import Config, ShiftCode
from services.reminder_service import start_reminder_ladder, dispatch_due_reminders
from services.exceptions import PresenceError
from utils.timez import get_timezone, parse_time_of_day
import logging

logger = logging.getLogger(__name__)


def start_ladder_job(shift_code: str):
    try:
        start_reminder_ladder(shift_code)
    except PresenceError as e:
        logger.error(f"❌ Reminder ladder for '{shift_code}' failed: {e.message}")


def sweep_job():
    try:
        dispatch_due_reminders()
    except PresenceError as e:
        logger.error(f"❌ Reminder sweep failed: {e.message}")


def start_reminder_scheduler():
    """Start the reminder scheduler"""
    scheduler = BackgroundScheduler(timezone=get_timezone())

    day_time = parse_time_of_day(Config.DAY_REMINDER_TIME)
    night_time = parse_time_of_day(Config.NIGHT_REMINDER_TIME)

    scheduler.add_job(
        start_ladder_job,
        'cron',
        args=[ShiftCode.DAY],
        hour=day_time.hour,
        minute=day_time.minute,
        id='day_reminder_ladder_job'
    )

    scheduler.add_job(
        start_ladder_job,
        'cron',
        args=[ShiftCode.NIGHT],
        hour=night_time.hour,
        minute=night_time.minute,
        id='night_reminder_ladder_job'
    )

    scheduler.add_job(
        sweep_job,
        'interval',
        minutes=Config.REMINDER_SWEEP_MINUTES,
        id='reminder_sweep_job',
        misfire_grace_time=60
    )

    scheduler.start()

    logger.info("✅ Reminder scheduler started")
    logger.info(f"   - Day shift reminders from {Config.DAY_REMINDER_TIME}")
    logger.info(f"   - Night shift reminders from {Config.NIGHT_REMINDER_TIME}")
    logger.info(f"   - Due reminders swept every {Config.REMINDER_SWEEP_MINUTES} minutes")

    return scheduler
