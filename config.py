"""
Configuration Management
All application settings and environment variables
"""

import os
from dotenv import load_dotenv
from typing import List

# Load environment variables
load_dotenv()


class Config:
    """Application configuration"""

    # Flask Configuration
    DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'
    TESTING = os.getenv('TESTING', 'False').lower() == 'true'
    PORT = int(os.getenv('PORT', 5000))

    # Database Configuration
    DATABASE_HOST = os.getenv('DATABASE_HOST', 'localhost')
    DATABASE_PORT = int(os.getenv('DATABASE_PORT', 5432))
    DATABASE_NAME = os.getenv('DATABASE_NAME', 'presence')
    DATABASE_USER = os.getenv('DATABASE_USER', 'postgres')
    DATABASE_PASSWORD = os.getenv('DATABASE_PASSWORD', 'postgres')
    DB_POOL_MIN = int(os.getenv('DB_POOL_MIN', 2))
    DB_POOL_MAX = int(os.getenv('DB_POOL_MAX', 10))

    # Workplace civil time. All branches share one timezone.
    TIMEZONE = os.getenv('TIMEZONE', 'Asia/Tashkent')

    # Lateness / early leave
    LATE_GRACE_MINUTES = int(os.getenv('LATE_GRACE_MINUTES', 15))
    DAY_EARLY_LEAVE_HOUR = int(os.getenv('DAY_EARLY_LEAVE_HOUR', 17))
    NIGHT_EARLY_LEAVE_HOUR = int(os.getenv('NIGHT_EARLY_LEAVE_HOUR', 9))
    MIN_FULL_SHIFT_HOURS = float(os.getenv('MIN_FULL_SHIFT_HOURS', 8))
    MAX_SANE_SESSION_HOURS = int(os.getenv('MAX_SANE_SESSION_HOURS', 48))

    # Check-in at or before this time is labelled day shift by the legacy heuristic
    LEGACY_NIGHT_CUTOFF = os.getenv('LEGACY_NIGHT_CUTOFF', '15:30')

    # Telegram Bot API Configuration
    TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
    TELEGRAM_API_BASE = os.getenv('TELEGRAM_API_BASE', 'https://api.telegram.org')
    TELEGRAM_TIMEOUT = int(os.getenv('TELEGRAM_TIMEOUT', 15))
    TELEGRAM_WEBHOOK_SECRET = os.getenv('TELEGRAM_WEBHOOK_SECRET', '')

    # Reminder jobs
    SCHEDULER_ENABLED = os.getenv('SCHEDULER_ENABLED', 'False').lower() == 'true'
    REMINDER_SWEEP_MINUTES = int(os.getenv('REMINDER_SWEEP_MINUTES', 5))
    DAY_REMINDER_TIME = os.getenv('DAY_REMINDER_TIME', '18:00')
    NIGHT_REMINDER_TIME = os.getenv('NIGHT_REMINDER_TIME', '09:00')

    # CORS Configuration
    CORS_ORIGINS = "*"
    # Logging Configuration
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', 'logs/app.log')
    LOG_MAX_BYTES = int(os.getenv('LOG_MAX_BYTES', 10485760))  # 10MB
    LOG_BACKUP_COUNT = int(os.getenv('LOG_BACKUP_COUNT', 5))


class ShiftCode:
    """Shift codes"""
    DAY = 'day'
    NIGHT = 'night'

    @classmethod
    def all(cls) -> List[str]:
        return [cls.DAY, cls.NIGHT]

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return code in cls.all()


class SessionStatus:
    """Presence session status values"""
    PRESENT = 'present'
    LATE = 'late'
    EARLY_LEAVE = 'early_leave'


class VerificationType:
    """How a presence session was opened"""
    IN_PERSON = 'in_person'
    REMOTE = 'remote'


class CheckoutType:
    """How a presence session was closed"""
    MANUAL = 'manual'
    REMINDER_CONFIRMED = 'reminder_confirmed'


class ReminderStatus:
    """Checkout reminder lifecycle"""
    SCHEDULED = 'scheduled'
    PENDING = 'pending'  # legacy synonym of SCHEDULED
    SENT = 'sent'
    COMPLETED = 'completed'

    @classmethod
    def active(cls) -> List[str]:
        """States that count as the session's one active reminder"""
        return [cls.SCHEDULED, cls.PENDING, cls.SENT]

    @classmethod
    def waiting(cls) -> List[str]:
        """States not yet delivered"""
        return [cls.SCHEDULED, cls.PENDING]


class ResponseType:
    """Worker answers to a checkout prompt"""
    I_LEFT = 'i_left'
    AT_WORK = 'im_at_work'
    IN_45_MIN = '45min'
    IN_2_HOURS = '2hours'
    ALL_DAY = 'all_day'

    # Short codes used in older Telegram buttons
    LEGACY_CODES = {
        'il': I_LEFT,
        'aw': AT_WORK,
        '45': IN_45_MIN,
        '2h': IN_2_HOURS,
        'ad': ALL_DAY,
    }

    @classmethod
    def all(cls) -> List[str]:
        return [cls.I_LEFT, cls.AT_WORK, cls.IN_45_MIN, cls.IN_2_HOURS, cls.ALL_DAY]

    @classmethod
    def is_valid(cls, value: str) -> bool:
        return value in cls.all()

    @classmethod
    def normalize(cls, value: str):
        """Canonical code for a canonical or legacy short code, else None"""
        if value in cls.all():
            return value
        return cls.LEGACY_CODES.get(value)
