"""
Database Connection and Initialization
PostgreSQL connection management with connection pooling
"""

import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor
from config import Config
from services.exceptions import ConfigurationUnavailable
import logging
from contextlib import contextmanager

logger = logging.getLogger(__name__)

# ==========================================
# CONNECTION POOL
# ==========================================

connection_pool = None


def initialize_connection_pool(min_conn=None, max_conn=None):
    """
    Initialize PostgreSQL connection pool
    Shared by request threads and scheduler jobs
    """
    global connection_pool

    min_conn = min_conn or Config.DB_POOL_MIN
    max_conn = max_conn or Config.DB_POOL_MAX

    try:
        connection_pool = pool.ThreadedConnectionPool(
            min_conn,
            max_conn,
            host=Config.DATABASE_HOST,
            port=Config.DATABASE_PORT,
            database=Config.DATABASE_NAME,
            user=Config.DATABASE_USER,
            password=Config.DATABASE_PASSWORD,
            cursor_factory=RealDictCursor
        )
        logger.info(f"Connection pool created (min={min_conn}, max={max_conn})")
        return True

    except psycopg2.Error as e:
        logger.error(f"Error creating connection pool: {e}")
        return False


def close_connection_pool():
    """Close all connections in the pool"""
    global connection_pool

    if connection_pool:
        connection_pool.closeall()
        connection_pool = None
        logger.info("Connection pool closed")


def get_db_connection():
    """
    Get database connection from pool (or create new one)
    Returns connection object with RealDictCursor

    Raises ConfigurationUnavailable when the database cannot be reached.
    """
    try:
        if connection_pool:
            conn = connection_pool.getconn()
            if conn:
                return conn

        return psycopg2.connect(
            host=Config.DATABASE_HOST,
            port=Config.DATABASE_PORT,
            database=Config.DATABASE_NAME,
            user=Config.DATABASE_USER,
            password=Config.DATABASE_PASSWORD,
            cursor_factory=RealDictCursor
        )

    except (psycopg2.OperationalError, psycopg2.InterfaceError, pool.PoolError) as e:
        logger.error(f"Database connection error: {e}")
        raise ConfigurationUnavailable("Database is unavailable") from e


def return_connection(conn):
    """Return connection to pool"""
    if connection_pool and conn:
        connection_pool.putconn(conn, close=bool(conn.closed))
    elif conn:
        conn.close()


@contextmanager
def get_db_cursor():
    """
    Context manager for database operations
    Auto-handles connection, commit/rollback and cursor lifecycle

    Usage:
        with get_db_cursor() as cursor:
            cursor.execute("SELECT * FROM table")
            results = cursor.fetchall()
    """
    conn = get_db_connection()
    cursor = conn.cursor()

    try:
        yield cursor
        conn.commit()

    except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
        try:
            conn.rollback()
        except psycopg2.Error as rollback_error:
            logger.warning(f"Rollback on broken connection failed: {rollback_error}")
        logger.error(f"❌ Database operation error: {e}")
        raise ConfigurationUnavailable("Database is unavailable") from e

    except Exception:
        conn.rollback()
        raise

    finally:
        cursor.close()
        return_connection(conn)


@contextmanager
def savepoint(cursor, name: str):
    """
    Run a block inside a SAVEPOINT so a failed statement does not abort
    the surrounding transaction. Exceptions still propagate.
    """
    cursor.execute(f"SAVEPOINT {name}")
    try:
        yield cursor
    except Exception:
        cursor.execute(f"ROLLBACK TO SAVEPOINT {name}")
        cursor.execute(f"RELEASE SAVEPOINT {name}")
        raise
    cursor.execute(f"RELEASE SAVEPOINT {name}")


def ping_database() -> bool:
    """Round-trip a trivial query"""
    with get_db_cursor() as cursor:
        cursor.execute("SELECT 1")
        return cursor.fetchone() is not None


def init_database():
    """Initialize all database tables (idempotent)"""
    conn = get_db_connection()
    cursor = conn.cursor()

    try:
        logger.info("Initializing database tables...")

        # ==================== DIRECTORY TABLES ====================

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS branches (
                id SERIAL PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                office_ips TEXT[],
                created_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        logger.info("✓ Branches table ready")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS shifts (
                id VARCHAR(20) PRIMARY KEY,
                name VARCHAR(50) NOT NULL,
                start_hour INTEGER NOT NULL,
                end_hour INTEGER NOT NULL,
                late_threshold_minutes INTEGER NOT NULL DEFAULT 15
            )
        """)

        cursor.execute("""
            INSERT INTO shifts (id, name, start_hour, end_hour, late_threshold_minutes)
            VALUES
                ('day', 'Day Shift', 9, 18, 15),
                ('night', 'Night Shift', 18, 9, 15)
            ON CONFLICT (id) DO NOTHING
        """)

        logger.info("✓ Shifts table ready")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS employees (
                id SERIAL PRIMARY KEY,
                full_name VARCHAR(255) NOT NULL,
                branch_id INTEGER REFERENCES branches(id),
                default_shift VARCHAR(20) REFERENCES shifts(id),
                position VARCHAR(255),
                telegram_id VARCHAR(50) UNIQUE,
                preferred_language VARCHAR(5) DEFAULT 'uz',
                remote_work_enabled BOOLEAN DEFAULT false,
                status VARCHAR(20) DEFAULT 'active',
                created_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        logger.info("✓ Employees table ready")

        # ==================== SCHEDULING ====================

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS shift_schedules (
                id SERIAL PRIMARY KEY,
                week_start DATE NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'draft',
                created_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS shift_assignments (
                id SERIAL PRIMARY KEY,
                schedule_id INTEGER NOT NULL REFERENCES shift_schedules(id) ON DELETE CASCADE,
                employee_id INTEGER NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
                date DATE NOT NULL,
                shift_type VARCHAR(20) NOT NULL,
                start_time TIME,
                end_time TIME,
                UNIQUE (employee_id, date)
            )
        """)

        logger.info("✓ Shift schedule tables ready")

        # ==================== PRESENCE ====================

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS attendance (
                id SERIAL PRIMARY KEY,
                employee_id INTEGER NOT NULL REFERENCES employees(id),
                date DATE NOT NULL,
                check_in TIME NOT NULL,
                check_in_branch_id INTEGER REFERENCES branches(id),
                check_out TIME,
                check_out_date DATE,
                shift_id VARCHAR(20),
                is_late BOOLEAN DEFAULT false,
                status VARCHAR(20) NOT NULL DEFAULT 'present',
                total_hours NUMERIC(5,1),
                verification_type VARCHAR(20) NOT NULL,
                checkout_type VARCHAR(30),
                ip_address VARCHAR(64),
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        # One open session per worker
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_attendance_one_open
            ON attendance(employee_id) WHERE check_out IS NULL
        """)

        logger.info("✓ Attendance table ready")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS checkout_reminders (
                id SERIAL PRIMARY KEY,
                employee_id INTEGER NOT NULL REFERENCES employees(id),
                attendance_id INTEGER NOT NULL REFERENCES attendance(id),
                shift_type VARCHAR(20) NOT NULL DEFAULT 'day',
                status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
                response_type VARCHAR(20),
                scheduled_for TIMESTAMPTZ,
                reminder_sent_at TIMESTAMPTZ,
                response_received_at TIMESTAMPTZ,
                ip_address VARCHAR(64),
                ip_verified BOOLEAN DEFAULT false,
                telegram_message_id BIGINT,
                delivery_error TEXT,
                created_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        # One scheduled/sent reminder per session
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_checkout_reminders_one_active
            ON checkout_reminders(attendance_id)
            WHERE status IN ('scheduled', 'pending', 'sent')
        """)

        logger.info("✓ Checkout reminders table ready")

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_employee_date ON attendance(employee_id, date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reminders_due ON checkout_reminders(status, scheduled_for)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_employees_telegram ON employees(telegram_id)")

        logger.info("✓ Indexes created")

        conn.commit()
        logger.info("✓ Database tables and indexes created successfully")

    except Exception as e:
        conn.rollback()
        logger.error(f"✗ Error initializing database: {e}")
        raise
    finally:
        cursor.close()
        return_connection(conn)
