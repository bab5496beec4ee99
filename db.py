# db.py - Database layer for Book Bazaar (SQLite for development, PostgreSQL in production)
import sqlite3
import re
import threading
import time
import os
import json
from datetime import datetime, timezone
from decimal import Decimal
from contextlib import contextmanager
from queue import Queue, Empty
from typing import Any, Dict, List, Optional, Sequence
from error_handling import log_errors, DatabaseError
from utils import logger

# Database configuration - supports both SQLite and PostgreSQL
DATABASE_URL = os.getenv('DATABASE_URL', '')
DB_FILE = os.getenv('DB_FILE', 'bookbazaar.db')

# Detect database type
USE_POSTGRES = False
if DATABASE_URL and (DATABASE_URL.startswith('postgres://') or DATABASE_URL.startswith('postgresql://')):
    USE_POSTGRES = True
    try:
        import psycopg2
        from psycopg2.pool import ThreadedConnectionPool, PoolError
        logger.info("PostgreSQL detected - using PostgreSQL database")
    except ImportError:
        logger.warning("DATABASE_URL points to PostgreSQL but psycopg2 not installed. Falling back to SQLite.")
        logger.warning("Install with: pip install psycopg2-binary")
        USE_POSTGRES = False
else:
    logger.info(f"Using SQLite database: {DB_FILE}")

# Connection pool configuration
POOL_SIZE = int(os.getenv('DB_POOL_SIZE', '5'))
CONNECTION_TIMEOUT = 10
BUSY_TIMEOUT_MS = 5000


def load_json(value: Optional[str], default: Any):
    if value in (None, "", b""):
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def dump_json(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        if isinstance(value, list):
            return "[]"
        return "{}"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what CURRENT_TIMESTAMP stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_db_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def parse_db_datetime(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, str):
        for fmt in ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S"):
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def _to_datetime_string(value):
    """Normalize datetime values to ISO strings for consistent API responses."""
    if isinstance(value, datetime):
        return value.isoformat(sep=' ', timespec='seconds')
    return value


def _normalize_value(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return _to_datetime_string(value)
    return value


def money(value) -> Optional[float]:
    """Amounts come back as Decimal (PostgreSQL) or int/float (SQLite)."""
    if value is None:
        return None
    return round(float(value), 2)


def with_money(row: Optional[Dict[str, Any]], *fields: str) -> Optional[Dict[str, Any]]:
    if row:
        for field in fields:
            if field in row:
                row[field] = money(row[field])
    return row


def fetch_one(cursor) -> Optional[Dict[str, Any]]:
    """Fetch the next row of ``cursor`` as a dict keyed by column name."""
    row = cursor.fetchone()
    if row is None:
        return None
    columns = [desc[0] for desc in cursor.description]
    return {col: _normalize_value(val) for col, val in zip(columns, row)}


def fetch_all(cursor) -> List[Dict[str, Any]]:
    rows = cursor.fetchall()
    if not rows:
        return []
    columns = [desc[0] for desc in cursor.description]
    return [{col: _normalize_value(val) for col, val in zip(columns, row)} for row in rows]


def _prepare_sql(statement):
    """Translate SQLite-specific SQL to PostgreSQL-compatible SQL when needed."""
    if not USE_POSTGRES or not isinstance(statement, str):
        return statement

    replacements = [
        ("INTEGER PRIMARY KEY AUTOINCREMENT", "SERIAL PRIMARY KEY"),
        ("DATETIME", "TIMESTAMP"),
        ("BOOLEAN DEFAULT 0", "BOOLEAN DEFAULT FALSE"),
        ("BOOLEAN DEFAULT 1", "BOOLEAN DEFAULT TRUE"),
        ("BEGIN IMMEDIATE", "BEGIN"),
    ]

    converted = statement
    for old, new in replacements:
        converted = converted.replace(old, new)

    if "?" in converted:
        # Replace SQLite-style positional placeholders with psycopg2 ones.
        parts = re.split(r"('(?:''|[^'])*'|\"(?:\"\"|[^\"])*\")", converted)
        for idx, part in enumerate(parts):
            if idx % 2 == 0:  # outside quoted strings
                parts[idx] = part.replace("?", "%s")
        converted = "".join(parts)

    return converted


class _PostgresCursorWrapper:
    """Cursor proxy that normalizes SQLite SQL to PostgreSQL syntax."""

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, statement, *args, **kwargs):
        statement = _prepare_sql(statement)
        return self._cursor.execute(statement, *args, **kwargs)

    def executemany(self, statement, seq_of_params):
        statement = _prepare_sql(statement)
        return self._cursor.executemany(statement, seq_of_params)

    def __getattr__(self, item):
        return getattr(self._cursor, item)

    def __iter__(self):
        return iter(self._cursor)


class _PostgresConnectionWrapper:
    """Connection proxy that emulates sqlite3 connection helpers for PostgreSQL."""

    def __init__(self, connection):
        self._connection = connection

    def cursor(self, *args, **kwargs):
        return _PostgresCursorWrapper(self._connection.cursor(*args, **kwargs))

    def execute(self, statement, *args, **kwargs):
        cursor = self.cursor()
        cursor.execute(statement, *args, **kwargs)
        return cursor

    def __getattr__(self, item):
        return getattr(self._connection, item)


class DatabaseConnectionPool:
    """Thread-safe connection pool for SQLite"""

    def __init__(self, database, pool_size=POOL_SIZE):
        self.database = database
        self.pool_size = pool_size
        self.pool = Queue(maxsize=pool_size)
        self.all_connections = []
        self.lock = threading.Lock()
        self._initialize_pool()

    def _initialize_pool(self):
        for _ in range(self.pool_size):
            conn = self._create_connection()
            self.pool.put(conn)
            self.all_connections.append(conn)
        logger.info(f"Initialized database connection pool with {self.pool_size} connections")

    def _create_connection(self):
        """Create a new database connection with the settings every caller relies on"""
        conn = sqlite3.connect(
            self.database,
            check_same_thread=False,
            timeout=CONNECTION_TIMEOUT,
            isolation_level=None  # autocommit; multi-statement work goes through transaction()
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def get_connection(self):
        """Get a connection from the pool (context manager)"""
        try:
            conn = self.pool.get(timeout=CONNECTION_TIMEOUT)
        except Empty:
            logger.error("Connection pool exhausted - consider increasing pool size")
            raise DatabaseError("Database connection pool exhausted")

        try:
            conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Connection test failed: {e}, creating new connection")
            conn.close()
            conn = self._create_connection()
            with self.lock:
                self.all_connections.append(conn)

        try:
            yield conn
        finally:
            if conn.in_transaction:
                conn.rollback()
            self.pool.put(conn)

    def close_all(self):
        """Close all connections in the pool"""
        with self.lock:
            for conn in self.all_connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.error(f"Error closing connection: {e}")
            self.all_connections.clear()
            logger.info("Closed all database connections")


class PostgreSQLConnectionPool:
    """Thread-safe connection pool for PostgreSQL"""

    def __init__(self, database_url, pool_size=POOL_SIZE):
        self.database_url = database_url
        self.pool_size = pool_size
        try:
            self.pool = ThreadedConnectionPool(1, pool_size, database_url)
            logger.info(f"Initialized PostgreSQL connection pool with {pool_size} max connections")
        except psycopg2.Error as e:
            logger.error(f"Failed to create PostgreSQL connection pool: {e}")
            raise DatabaseError(f"Failed to initialize PostgreSQL pool: {e}")

    @contextmanager
    def get_connection(self, timeout=CONNECTION_TIMEOUT):
        """Get a connection from the pool (context manager)"""
        start_time = time.time()
        while True:
            try:
                conn = self.pool.getconn()
                break
            except PoolError as pool_error:
                if timeout > 0 and (time.time() - start_time) < timeout:
                    time.sleep(0.1)
                    continue
                logger.error(f"PostgreSQL connection pool exhausted: {pool_error}")
                raise DatabaseError(f"PostgreSQL connection failed: {pool_error}")

        # Align transaction behavior with SQLite autocommit mode
        if not conn.autocommit:
            conn.autocommit = True

        broken = False
        try:
            yield _PostgresConnectionWrapper(conn)
        except psycopg2.InterfaceError:
            broken = True
            raise
        finally:
            if not broken and conn.info.transaction_status != psycopg2.extensions.TRANSACTION_STATUS_IDLE:
                conn.rollback()
            self.pool.putconn(conn, close=broken)

    def close_all(self):
        """Close all connections in the pool"""
        self.pool.closeall()
        logger.info("Closed all PostgreSQL connections")


# Global connection pool
_connection_pool = None
_pool_lock = threading.Lock()


def get_pool():
    """Get or create the global connection pool"""
    global _connection_pool
    if _connection_pool is None:
        with _pool_lock:
            if _connection_pool is None:
                if USE_POSTGRES:
                    _connection_pool = PostgreSQLConnectionPool(DATABASE_URL)
                else:
                    _connection_pool = DatabaseConnectionPool(DB_FILE)
    return _connection_pool


def close_database():
    """Close all database connections"""
    global _connection_pool
    if _connection_pool:
        _connection_pool.close_all()
        _connection_pool = None


@contextmanager
def transaction():
    """Run a block of statements atomically; yields a cursor.

    SQLite takes the write lock up front (BEGIN IMMEDIATE) so concurrent
    writers queue instead of failing on upgrade. On PostgreSQL callers lock
    the rows they check with ``for_update()``.
    """
    with get_pool().get_connection() as conn:
        c = conn.cursor()
        c.execute("BEGIN IMMEDIATE")
        try:
            yield c
        except BaseException:
            c.execute("ROLLBACK")
            raise
        else:
            c.execute("COMMIT")
        finally:
            c.close()


def for_update() -> str:
    """Row lock suffix for SELECTs that guard a conditional update."""
    return " FOR UPDATE" if USE_POSTGRES else ""


def insert_returning_id(cursor, statement: str, params: Sequence[Any]) -> int:
    """Execute an INSERT and return the new row id on either backend."""
    if USE_POSTGRES:
        cursor.execute(statement.rstrip().rstrip(";") + " RETURNING id", params)
        return cursor.fetchone()[0]
    cursor.execute(statement, params)
    return cursor.lastrowid


def query_all(statement: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    with get_pool().get_connection() as conn:
        c = conn.cursor()
        c.execute(statement, tuple(params))
        return fetch_all(c)


def query_one(statement: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
    with get_pool().get_connection() as conn:
        c = conn.cursor()
        c.execute(statement, tuple(params))
        return fetch_one(c)


def execute(statement: str, params: Sequence[Any] = ()) -> int:
    """Run a single autocommitted statement and return the affected row count."""
    with get_pool().get_connection() as conn:
        c = conn.cursor()
        c.execute(statement, tuple(params))
        return c.rowcount


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT UNIQUE NOT NULL,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        full_name TEXT,
        phone TEXT,
        address TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER UNIQUE NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        bio TEXT,
        avatar_url TEXT,
        location TEXT,
        favorite_genres TEXT,
        reading_goal INTEGER,
        books_read INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS books (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        author TEXT NOT NULL,
        price DECIMAL(10, 2) NOT NULL CHECK (price > 0),
        isbn TEXT,
        genre TEXT,
        publication_year INTEGER,
        publisher TEXT,
        pages INTEGER,
        description TEXT,
        cover_url TEXT,
        user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS marketplace_listings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
        listing_type TEXT NOT NULL CHECK (listing_type IN ('sell', 'exchange')),
        price DECIMAL(10, 2),
        condition TEXT NOT NULL CHECK (condition IN ('new', 'like-new', 'good', 'fair', 'poor')),
        description TEXT,
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'sold', 'exchanged', 'cancelled')),
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        CHECK (listing_type <> 'sell' OR (price IS NOT NULL AND price > 0))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS exchange_requests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_id INTEGER NOT NULL REFERENCES marketplace_listings(id) ON DELETE CASCADE,
        requester_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        offered_book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
        message TEXT,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'accepted', 'rejected', 'completed')),
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS negotiations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_id INTEGER NOT NULL REFERENCES marketplace_listings(id) ON DELETE CASCADE,
        buyer_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        seller_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        original_price DECIMAL(10, 2) NOT NULL,
        offered_price DECIMAL(10, 2) NOT NULL CHECK (offered_price > 0),
        counter_price DECIMAL(10, 2),
        message TEXT,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'countered', 'accepted', 'rejected')),
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_id INTEGER NOT NULL REFERENCES marketplace_listings(id) ON DELETE CASCADE,
        buyer_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        seller_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        amount DECIMAL(10, 2) NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'completed', 'cancelled')),
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        completed_at DATETIME
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sender_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        recipient_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        subject TEXT,
        message TEXT NOT NULL,
        listing_id INTEGER REFERENCES marketplace_listings(id) ON DELETE SET NULL,
        is_read BOOLEAN DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_follows (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        follower_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        following_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (follower_id, following_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS activity_feed (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        activity_type TEXT NOT NULL,
        activity_data TEXT,
        is_public BOOLEAN DEFAULT 1,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS book_clubs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        creator_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        is_private BOOLEAN DEFAULT 0,
        member_count INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS book_club_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        club_id INTEGER NOT NULL REFERENCES book_clubs(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role TEXT NOT NULL DEFAULT 'member' CHECK (role IN ('admin', 'moderator', 'member')),
        joined_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (club_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS book_club_books (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        club_id INTEGER NOT NULL REFERENCES book_clubs(id) ON DELETE CASCADE,
        book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
        start_date TEXT,
        end_date TEXT,
        is_current BOOLEAN DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS forums (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        book_id INTEGER REFERENCES books(id) ON DELETE SET NULL,
        club_id INTEGER REFERENCES book_clubs(id) ON DELETE CASCADE,
        creator_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        is_pinned BOOLEAN DEFAULT 0,
        view_count INTEGER DEFAULT 0,
        reply_count INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS forum_replies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        forum_id INTEGER NOT NULL REFERENCES forums(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        parent_reply_id INTEGER REFERENCES forum_replies(id) ON DELETE CASCADE,
        content TEXT NOT NULL,
        likes INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS password_reset_tokens (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        token TEXT UNIQUE NOT NULL,
        expires_at DATETIME NOT NULL,
        used BOOLEAN DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rate_limits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        identifier TEXT NOT NULL,
        endpoint TEXT NOT NULL,
        request_count INTEGER DEFAULT 0,
        window_start DATETIME NOT NULL,
        UNIQUE (identifier, endpoint)
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_books_user ON books(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_listings_status ON marketplace_listings(status)",
    "CREATE INDEX IF NOT EXISTS idx_listings_user ON marketplace_listings(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_exchange_listing ON exchange_requests(listing_id)",
    "CREATE INDEX IF NOT EXISTS idx_negotiations_listing ON negotiations(listing_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_buyer ON transactions(buyer_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_seller ON transactions(seller_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_recipient ON messages(recipient_id, is_read)",
    "CREATE INDEX IF NOT EXISTS idx_activity_user ON activity_feed(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_forum_replies_forum ON forum_replies(forum_id)",
]


@log_errors()
def init_db():
    """Initialize database with all required tables and indexes"""
    with get_pool().get_connection() as conn:
        c = conn.cursor()
        for statement in SCHEMA:
            c.execute(statement)
        for statement in INDEXES:
            c.execute(statement)
    logger.info("Database schema initialized")


def check_database() -> bool:
    """Return True when a pooled connection can run a trivial query."""
    try:
        query_one("SELECT 1 AS ok")
        return True
    except (DatabaseError, sqlite3.Error) as e:
        logger.error(f"Database health check failed: {e}")
        return False


# ======================
# USERS
# ======================

USER_PUBLIC_COLUMNS = "id, username, email, full_name, phone, address, created_at"


@log_errors()
def create_user(username: str, email: str, password_hash: str,
                full_name: Optional[str] = None, phone: Optional[str] = None,
                address: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Insert a user; returns None when the username or email is already taken."""
    with transaction() as c:
        c.execute(
            "SELECT id FROM users WHERE email = ? OR username = ?",
            (email, username),
        )
        if c.fetchone():
            return None
        user_id = insert_returning_id(c, """
            INSERT INTO users (username, email, password_hash, full_name, phone, address)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (username, email, password_hash, full_name, phone, address))
        c.execute(f"SELECT {USER_PUBLIC_COLUMNS} FROM users WHERE id = ?", (user_id,))
        return fetch_one(c)


def get_user_by_id(user_id: int) -> Optional[Dict[str, Any]]:
    return query_one(f"SELECT {USER_PUBLIC_COLUMNS} FROM users WHERE id = ?", (user_id,))


def get_user_credentials(email: str) -> Optional[Dict[str, Any]]:
    """User row including the password hash, for login only."""
    if not email:
        return None
    return query_one(
        f"SELECT {USER_PUBLIC_COLUMNS}, password_hash FROM users WHERE email = ?",
        (email,),
    )


def update_user_contact(user_id: int, full_name=None, phone=None, address=None) -> Optional[Dict[str, Any]]:
    execute("""
        UPDATE users
        SET full_name = COALESCE(?, full_name),
            phone = COALESCE(?, phone),
            address = COALESCE(?, address),
            updated_at = CURRENT_TIMESTAMP
        WHERE id = ?
    """, (full_name, phone, address, user_id))
    return get_user_by_id(user_id)


# ======================
# PASSWORD RESET
# ======================

def create_password_reset_token(user_id: int, token: str, expires_at: datetime) -> None:
    execute(
        "INSERT INTO password_reset_tokens (user_id, token, expires_at) VALUES (?, ?, ?)",
        (user_id, token, to_db_timestamp(expires_at)),
    )


def consume_password_reset_token(token: str, password_hash: str) -> Optional[int]:
    """Swap in a new password hash if ``token`` is unused and unexpired.

    Returns the user id, or None when the token cannot be used.
    """
    with transaction() as c:
        c.execute(
            "SELECT id, user_id, expires_at, used FROM password_reset_tokens WHERE token = ?" + for_update(),
            (token,),
        )
        row = fetch_one(c)
        if not row or row["used"]:
            return None
        expires_at = parse_db_datetime(row["expires_at"])
        if expires_at is None or expires_at <= utcnow():
            return None
        c.execute(
            "UPDATE users SET password_hash = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (password_hash, row["user_id"]),
        )
        c.execute("UPDATE password_reset_tokens SET used = ? WHERE id = ?", (True, row["id"]))
        return row["user_id"]


# ======================
# RATE LIMITING
# ======================

def check_rate_limit(identifier, endpoint, max_requests=60, window_minutes=1):
    """
    Check if a caller has exceeded the rate limit for an endpoint
    Returns: (is_allowed, remaining_requests)
    """
    now = utcnow()
    with transaction() as c:
        # The row must exist before FOR UPDATE can lock it
        c.execute("""
            INSERT INTO rate_limits (identifier, endpoint, request_count, window_start)
            VALUES (?, ?, 0, ?)
            ON CONFLICT (identifier, endpoint) DO NOTHING
        """, (identifier, endpoint, to_db_timestamp(now)))
        c.execute(
            "SELECT request_count, window_start FROM rate_limits WHERE identifier = ? AND endpoint = ?" + for_update(),
            (identifier, endpoint),
        )
        request_count, window_start = c.fetchone()
        window_start = parse_db_datetime(window_start) or now
        if (now - window_start).total_seconds() >= window_minutes * 60:
            c.execute(
                "UPDATE rate_limits SET request_count = 1, window_start = ? WHERE identifier = ? AND endpoint = ?",
                (to_db_timestamp(now), identifier, endpoint),
            )
            return True, max_requests - 1

        if request_count >= max_requests:
            return False, 0

        c.execute(
            "UPDATE rate_limits SET request_count = request_count + 1 WHERE identifier = ? AND endpoint = ?",
            (identifier, endpoint),
        )
        return True, max_requests - request_count - 1


def reset_rate_limit(identifier: str, endpoint: Optional[str] = None) -> int:
    if endpoint:
        return execute("DELETE FROM rate_limits WHERE identifier = ? AND endpoint = ?", (identifier, endpoint))
    return execute("DELETE FROM rate_limits WHERE identifier = ?", (identifier,))
