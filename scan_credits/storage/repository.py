"""
Repository pattern for balance data access.

Owns every mutation of a user's balance. All changes go through a single
atomic UPDATE inside a write transaction, never a separate read and write.
"""

import logging
import sqlite3
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import AppliedGrant, BalanceRecord, DebitContext, GrantEvent, UsageEntry
from ..errors import StorageUnavailable

logger = logging.getLogger(__name__)

DEFAULT_STARTER_GRANT = 3

_BALANCE_COLUMNS = """
    user_id, balance, lifetime_spent, daily_operation_count,
    last_operation_date, last_grant_at, created_at
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


class BalanceStore:
    """Durable per-user credit balances backed by SQLite.

    Records are created lazily with a starter grant the first time a user
    is seen. Writers take SQLite's reserved lock with ``BEGIN IMMEDIATE``,
    so concurrent deltas for the same user are serialised and none is lost.
    No method retries internally; retry policy belongs to the caller.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        starter_grant: int = DEFAULT_STARTER_GRANT,
        timeout: float = 10.0
    ):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            starter_grant: Credits given to a user on first access
            timeout: Seconds to wait for a competing writer
        """
        if starter_grant < 0:
            raise ValueError("starter_grant must be >= 0")
        self.db_path = db_path
        self.starter_grant = starter_grant
        self.timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        try:
            return get_connection(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open balance store {self.db_path}: {e}") from e

    def _ensure_record(self, conn: sqlite3.Connection, user_id: str) -> None:
        cursor = conn.execute(
            f"""
            INSERT OR IGNORE INTO balance_record ({_BALANCE_COLUMNS})
            VALUES (?, ?, 0, 0, NULL, NULL, ?)
            """,
            (user_id, self.starter_grant, _utcnow().isoformat())
        )
        if cursor.rowcount == 1:
            logger.info("Initialized balance for user %s with %d starter credits",
                        user_id, self.starter_grant)

    def get_balance(self, user_id: str) -> BalanceRecord:
        """Return the user's balance record, creating it on first access.

        Args:
            user_id: Verified user identifier

        Returns:
            Current BalanceRecord including full usage history

        Raises:
            StorageUnavailable: If the store cannot be read
        """
        if not user_id:
            raise ValueError("user_id is required and cannot be empty")

        conn = self._connect()
        try:
            # Record and history are read in the same transaction as the lazy insert
            conn.execute("BEGIN IMMEDIATE")
            self._ensure_record(conn, user_id)
            row = conn.execute(
                f"SELECT {_BALANCE_COLUMNS} FROM balance_record WHERE user_id = ?",
                (user_id,)
            ).fetchone()
            history = self._fetch_history(conn, user_id)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageUnavailable(f"Failed to read balance for {user_id}: {e}") from e
        finally:
            conn.close()

        return BalanceRecord(
            user_id=row[0],
            balance=row[1],
            lifetime_spent=float(row[2]),
            daily_operation_count=row[3],
            last_operation_date=_parse_date(row[4]),
            last_grant_at=_parse_datetime(row[5]),
            created_at=_parse_datetime(row[6]),
            usage_history=tuple(history)
        )

    def apply_delta(
        self,
        user_id: str,
        units_delta: int,
        context: Optional[DebitContext] = None
    ) -> bool:
        """Atomically add ``units_delta`` to the user's balance.

        A negative delta is a debit: in the same transaction the daily
        operation counter is bumped (or reset to 1 on a new date) and a
        usage entry is appended. A debit that would take the balance
        below zero, or exceed ``context.daily_ceiling``, is rejected
        without any change.

        Args:
            user_id: Verified user identifier
            units_delta: Credits to add (positive) or spend (negative)
            context: Required for debits; what the spend was for

        Returns:
            True if the change was committed, False if a debit was rejected

        Raises:
            ValueError: If the delta is zero or a debit has no context
            StorageUnavailable: If the commit cannot be confirmed
        """
        if units_delta == 0:
            raise ValueError("units_delta must be non-zero")
        if units_delta < 0 and context is None:
            raise ValueError("context is required for debits")

        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._ensure_record(conn, user_id)

            if units_delta > 0:
                conn.execute(
                    "UPDATE balance_record SET balance = balance + ? WHERE user_id = ?",
                    (units_delta, user_id)
                )
                conn.commit()
                return True

            operation_date = context.operation_date.isoformat()
            cursor = conn.execute(
                """
                UPDATE balance_record
                SET balance = balance + ?,
                    daily_operation_count = CASE
                        WHEN last_operation_date = ? THEN daily_operation_count + 1
                        ELSE 1
                    END,
                    last_operation_date = ?
                WHERE user_id = ? AND balance + ? >= 0
                  AND (? IS NULL
                       OR last_operation_date IS NOT ?
                       OR daily_operation_count < ?)
                """,
                (
                    units_delta, operation_date, operation_date, user_id, units_delta,
                    context.daily_ceiling, operation_date, context.daily_ceiling
                )
            )
            if cursor.rowcount != 1:
                conn.rollback()
                logger.warning(
                    "Rejected debit of %d for user %s: balance would go negative "
                    "or daily limit reached", -units_delta, user_id
                )
                return False

            conn.execute(
                """
                INSERT INTO usage_entry
                (user_id, timestamp, operation_kind, units_spent, label)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    context.timestamp.isoformat(),
                    context.operation_kind,
                    -units_delta,
                    context.label
                )
            )
            conn.commit()
            return True
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageUnavailable(f"Failed to apply delta {units_delta} for {user_id}: {e}") from e
        finally:
            conn.close()

    def apply_grant(self, grant: GrantEvent, source: str) -> bool:
        """Credit a payment session exactly once.

        The ledger insert and the balance increment share one transaction,
        so a session is either fully applied or not at all. Replays of an
        already applied session are no-ops.

        Args:
            grant: The confirmed payment
            source: Where the grant came from ("webhook", "sync", "manual")

        Returns:
            True if credits were added, False if the session was already applied

        Raises:
            ValueError: If the grant carries no credits
            StorageUnavailable: If the commit cannot be confirmed
        """
        if grant.units_granted <= 0:
            raise ValueError("units_granted must be > 0")

        applied_at = _utcnow().isoformat()
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._ensure_record(conn, grant.user_id)
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO applied_grant
                (session_id, user_id, units_granted, amount_paid, source, event_id, applied_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    grant.session_id,
                    grant.user_id,
                    grant.units_granted,
                    grant.amount_paid,
                    source,
                    grant.event_id,
                    applied_at
                )
            )
            if cursor.rowcount == 0:
                conn.rollback()
                return False

            conn.execute(
                """
                UPDATE balance_record
                SET balance = balance + ?,
                    lifetime_spent = lifetime_spent + ?,
                    last_grant_at = ?
                WHERE user_id = ?
                """,
                (grant.units_granted, grant.amount_paid, applied_at, grant.user_id)
            )
            conn.commit()
            return True
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageUnavailable(
                f"Failed to apply grant for session {grant.session_id}: {e}"
            ) from e
        finally:
            conn.close()

    def is_grant_applied(self, session_id: str) -> bool:
        """Check whether a payment session is already in the grant ledger."""
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT 1 FROM applied_grant WHERE session_id = ?",
                (session_id,)
            ).fetchone()
            return row is not None
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Failed to read grant ledger: {e}") from e
        finally:
            conn.close()

    def list_applied_grants(self, user_id: str) -> List[AppliedGrant]:
        """Return the user's applied grants, oldest first."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                SELECT session_id, user_id, units_granted, amount_paid,
                       source, applied_at, event_id
                FROM applied_grant
                WHERE user_id = ?
                ORDER BY applied_at, session_id
                """,
                (user_id,)
            )
            return [
                AppliedGrant(
                    session_id=row[0],
                    user_id=row[1],
                    units_granted=row[2],
                    amount_paid=float(row[3]),
                    source=row[4],
                    applied_at=datetime.fromisoformat(row[5]),
                    event_id=row[6]
                )
                for row in cursor.fetchall()
            ]
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Failed to read grant ledger: {e}") from e
        finally:
            conn.close()

    def get_usage_history(self, user_id: str, limit: Optional[int] = None) -> List[UsageEntry]:
        """Return usage entries, newest first, optionally limited."""
        conn = self._connect()
        try:
            history = self._fetch_history(conn, user_id)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Failed to read usage history: {e}") from e
        finally:
            conn.close()

        history.reverse()
        return history[:limit] if limit is not None else history

    @staticmethod
    def _fetch_history(conn: sqlite3.Connection, user_id: str) -> List[UsageEntry]:
        cursor = conn.execute(
            """
            SELECT timestamp, operation_kind, units_spent, label
            FROM usage_entry
            WHERE user_id = ?
            ORDER BY id
            """,
            (user_id,)
        )
        return [
            UsageEntry(
                timestamp=datetime.fromisoformat(row[0]),
                operation_kind=row[1],
                units_spent=row[2],
                label=row[3]
            )
            for row in cursor.fetchall()
        ]


# Stores already handed out, keyed by database path
_stores: Dict[str, BalanceStore] = {}


def get_store(
    db_path: str = DEFAULT_DB_PATH,
    starter_grant: int = DEFAULT_STARTER_GRANT
) -> BalanceStore:
    """Get a store instance for a database path.

    Args:
        db_path: Path to SQLite database file
        starter_grant: Credits given to new users (used on first creation only)

    Returns:
        A BalanceStore shared by all callers of the same path
    """
    if db_path not in _stores:
        _stores[db_path] = BalanceStore(db_path, starter_grant=starter_grant)
    return _stores[db_path]


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the balance tables if they don't exist.

    ``usage_entry`` and ``applied_grant`` are append-only ledgers. The
    CHECK constraint on ``balance`` is a last line of defence behind the
    guarded UPDATE in ``apply_delta``.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS balance_record (
                user_id TEXT PRIMARY KEY,
                balance INTEGER NOT NULL CHECK (balance >= 0),
                lifetime_spent REAL NOT NULL DEFAULT 0,
                daily_operation_count INTEGER NOT NULL DEFAULT 0,
                last_operation_date TEXT,
                last_grant_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS usage_entry (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL REFERENCES balance_record (user_id),
                timestamp TEXT NOT NULL,
                operation_kind TEXT NOT NULL,
                units_spent INTEGER NOT NULL,
                label TEXT NOT NULL DEFAULT ''
            );

            CREATE INDEX IF NOT EXISTS idx_usage_entry_user
                ON usage_entry (user_id);

            CREATE TABLE IF NOT EXISTS applied_grant (
                session_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES balance_record (user_id),
                units_granted INTEGER NOT NULL,
                amount_paid REAL NOT NULL DEFAULT 0,
                source TEXT NOT NULL,
                event_id TEXT,
                applied_at TEXT NOT NULL
            );
        """)
        conn.commit()
    finally:
        conn.close()
