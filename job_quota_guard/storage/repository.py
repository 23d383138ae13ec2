"""
Repository pattern for ledger data access.

Handles database operations for points accounts and the append-only
transaction log.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from job_quota_guard.core.errors import StoreUnavailableError
from job_quota_guard.core.pricing import PointsSource, SpendType, SubscriptionTier
from .db import DEFAULT_BUSY_TIMEOUT, DEFAULT_DB_PATH, get_connection
from .models import PointsAccount, PointsTransaction

_ACCOUNT_COLUMNS = (
    "developer_id, monthly_points, points_used, points_earned, "
    "subscription_tier, reset_date"
)
_TRANSACTION_COLUMNS = (
    "id, developer_id, amount, spend_type, source, source_id, "
    "description, metadata, created_at"
)


def _row_to_account(row: tuple) -> PointsAccount:
    return PointsAccount(
        developer_id=row[0],
        monthly_points=row[1],
        points_used=row[2],
        points_earned=row[3],
        subscription_tier=SubscriptionTier(row[4]),
        reset_date=datetime.fromisoformat(row[5]) if row[5] else None
    )


def _row_to_transaction(row: tuple) -> PointsTransaction:
    return PointsTransaction(
        id=row[0],
        developer_id=row[1],
        amount=row[2],
        spend_type=SpendType(row[3]) if row[3] else None,
        source=PointsSource(row[4]),
        source_id=row[5],
        description=row[6],
        metadata=json.loads(row[7]) if row[7] else {},
        created_at=datetime.fromisoformat(row[8])
    )


class LedgerRepository:
    """Repository for points accounts and their transaction log.

    Every public method opens its own connection. Multi-step work goes
    through ``transaction()``, which holds the database write lock for its
    whole duration.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, timeout: float = DEFAULT_BUSY_TIMEOUT):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds a writer waits for the lock before failing
        """
        self.db_path = db_path
        self.timeout = timeout

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block under serializable write isolation.

        ``BEGIN IMMEDIATE`` takes the write lock before the first read, so
        concurrent writers queue up and each sees the previous one's
        committed state. The block commits on normal exit and rolls back
        on any exception.

        Raises:
            StoreUnavailableError: If the database cannot be opened or locked
        """
        try:
            conn = get_connection(self.db_path, self.timeout)
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(e)) from e
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreUnavailableError(str(e)) from e
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            try:
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreUnavailableError(str(e)) from e
        finally:
            conn.close()

    def fetch_account(self, conn: sqlite3.Connection, developer_id: str) -> Optional[PointsAccount]:
        """Read an account row using an open connection."""
        cursor = conn.execute(
            f"SELECT {_ACCOUNT_COLUMNS} FROM points_account WHERE developer_id = ?",
            (developer_id,)
        )
        row = cursor.fetchone()
        return _row_to_account(row) if row else None

    def increment_points_used(self, conn: sqlite3.Connection, developer_id: str, amount: int) -> None:
        conn.execute(
            "UPDATE points_account SET points_used = points_used + ? WHERE developer_id = ?",
            (amount, developer_id)
        )

    def increment_points_earned(self, conn: sqlite3.Connection, developer_id: str, amount: int) -> None:
        conn.execute(
            "UPDATE points_account SET points_earned = points_earned + ? WHERE developer_id = ?",
            (amount, developer_id)
        )

    def append_transaction(
        self,
        conn: sqlite3.Connection,
        developer_id: str,
        amount: int,
        source: PointsSource,
        description: str,
        spend_type: Optional[SpendType] = None,
        source_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> PointsTransaction:
        """Insert a transaction into the append-only log.

        No UPDATE or DELETE is ever issued against this table.
        """
        tx = PointsTransaction(
            id=uuid.uuid4().hex,
            developer_id=developer_id,
            amount=amount,
            spend_type=spend_type,
            source=source,
            source_id=source_id,
            description=description,
            metadata=dict(metadata or {}),
            created_at=datetime.now()
        )
        conn.execute(f"""
            INSERT INTO points_transaction ({_TRANSACTION_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            tx.id,
            tx.developer_id,
            tx.amount,
            tx.spend_type.value if tx.spend_type else None,
            tx.source.value,
            tx.source_id,
            tx.description,
            json.dumps(tx.metadata, sort_keys=True, default=str),
            tx.created_at.isoformat()
        ))
        return tx

    def create_account(self, account: PointsAccount) -> None:
        """Insert a new account.

        Raises:
            ValueError: If an account already exists for the developer
            StoreUnavailableError: On any other database failure
        """
        try:
            with self.transaction() as conn:
                conn.execute(f"""
                    INSERT INTO points_account ({_ACCOUNT_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    account.developer_id,
                    account.monthly_points,
                    account.points_used,
                    account.points_earned,
                    account.subscription_tier.value,
                    account.reset_date.isoformat() if account.reset_date else None
                ))
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Account already exists: {account.developer_id}") from e
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(e)) from e

    def get_account(self, developer_id: str) -> Optional[PointsAccount]:
        """Read an account outside any write transaction."""
        conn = self._connect()
        try:
            return self.fetch_account(conn, developer_id)
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(e)) from e
        finally:
            conn.close()

    def fetch_transactions(self, developer_id: str, limit: int = 100) -> List[PointsTransaction]:
        """Fetch an account's transactions, newest first.

        This is a read-only operation that preserves the append-only nature.
        """
        conn = self._connect()
        try:
            cursor = conn.execute(f"""
                SELECT {_TRANSACTION_COLUMNS} FROM points_transaction
                WHERE developer_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
            """, (developer_id, limit))
            return [_row_to_transaction(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(e)) from e
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        try:
            return get_connection(self.db_path, self.timeout)
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(e)) from e


# Global repository instance
_default_repository: Optional[LedgerRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> LedgerRepository:
    """Get a repository instance.

    This function provides a singleton instance of the LedgerRepository.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of LedgerRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = LedgerRepository(db_path)
    return _default_repository


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger tables if they don't exist.

    ``points_transaction`` is an append-only ledger. No UPDATE or DELETE
    operations should ever be performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS points_account (
                developer_id TEXT PRIMARY KEY,
                monthly_points INTEGER NOT NULL,
                points_used INTEGER NOT NULL DEFAULT 0,
                points_earned INTEGER NOT NULL DEFAULT 0,
                subscription_tier TEXT NOT NULL,
                reset_date TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS points_transaction (
                id TEXT PRIMARY KEY,
                developer_id TEXT NOT NULL REFERENCES points_account(developer_id),
                amount INTEGER NOT NULL,
                spend_type TEXT,
                source TEXT NOT NULL,
                source_id TEXT,
                description TEXT NOT NULL,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_points_transaction_developer
            ON points_transaction (developer_id, created_at)
        """)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
