"""Audit Ledger - Immutable, hash-chained event log."""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from typing import Optional, List

from spendgate.ledger.models import AuditEntry, EventType, ChainValidationResult


logger = logging.getLogger(__name__)


class AuditLedger:
    """
    Immutable Audit Ledger with hash-chaining.

    Features:
    - Append-only design (no updates/deletes)
    - Each entry links to previous via hash
    - Chain validation detects tampering
    - SQLite storage for persistence

    Writes are best-effort from the caller's point of view: ``log_event``
    never raises, so an audit failure cannot abort funding or drain.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the audit ledger.

        Args:
            db_path: Path to SQLite database. If None, uses in-memory DB.
        """
        self.db_path = db_path or ":memory:"
        self._lock = threading.Lock()

        # Keep persistent connection for in-memory DBs
        self._conn: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)

        self._init_db()

        # Cache last hash for faster appends
        self._last_hash: str = self._get_last_hash()

        logger.info(f"Audit Ledger initialized: {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection."""
        if self._conn:
            return self._conn
        return sqlite3.connect(self.db_path)

    def _close_connection(self, conn: sqlite3.Connection) -> None:
        """Close connection if not persistent."""
        if conn != self._conn:
            conn.close()

    def append(
        self,
        event_type: EventType,
        payload: dict,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> AuditEntry:
        """
        Append a new entry to the ledger.

        Args:
            event_type: Type of event
            payload: Event-specific data
            user_id: User who triggered event
            session_id: Funding session ID
            transaction_id: Related transaction ID

        Returns:
            The created AuditEntry
        """
        with self._lock:
            entry = AuditEntry(
                event_type=event_type,
                payload=json.loads(json.dumps(payload, default=str)),
                previous_hash=self._last_hash,
                user_id=user_id,
                session_id=session_id,
                transaction_id=transaction_id,
            )

            self._store_entry(entry)
            self._last_hash = entry.hash

        logger.debug(f"Audit append: {event_type.value} [{entry.entry_id}]")
        return entry

    def log_event(
        self,
        event_type: EventType,
        payload: dict,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Optional[AuditEntry]:
        """
        Log an event, swallowing storage errors.

        Returns:
            Created AuditEntry, or None if the write failed
        """
        try:
            return self.append(
                event_type,
                payload,
                user_id=user_id,
                session_id=session_id,
                transaction_id=transaction_id,
            )
        except sqlite3.Error as e:
            logger.error(f"Audit write failed for {event_type.value}: {e}")
            return None

    def get_entry(self, entry_id: str) -> Optional[AuditEntry]:
        """Get a specific entry by ID."""
        rows = self._query("SELECT * FROM audit WHERE entry_id = ?", (entry_id,))
        return self._row_to_entry(rows[0]) if rows else None

    def get_entries_by_transaction(self, transaction_id: str) -> List[AuditEntry]:
        """Get all entries for a transaction."""
        rows = self._query(
            "SELECT * FROM audit WHERE transaction_id = ? ORDER BY seq",
            (transaction_id,),
        )
        return [self._row_to_entry(row) for row in rows]

    def get_entries_by_user(
        self,
        user_id: str,
        limit: int = 50,
    ) -> List[AuditEntry]:
        """Get recent entries for a user, newest first."""
        rows = self._query(
            """SELECT * FROM audit
               WHERE user_id = ?
               ORDER BY seq DESC
               LIMIT ?""",
            (user_id, limit),
        )
        return [self._row_to_entry(row) for row in rows]

    def validate_chain(self) -> ChainValidationResult:
        """
        Validate the entire hash chain.

        Checks that each entry's previous_hash matches
        the actual hash of the previous entry.

        Returns:
            ChainValidationResult with validation status
        """
        rows = self._query("SELECT * FROM audit ORDER BY seq ASC", ())

        if not rows:
            return ChainValidationResult(
                is_valid=True,
                total_entries=0,
            )

        entries = [self._row_to_entry(row) for row in rows]

        # First entry should have "genesis" as previous hash
        if entries[0].previous_hash != "genesis":
            return ChainValidationResult(
                is_valid=False,
                total_entries=len(entries),
                broken_at=0,
                error_message="First entry doesn't have genesis hash",
            )

        for i in range(len(entries)):
            if entries[i].compute_hash() != entries[i].hash:
                return ChainValidationResult(
                    is_valid=False,
                    total_entries=len(entries),
                    broken_at=i,
                    error_message=f"Entry {i} content does not match its hash",
                )
            if i == 0:
                continue
            expected_prev = entries[i - 1].hash
            actual_prev = entries[i].previous_hash

            if expected_prev != actual_prev:
                return ChainValidationResult(
                    is_valid=False,
                    total_entries=len(entries),
                    broken_at=i,
                    error_message=f"Chain broken at entry {i}: expected {expected_prev}, got {actual_prev}",
                )

        logger.info(f"Chain validation passed: {len(entries)} entries")

        return ChainValidationResult(
            is_valid=True,
            total_entries=len(entries),
        )

    def get_entry_count(self) -> int:
        """Get total number of entries."""
        rows = self._query("SELECT COUNT(*) FROM audit", ())
        return rows[0][0]

    def _query(self, sql: str, params: tuple) -> list:
        with self._lock:
            conn = self._get_connection()
            try:
                cursor = conn.cursor()
                cursor.execute(sql, params)
                return cursor.fetchall()
            finally:
                self._close_connection(conn)

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                entry_id TEXT UNIQUE NOT NULL,
                timestamp TEXT NOT NULL,
                event_type TEXT NOT NULL,
                payload TEXT NOT NULL,
                previous_hash TEXT NOT NULL,
                hash TEXT NOT NULL,
                user_id TEXT,
                session_id TEXT,
                transaction_id TEXT
            )
        """)

        # Create indexes for common queries
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_user_id ON audit(user_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_transaction_id ON audit(transaction_id)"
        )

        conn.commit()
        self._close_connection(conn)

    def _store_entry(self, entry: AuditEntry) -> None:
        """Store entry in database. Caller holds the lock."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """INSERT INTO audit
                   (entry_id, timestamp, event_type, payload, previous_hash, hash,
                    user_id, session_id, transaction_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.entry_id,
                    entry.timestamp.isoformat(),
                    entry.event_type.value,
                    json.dumps(entry.payload),
                    entry.previous_hash,
                    entry.hash,
                    entry.user_id,
                    entry.session_id,
                    entry.transaction_id,
                ),
            )
            conn.commit()
        finally:
            self._close_connection(conn)

    def _get_last_hash(self) -> str:
        """Get hash of last entry, or 'genesis' if empty."""
        rows = self._query("SELECT hash FROM audit ORDER BY seq DESC LIMIT 1", ())
        if rows:
            return rows[0][0]
        return "genesis"

    def _row_to_entry(self, row: tuple) -> AuditEntry:
        """Convert database row to AuditEntry."""
        entry = AuditEntry(
            entry_id=row[1],
            timestamp=datetime.fromisoformat(row[2]),
            event_type=EventType(row[3]),
            payload=json.loads(row[4]),
            previous_hash=row[5],
            user_id=row[7],
            session_id=row[8],
            transaction_id=row[9],
        )
        entry._cached_hash = row[6]  # Use stored hash
        return entry

    def close(self) -> None:
        """Close persistent connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
