"""
SQLite contact store for mirrored contacts.

Provides persistent storage for contact containers, their typed field rows,
per-account display settings and sync state. Batches of operations are
applied inside a single transaction so a batch lands completely or not at all.
"""

import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from contact_mirror.sync.contact import AccountIdentity, LocalRecord
from contact_mirror.sync.operations import (
    Batch,
    DeleteByExternalId,
    DeleteByLocalId,
    InsertContainer,
    InsertField,
)

# SQL Schema for contact containers, field rows and per-account state
SCHEMA = """
CREATE TABLE IF NOT EXISTS raw_contacts (
    id INTEGER PRIMARY KEY,
    account_name TEXT NOT NULL,
    account_type TEXT NOT NULL,
    source_id TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_raw_contacts_account
    ON raw_contacts(account_name, account_type);
CREATE INDEX IF NOT EXISTS idx_raw_contacts_source
    ON raw_contacts(account_name, account_type, source_id);

CREATE TABLE IF NOT EXISTS contact_data (
    id INTEGER PRIMARY KEY,
    raw_contact_id INTEGER NOT NULL
        REFERENCES raw_contacts(id) ON DELETE CASCADE,
    kind TEXT NOT NULL,
    type TEXT,
    value TEXT,
    blob BLOB,
    position INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_contact_data_raw ON contact_data(raw_contact_id);

CREATE TABLE IF NOT EXISTS account_settings (
    id INTEGER PRIMARY KEY,
    account_name TEXT NOT NULL,
    account_type TEXT NOT NULL,
    ungrouped_visible INTEGER NOT NULL DEFAULT 0,
    UNIQUE(account_name, account_type)
);

CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY,
    account_name TEXT NOT NULL,
    account_type TEXT NOT NULL,
    last_sync_at TIMESTAMP,
    last_state TEXT,
    inserted INTEGER DEFAULT 0,
    updated INTEGER DEFAULT 0,
    deleted INTEGER DEFAULT 0,
    failed_batches INTEGER DEFAULT 0,
    UNIQUE(account_name, account_type)
);
"""

# sqlite3 error messages meaning the store refused access
_ACCESS_DENIED_MARKERS = (
    "readonly database",
    "not authorized",
    "unable to open database",
    "permission denied",
)


class StoreError(Exception):
    """Base exception for contact store errors."""

    pass


class BatchApplyError(StoreError):
    """Raised when a batch cannot be applied; nothing from the batch persists."""

    pass


class StoreAccessDenied(StoreError):
    """Raised when the store refuses access (read-only, unauthorized)."""

    pass


def _is_access_denied(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _ACCESS_DENIED_MARKERS)


@contextmanager
def _translate_errors(action: str) -> Generator[None, None, None]:
    """Re-raise sqlite3 errors as StoreAccessDenied or StoreError."""
    try:
        yield
    except sqlite3.Error as e:
        if _is_access_denied(e):
            raise StoreAccessDenied(f"{action} denied: {e}") from e
        raise StoreError(f"{action} failed: {e}") from e


class ContactStore:
    """
    SQLite store for mirrored contact containers and fields.

    Provides methods for:
    - Querying the containers managed by the mirror for one account
    - Applying operation batches atomically, resolving back-references
    - Account display settings and last sync state

    Usage:
        store = ContactStore('/path/to/contacts.db')
        store.initialize()

        # Or use in-memory for testing:
        store = ContactStore(':memory:')
        store.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _connect(self, path: str) -> sqlite3.Connection:
        conn = sqlite3.connect(
            path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        conn.row_factory = sqlite3.Row
        # Cascading field deletes depend on foreign keys
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection to ensure
        schema persists across operations. For file databases, creates
        a new connection each time.

        Returns:
            sqlite3.Connection: Database connection

        Raises:
            StoreAccessDenied: If the database file cannot be opened
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = self._connect(":memory:")
            return self._shared_connection
        try:
            return self._connect(self.db_path)
        except sqlite3.Error as e:
            if _is_access_denied(e):
                raise StoreAccessDenied(
                    f"Cannot open contact store {self.db_path}: {e}"
                ) from e
            raise StoreError(f"Cannot open contact store {self.db_path}: {e}") from e

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on any exception.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not is_shared:
                conn.close()

    def initialize(self) -> None:
        """Create the store tables if they don't exist."""
        with _translate_errors("Store initialization"), self.connection() as conn:
            conn.executescript(SCHEMA)

    # =========================================================================
    # Mirror Operations
    # =========================================================================

    def query_managed_records(self, account: AccountIdentity) -> list[LocalRecord]:
        """
        Get the containers of an account that carry an external id.

        Containers without an external id are not managed by the mirror and
        are never returned.

        Args:
            account: Account identity scoping the query

        Returns:
            List of LocalRecord

        Raises:
            StoreAccessDenied: If the store refuses access
        """
        with _translate_errors(f"Query for {account}"), self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT id, source_id FROM raw_contacts
                WHERE account_name = ? AND account_type = ?
                  AND source_id IS NOT NULL
                ORDER BY id
                """,
                (account.name, account.type),
            )
            return [
                LocalRecord(local_id=row["id"], external_id=row["source_id"])
                for row in cursor.fetchall()
            ]

    def apply_batch(self, batch: Batch) -> list[Optional[int]]:
        """
        Apply a batch of operations in one transaction.

        Back-references resolve to the id assigned to an InsertContainer
        earlier in the same batch.

        Args:
            batch: Operations to apply

        Returns:
            One result per operation: the new row id for inserts, the number
            of deleted containers for deletes

        Raises:
            BatchApplyError: If any operation fails (the whole batch is rolled back)
            StoreAccessDenied: If the store refuses access
        """
        try:
            with self.connection() as conn:
                results: list[Optional[int]] = []
                containers: dict[int, int] = {}
                for position, operation in enumerate(batch.operations):
                    results.append(
                        self._apply_operation(conn, position, operation, containers)
                    )
                return results
        except StoreAccessDenied:
            raise
        except sqlite3.Error as e:
            if _is_access_denied(e):
                raise StoreAccessDenied(f"Batch '{batch.label}' denied: {e}") from e
            raise BatchApplyError(f"Batch '{batch.label}' failed: {e}") from e

    def _apply_operation(
        self,
        conn: sqlite3.Connection,
        position: int,
        operation: Any,
        containers: dict[int, int],
    ) -> Optional[int]:
        """Execute a single operation inside the batch transaction."""
        if isinstance(operation, DeleteByLocalId):
            cursor = conn.execute(
                "DELETE FROM raw_contacts WHERE id = ?", (operation.local_id,)
            )
            return cursor.rowcount

        if isinstance(operation, DeleteByExternalId):
            cursor = conn.execute(
                """
                DELETE FROM raw_contacts
                WHERE account_name = ? AND account_type = ? AND source_id = ?
                """,
                (
                    operation.account.name,
                    operation.account.type,
                    operation.external_id,
                ),
            )
            return cursor.rowcount

        if isinstance(operation, InsertContainer):
            cursor = conn.execute(
                """
                INSERT INTO raw_contacts (account_name, account_type, source_id)
                VALUES (?, ?, ?)
                """,
                (operation.account.name, operation.account.type, operation.external_id),
            )
            containers[position] = cursor.lastrowid
            return cursor.lastrowid

        if isinstance(operation, InsertField):
            parent_id = containers.get(operation.parent.index)
            if parent_id is None:
                raise BatchApplyError(
                    f"Operation {position} refers to position "
                    f"{operation.parent.index}, which is not an earlier "
                    f"container insert"
                )
            entry = operation.entry
            text: Optional[str] = None
            blob: Optional[bytes] = None
            if isinstance(entry.value, bytes):
                blob = entry.value
            elif isinstance(entry.value, dict):
                text = json.dumps(entry.value, sort_keys=True)
            else:
                text = entry.value
            cursor = conn.execute(
                """
                INSERT INTO contact_data
                    (raw_contact_id, kind, type, value, blob, position)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (parent_id, entry.kind.value, entry.type, text, blob, position),
            )
            return cursor.lastrowid

        raise BatchApplyError(f"Unsupported operation: {operation!r}")

    # =========================================================================
    # Account Settings
    # =========================================================================

    def ensure_ungrouped_visible(self, account: AccountIdentity) -> None:
        """
        Mark ungrouped contacts of an account as visible.

        Mirrored contacts carry no group membership, so without this flag
        they would be hidden by contact viewers that only show grouped ones.

        Raises:
            StoreAccessDenied: If the store refuses access
        """
        with _translate_errors(f"Settings update for {account}"):
            with self.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO account_settings (account_name, account_type,
                                                  ungrouped_visible)
                    VALUES (?, ?, 1)
                    ON CONFLICT(account_name, account_type) DO UPDATE SET
                        ungrouped_visible = 1
                    """,
                    (account.name, account.type),
                )

    def is_ungrouped_visible(self, account: AccountIdentity) -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT ungrouped_visible FROM account_settings
                WHERE account_name = ? AND account_type = ?
                """,
                (account.name, account.type),
            )
            row = cursor.fetchone()
            return bool(row and row["ungrouped_visible"])

    # =========================================================================
    # Sync State Operations
    # =========================================================================

    def get_sync_state(self, account: AccountIdentity) -> Optional[dict[str, Any]]:
        """
        Get the last recorded sync result for an account.

        Returns:
            Dictionary with last_sync_at, last_state and counters, or None
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT last_sync_at, last_state, inserted, updated, deleted,
                       failed_batches
                FROM sync_state
                WHERE account_name = ? AND account_type = ?
                """,
                (account.name, account.type),
            )
            row = cursor.fetchone()
            if row:
                return dict(row)
            return None

    def update_sync_state(
        self,
        account: AccountIdentity,
        last_state: str,
        inserted: int = 0,
        updated: int = 0,
        deleted: int = 0,
        failed_batches: int = 0,
        last_sync_at: Optional[datetime] = None,
    ) -> None:
        """
        Record the outcome of a sync pass for an account.

        Args:
            account: Account identity
            last_state: Terminal state name of the pass
            inserted: Contacts inserted
            updated: Contacts rebuilt
            deleted: Stale contacts deleted
            failed_batches: Batches that failed to apply
            last_sync_at: Timestamp of the pass (defaults to current time)

        Raises:
            StoreError: If the state cannot be written
        """
        if last_sync_at is None:
            last_sync_at = datetime.now()

        action = f"Sync state update for {account}"
        with _translate_errors(action), self.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (account_name, account_type, last_sync_at,
                                        last_state, inserted, updated, deleted,
                                        failed_batches)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_name, account_type) DO UPDATE SET
                    last_sync_at = excluded.last_sync_at,
                    last_state = excluded.last_state,
                    inserted = excluded.inserted,
                    updated = excluded.updated,
                    deleted = excluded.deleted,
                    failed_batches = excluded.failed_batches
                """,
                (
                    account.name,
                    account.type,
                    last_sync_at,
                    last_state,
                    inserted,
                    updated,
                    deleted,
                    failed_batches,
                ),
            )

    # =========================================================================
    # Inspection Operations
    # =========================================================================

    def get_contact_fields(self, local_id: int) -> list[dict[str, Any]]:
        """
        Get the field rows of one container in insertion order.

        Structured values are decoded from JSON; photo rows expose ``blob``.
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT kind, type, value, blob FROM contact_data
                WHERE raw_contact_id = ?
                ORDER BY position, id
                """,
                (local_id,),
            )
            fields = []
            for row in cursor.fetchall():
                value: Any = row["value"]
                if row["kind"] in ("name", "address", "organization") and value:
                    value = json.loads(value)
                fields.append(
                    {
                        "kind": row["kind"],
                        "type": row["type"],
                        "value": value,
                        "blob": row["blob"],
                    }
                )
            return fields

    def get_contact_count(self, account: AccountIdentity) -> int:
        """Count every container of an account, managed or not."""
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT COUNT(*) FROM raw_contacts
                WHERE account_name = ? AND account_type = ?
                """,
                (account.name, account.type),
            )
            result: int = cursor.fetchone()[0]
            return result

    def get_field_count(self) -> int:
        """Count every field row in the store."""
        with self.connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM contact_data")
            result: int = cursor.fetchone()[0]
            return result

