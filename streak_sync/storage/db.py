"""
SQLite database module for the local entity store.

Provides persistent storage for organizations, members, the links between
them, and the history of sync runs.
"""

import json
import sqlite3
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from streak_sync.sync.entities import Entity, EntityKind

if TYPE_CHECKING:
    from streak_sync.sync.engine import RunResult

SCHEMA = """
CREATE TABLE IF NOT EXISTS organizations (
    id INTEGER PRIMARY KEY,
    external_key TEXT,
    name TEXT NOT NULL,
    address TEXT,
    latitude REAL,
    longitude REAL,
    website TEXT,
    high_school_name TEXT,
    high_school_type TEXT,
    high_school_start_month TEXT,
    high_school_end_month TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(external_key)
);

CREATE TABLE IF NOT EXISTS members (
    id INTEGER PRIMARY KEY,
    external_key TEXT,
    name TEXT NOT NULL,
    email TEXT,
    gender TEXT,
    year TEXT,
    phone_number TEXT,
    slack_username TEXT,
    github_username TEXT,
    twitter_username TEXT,
    address TEXT,
    latitude REAL,
    longitude REAL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(external_key)
);

CREATE TABLE IF NOT EXISTS organization_members (
    organization_id INTEGER NOT NULL
        REFERENCES organizations(id) ON DELETE CASCADE,
    member_id INTEGER NOT NULL
        REFERENCES members(id) ON DELETE CASCADE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (organization_id, member_id)
);

CREATE INDEX IF NOT EXISTS idx_organization_members_member
    ON organization_members(member_id);

CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY,
    started_at TIMESTAMP,
    finished_at TIMESTAMP,
    state TEXT NOT NULL,
    outcome TEXT NOT NULL,
    error TEXT,
    counts TEXT,
    failure_count INTEGER DEFAULT 0
);
"""


class SyncDatabase:
    """
    SQLite database manager for the local entity store.

    Provides methods for:
    - Listing, creating, updating and deleting organizations and members
    - Maintaining the organization <-> member link table
    - Recording sync run history

    Usage:
        db = SyncDatabase('/path/to/streak_sync.db')
        db.initialize()

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection so the schema
        persists across operations. For file databases, creates a new
        connection each time.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = self._connect(":memory:")
            return self._shared_connection
        return self._connect(self.db_path)

    @staticmethod
    def _connect(path: str) -> sqlite3.Connection:
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on error.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM organizations")
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
        """Create the tables if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # =========================================================================
    # Entity Operations
    # =========================================================================

    def list_entities(self, kind: EntityKind) -> list[Entity]:
        """
        Get every stored entity of a variant, ordered by id.

        Args:
            kind: Entity variant

        Returns:
            List of Organization or Member instances
        """
        with self.connection() as conn:
            cursor = conn.execute(f"SELECT * FROM {kind.table} ORDER BY id")
            return [kind.entity_class.from_row(row) for row in cursor.fetchall()]

    def get_entity_by_key(
        self, kind: EntityKind, external_key: str
    ) -> Optional[Entity]:
        """
        Get an entity by its external key.

        Returns:
            The entity, or None if no record has this key
        """
        with self.connection() as conn:
            cursor = conn.execute(
                f"SELECT * FROM {kind.table} WHERE external_key = ?",
                (external_key,),
            )
            row = cursor.fetchone()
            return kind.entity_class.from_row(row) if row else None

    def insert_entity(self, entity: Entity) -> int:
        """
        Insert a new entity and assign its id.

        Args:
            entity: Entity without an id

        Returns:
            The new local id

        Raises:
            sqlite3.IntegrityError: If the external key is already taken
        """
        row = entity.to_row()
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self.connection() as conn:
            cursor = conn.execute(
                f"INSERT INTO {entity.kind.table} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            new_id = cursor.lastrowid
        entity.id = new_id
        return int(new_id)  # type: ignore[arg-type]

    def update_entity(self, entity: Entity) -> bool:
        """
        Write every column of an existing entity.

        Returns:
            True if a row was updated
        """
        if entity.id is None:
            raise ValueError("Cannot update an entity that has no id")

        row = entity.to_row()
        assignments = ", ".join(f"{column} = ?" for column in row)
        with self.connection() as conn:
            cursor = conn.execute(
                f"UPDATE {entity.kind.table} SET {assignments}, "
                "updated_at = ? WHERE id = ?",
                (*row.values(), datetime.now(timezone.utc).isoformat(), entity.id),
            )
            return cursor.rowcount > 0

    def delete_entities(self, kind: EntityKind, ids: Iterable[int]) -> int:
        """
        Delete entities and, through the foreign key cascade, their links.

        Args:
            kind: Entity variant
            ids: Local ids to delete

        Returns:
            Number of links removed by the cascade
        """
        id_list = list(ids)
        if not id_list:
            return 0

        link_column = (
            "organization_id" if kind is EntityKind.ORGANIZATION else "member_id"
        )
        placeholders = ", ".join("?" for _ in id_list)
        with self.connection() as conn:
            cursor = conn.execute(
                f"SELECT COUNT(*) FROM organization_members "
                f"WHERE {link_column} IN ({placeholders})",
                id_list,
            )
            links_removed: int = cursor.fetchone()[0]
            conn.execute(
                f"DELETE FROM {kind.table} WHERE id IN ({placeholders})", id_list
            )
        return links_removed

    def get_entity_count(self, kind: EntityKind) -> int:
        """Get the number of stored entities of a variant."""
        with self.connection() as conn:
            cursor = conn.execute(f"SELECT COUNT(*) FROM {kind.table}")
            result: int = cursor.fetchone()[0]
            return result

    # =========================================================================
    # Link Operations
    # =========================================================================

    def get_links(self) -> set[tuple[int, int]]:
        """
        Get every organization <-> member link.

        Returns:
            Set of (organization_id, member_id) pairs
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT organization_id, member_id FROM organization_members"
            )
            return {(row[0], row[1]) for row in cursor.fetchall()}

    def get_member_ids_for_organization(self, organization_id: int) -> list[int]:
        """Get the ids of the members linked to an organization."""
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT member_id FROM organization_members "
                "WHERE organization_id = ? ORDER BY member_id",
                (organization_id,),
            )
            return [row[0] for row in cursor.fetchall()]

    def add_links(self, pairs: Iterable[tuple[int, int]]) -> int:
        """
        Add links, ignoring ones that already exist.

        Returns:
            Number of links created
        """
        pair_list = list(pairs)
        if not pair_list:
            return 0
        with self.connection() as conn:
            before = conn.total_changes
            conn.executemany(
                "INSERT OR IGNORE INTO organization_members "
                "(organization_id, member_id) VALUES (?, ?)",
                pair_list,
            )
            return conn.total_changes - before

    def remove_links(self, pairs: Iterable[tuple[int, int]]) -> int:
        """
        Remove links.

        Returns:
            Number of links removed
        """
        pair_list = list(pairs)
        if not pair_list:
            return 0
        with self.connection() as conn:
            before = conn.total_changes
            conn.executemany(
                "DELETE FROM organization_members "
                "WHERE organization_id = ? AND member_id = ?",
                pair_list,
            )
            return conn.total_changes - before

    def get_link_count(self) -> int:
        """Get the total number of links."""
        with self.connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM organization_members")
            result: int = cursor.fetchone()[0]
            return result

    # =========================================================================
    # Run History
    # =========================================================================

    def record_run(self, result: "RunResult") -> None:
        """
        Store the outcome of a sync run.

        Args:
            result: Finished RunResult
        """
        counts = {
            "organizations": result.organizations.as_dict(),
            "members": result.members.as_dict(),
            "links_created": result.links_created,
            "links_removed": result.links_removed,
        }
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_runs (
                    started_at, finished_at, state, outcome, error, counts,
                    failure_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.started_at.isoformat(),
                    result.finished_at.isoformat() if result.finished_at else None,
                    result.state.value,
                    result.outcome.value,
                    result.error,
                    json.dumps(counts),
                    len(result.failures),
                ),
            )

    def get_last_run(self) -> Optional[dict[str, Any]]:
        """
        Get the most recent recorded run.

        Returns:
            Dictionary with run fields (counts and timestamps decoded), or None
            if no run
        """
        with self.connection() as conn:
            cursor = conn.execute("SELECT * FROM sync_runs ORDER BY id DESC LIMIT 1")
            row = cursor.fetchone()
            if row is None:
                return None
            run = dict(row)
            run["counts"] = json.loads(run["counts"]) if run["counts"] else {}
            for column in ("started_at", "finished_at"):
                if run[column]:
                    run[column] = datetime.fromisoformat(run[column])
            return run

    # =========================================================================
    # Utility Operations
    # =========================================================================

    def clear_all_state(self) -> None:
        """Delete all entities, links and run history (full reset)."""
        with self.connection() as conn:
            conn.execute("DELETE FROM organization_members")
            conn.execute("DELETE FROM organizations")
            conn.execute("DELETE FROM members")
            conn.execute("DELETE FROM sync_runs")

    def vacuum(self) -> None:
        """Vacuum the database to reclaim space."""
        with self.connection() as conn:
            conn.execute("VACUUM")
