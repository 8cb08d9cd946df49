# SAGE Terminology Version Manager
# =================================
"""
Lifecycle of dictionary versions.

State machine:
    provisioning(inactive) -> loaded(inactive) -> [activate] -> loaded(active)
    provisioning -> failed            (import error)
    activate(other) returns the previous active version to loaded(inactive)
    delete is legal from any inactive state and is terminal

The "active version" lives only in the database: one flag per row, changed
inside a single transaction and backed by a partial unique index.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List

from .database import TerminologyDB, RELATIONSHIP_TABLES, LEVEL_TABLES
from .errors import InvalidStateError, VersionNotFoundError
from .models import DictionaryType, DictionaryVersion, VersionStatus

logger = logging.getLogger(__name__)

VERSION_COLUMNS = """
    id, dictionary_type, label, release_date, import_date, is_active,
    status, leaf_count, term_count, imported_by
"""


def _row_to_version(row) -> DictionaryVersion:
    return DictionaryVersion(
        id=row["id"],
        dictionary_type=row["dictionary_type"],
        label=row["label"],
        release_date=row["release_date"],
        import_date=datetime.fromisoformat(row["import_date"]),
        is_active=bool(row["is_active"]),
        status=row["status"],
        leaf_count=row["leaf_count"],
        term_count=row["term_count"],
        imported_by=row["imported_by"],
    )


class VersionManager:
    """Creates, activates and deletes versions of one dictionary type."""

    def __init__(self, db: TerminologyDB, dictionary_type: DictionaryType):
        self.db = db
        self.dictionary_type = DictionaryType(dictionary_type)

    # ==================== READS ====================

    def list(self) -> List[DictionaryVersion]:
        """All versions of this dictionary, newest first."""
        with self.db.connection() as conn:
            rows = conn.execute(f"""
                SELECT {VERSION_COLUMNS} FROM dictionary_versions
                WHERE dictionary_type = ?
                ORDER BY import_date DESC, id DESC
            """, (self.dictionary_type.value,)).fetchall()
        return [_row_to_version(r) for r in rows]

    def get_active(self) -> Optional[DictionaryVersion]:
        with self.db.connection() as conn:
            row = conn.execute(f"""
                SELECT {VERSION_COLUMNS} FROM dictionary_versions
                WHERE dictionary_type = ? AND is_active = 1
            """, (self.dictionary_type.value,)).fetchone()
        return _row_to_version(row) if row else None

    def get_by_id(self, version_id: int) -> Optional[DictionaryVersion]:
        with self.db.connection() as conn:
            row = conn.execute(f"""
                SELECT {VERSION_COLUMNS} FROM dictionary_versions
                WHERE id = ? AND dictionary_type = ?
            """, (version_id, self.dictionary_type.value)).fetchone()
        return _row_to_version(row) if row else None

    def require(self, version_id: int) -> DictionaryVersion:
        """Like get_by_id, but raises VersionNotFoundError."""
        version = self.get_by_id(version_id)
        if version is None:
            raise VersionNotFoundError(version_id, self.dictionary_type.value)
        return version

    # ==================== LIFECYCLE ====================

    def create(
        self,
        label: str,
        release_date: Optional[str] = None,
        imported_by: Optional[str] = None
    ) -> int:
        """
        Allocate a provisioning version with zero counts.

        Returns:
            The new version id
        """
        with self.db.connection() as conn:
            cursor = conn.execute("""
                INSERT INTO dictionary_versions
                    (dictionary_type, label, release_date, import_date, is_active,
                     status, leaf_count, term_count, imported_by)
                VALUES (?, ?, ?, ?, 0, ?, 0, 0, ?)
            """, (
                self.dictionary_type.value,
                label,
                release_date,
                datetime.now(timezone.utc).isoformat(),
                VersionStatus.PROVISIONING.value,
                imported_by,
            ))
            version_id = cursor.lastrowid

        logger.info(f"Created {self.dictionary_type.value} version {version_id} ({label})")
        return version_id

    def _require_locked(self, conn, version_id: int) -> DictionaryVersion:
        """Read a version inside an open write transaction."""
        row = conn.execute(f"""
            SELECT {VERSION_COLUMNS} FROM dictionary_versions
            WHERE id = ? AND dictionary_type = ?
        """, (version_id, self.dictionary_type.value)).fetchone()
        if row is None:
            raise VersionNotFoundError(version_id, self.dictionary_type.value)
        return _row_to_version(row)

    def activate(self, version_id: int):
        """
        Make version_id the single active version of this dictionary.

        The state check and both flag updates run under one write lock, so a
        concurrent delete or activate cannot interleave.

        Raises:
            VersionNotFoundError: unknown id
            InvalidStateError: version is not fully loaded
        """
        with self.db.connection(immediate=True) as conn:
            version = self._require_locked(conn, version_id)
            if version.status != VersionStatus.LOADED:
                raise InvalidStateError(
                    f"{self.dictionary_type.value} version {version_id} is "
                    f"{version.status.value} and cannot be activated"
                )
            conn.execute(
                "UPDATE dictionary_versions SET is_active = 0 WHERE dictionary_type = ? AND is_active = 1",
                (self.dictionary_type.value,)
            )
            cursor = conn.execute(
                "UPDATE dictionary_versions SET is_active = 1 WHERE id = ? AND dictionary_type = ?",
                (version_id, self.dictionary_type.value)
            )
            if cursor.rowcount != 1:
                raise InvalidStateError(
                    f"{self.dictionary_type.value} version {version_id} changed during activation"
                )

        logger.info(f"Activated {self.dictionary_type.value} version {version_id} ({version.label})")

    def delete(self, version_id: int):
        """
        Delete an inactive version and all of its rows.

        Raises:
            VersionNotFoundError: unknown id
            InvalidStateError: version is active
        """
        with self.db.connection(immediate=True) as conn:
            version = self._require_locked(conn, version_id)
            if version.is_active:
                raise InvalidStateError(
                    f"Cannot delete the active {self.dictionary_type.value} version {version_id}"
                )
            for table in RELATIONSHIP_TABLES[self.dictionary_type]:
                conn.execute(f"DELETE FROM {table} WHERE version_id = ?", (version_id,))
            for table in LEVEL_TABLES[self.dictionary_type]:
                conn.execute(f"DELETE FROM {table} WHERE version_id = ?", (version_id,))
            conn.execute("DELETE FROM dictionary_versions WHERE id = ?", (version_id,))

        logger.info(f"Deleted {self.dictionary_type.value} version {version_id} ({version.label})")

    def mark_loaded(self, version_id: int, leaf_count: int, term_count: int):
        """Persist recomputed counts and move the version to loaded."""
        with self.db.connection() as conn:
            conn.execute("""
                UPDATE dictionary_versions
                SET leaf_count = ?, term_count = ?, status = ?
                WHERE id = ?
            """, (leaf_count, term_count, VersionStatus.LOADED.value, version_id))

    def mark_failed(self, version_id: int):
        with self.db.connection() as conn:
            conn.execute(
                "UPDATE dictionary_versions SET status = ? WHERE id = ?",
                (VersionStatus.FAILED.value, version_id)
            )
        logger.warning(f"{self.dictionary_type.value} version {version_id} marked failed")
