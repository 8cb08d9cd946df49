"""
Tests for dictionary version lifecycle.

Covers creation, single-active-version control (transactional and
index-enforced) and cascading deletion.
"""

import sys
import sqlite3
import pytest
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from core.terminology import (
    DictionaryType,
    InvalidStateError,
    NotFoundError,
    VersionManager,
    VersionNotFoundError,
    VersionStatus,
)
from core.terminology.database import LEVEL_TABLES, RELATIONSHIP_TABLES


def active_count(db, dictionary_type):
    with db.connection() as conn:
        return conn.execute(
            "SELECT COUNT(*) FROM dictionary_versions WHERE dictionary_type = ? AND is_active = 1",
            (dictionary_type.value,)
        ).fetchone()[0]


def loaded_version(manager, label):
    version_id = manager.create(label)
    manager.mark_loaded(version_id, 0, 0)
    return version_id


class TestSchema:
    def test_all_tables_created(self, db):
        tables = set(db.table_names())

        assert "dictionary_versions" in tables
        for dictionary_type in DictionaryType:
            assert set(LEVEL_TABLES[dictionary_type]) <= tables
            assert set(RELATIONSHIP_TABLES[dictionary_type]) <= tables


class TestVersionCreation:
    """Tests for VersionManager.create and reads."""

    def test_create_is_inactive_provisioning(self, db):
        """New versions start inactive, provisioning, with zero counts."""
        manager = VersionManager(db, DictionaryType.MEDDRA)
        version_id = manager.create("27.0", release_date="2024-03-01", imported_by="tester")

        version = manager.get_by_id(version_id)
        assert version.label == "27.0"
        assert version.release_date == "2024-03-01"
        assert version.imported_by == "tester"
        assert version.is_active is False
        assert version.status == VersionStatus.PROVISIONING
        assert version.leaf_count == 0
        assert version.term_count == 0
        assert manager.get_active() is None

    def test_list_newest_first(self, db):
        manager = VersionManager(db, DictionaryType.MEDDRA)
        first = manager.create("26.1")
        second = manager.create("27.0")

        assert [v.id for v in manager.list()] == [second, first]

    def test_versions_are_scoped_by_type(self, db):
        """A version of one dictionary is invisible to the other."""
        meddra = VersionManager(db, DictionaryType.MEDDRA)
        whodrug = VersionManager(db, DictionaryType.WHODRUG)
        version_id = meddra.create("27.0")

        assert whodrug.get_by_id(version_id) is None
        assert whodrug.list() == []
        with pytest.raises(VersionNotFoundError):
            whodrug.activate(version_id)


class TestActivation:
    """Tests for single active version control."""

    def test_activate_switches_active_version(self, db):
        """activate(2) then activate(1) leaves exactly version 1 active."""
        manager = VersionManager(db, DictionaryType.MEDDRA)
        v1 = loaded_version(manager, "26.1")
        v2 = loaded_version(manager, "27.0")

        manager.activate(v2)
        assert manager.get_active().id == v2
        assert active_count(db, DictionaryType.MEDDRA) == 1

        manager.activate(v1)
        assert manager.get_active().id == v1
        assert manager.get_by_id(v2).is_active is False
        assert manager.get_by_id(v2).status == VersionStatus.LOADED
        assert active_count(db, DictionaryType.MEDDRA) == 1

    def test_activation_is_per_dictionary_type(self, db):
        meddra = VersionManager(db, DictionaryType.MEDDRA)
        whodrug = VersionManager(db, DictionaryType.WHODRUG)
        m = loaded_version(meddra, "27.0")
        w = loaded_version(whodrug, "2024-Mar")

        meddra.activate(m)
        whodrug.activate(w)

        assert meddra.get_active().id == m
        assert whodrug.get_active().id == w

    def test_activate_unknown_version(self, db):
        """Unknown ids raise an error that is both NotFound and InvalidState."""
        manager = VersionManager(db, DictionaryType.MEDDRA)

        with pytest.raises(VersionNotFoundError) as exc_info:
            manager.activate(999)
        assert isinstance(exc_info.value, NotFoundError)
        assert isinstance(exc_info.value, InvalidStateError)

    def test_activate_provisioning_version_fails(self, db):
        manager = VersionManager(db, DictionaryType.MEDDRA)
        version_id = manager.create("27.0")

        with pytest.raises(InvalidStateError):
            manager.activate(version_id)
        assert manager.get_active() is None

    def test_activate_failed_version_fails(self, db):
        manager = VersionManager(db, DictionaryType.MEDDRA)
        version_id = manager.create("27.0")
        manager.mark_failed(version_id)

        with pytest.raises(InvalidStateError):
            manager.activate(version_id)

    def test_database_rejects_second_active_version(self, db):
        """The partial unique index blocks two active rows of one type."""
        manager = VersionManager(db, DictionaryType.MEDDRA)
        v1 = loaded_version(manager, "26.1")
        v2 = loaded_version(manager, "27.0")
        manager.activate(v1)

        with pytest.raises(sqlite3.IntegrityError):
            with db.connection() as conn:
                conn.execute("UPDATE dictionary_versions SET is_active = 1 WHERE id = ?", (v2,))

        assert active_count(db, DictionaryType.MEDDRA) == 1


class TestDeletion:
    """Tests for version deletion."""

    def test_delete_active_version_fails(self, loaded_meddra, db):
        """Deleting the active version raises and leaves its data untouched."""
        version = loaded_meddra.get_active_version()
        with db.connection() as conn:
            before = conn.execute("SELECT COUNT(*) FROM meddra_llt WHERE version_id = ?",
                                  (version.id,)).fetchone()[0]

        with pytest.raises(InvalidStateError):
            loaded_meddra.delete_version(version.id)

        with db.connection() as conn:
            after = conn.execute("SELECT COUNT(*) FROM meddra_llt WHERE version_id = ?",
                                 (version.id,)).fetchone()[0]
        assert before == after == 6
        assert loaded_meddra.get_active_version().id == version.id

    def test_delete_removes_all_rows(self, meddra_service, meddra_files, db):
        """Deletion cascades through relationship and level tables."""
        version = meddra_service.import_dictionary("27.0", meddra_files)
        meddra_service.delete_version(version.id)

        assert meddra_service.get_version(version.id) is None
        with db.connection() as conn:
            for table in RELATIONSHIP_TABLES[DictionaryType.MEDDRA] + LEVEL_TABLES[DictionaryType.MEDDRA]:
                count = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE version_id = ?",
                                     (version.id,)).fetchone()[0]
                assert count == 0, table

    def test_delete_keeps_other_versions(self, meddra_service, meddra_files, scenario_files, db):
        keep = meddra_service.import_dictionary("26.1", scenario_files)
        drop = meddra_service.import_dictionary("27.0", meddra_files)
        meddra_service.delete_version(drop.id)

        with db.connection() as conn:
            remaining = conn.execute("SELECT COUNT(*) FROM meddra_llt WHERE version_id = ?",
                                     (keep.id,)).fetchone()[0]
        assert remaining == 1
        assert [v.id for v in meddra_service.list_versions()] == [keep.id]

    def test_delete_unknown_version(self, db):
        manager = VersionManager(db, DictionaryType.MEDDRA)
        with pytest.raises(VersionNotFoundError):
            manager.delete(42)

    def test_level_rows_reference_versions(self, db):
        """Level rows cannot point at a missing version."""
        with pytest.raises(sqlite3.IntegrityError):
            with db.connection() as conn:
                conn.execute("INSERT INTO meddra_soc (version_id, code, name) VALUES (999, 1, 'x')")


class TestConcurrentStateChanges:
    """State checks happen inside the write transaction, not before it."""

    def test_immediate_connection_holds_write_lock(self, db):
        with db.connection(immediate=True):
            other = sqlite3.connect(str(db.db_path), timeout=0)
            try:
                with pytest.raises(sqlite3.OperationalError):
                    other.execute("BEGIN IMMEDIATE")
            finally:
                other.close()

    def test_activate_ignores_stale_read(self, db, monkeypatch):
        """A version deleted after a caller last read it is not activated."""
        manager = VersionManager(db, DictionaryType.MEDDRA)
        kept = loaded_version(manager, "26.1")
        gone = loaded_version(manager, "27.0")
        manager.activate(kept)
        stale = manager.get_by_id(gone)
        manager.delete(gone)
        monkeypatch.setattr(manager, "require", lambda version_id: stale)
        monkeypatch.setattr(manager, "get_by_id", lambda version_id: stale)

        with pytest.raises(VersionNotFoundError):
            manager.activate(gone)

        assert active_count(db, DictionaryType.MEDDRA) == 1
        assert VersionManager(db, DictionaryType.MEDDRA).get_active().id == kept

    def test_delete_ignores_stale_read(self, loaded_meddra, db, monkeypatch):
        """A version activated after a caller last read it is not deleted."""
        manager = loaded_meddra.versions
        active = manager.get_active()
        stale = active.model_copy(update={"is_active": False})
        monkeypatch.setattr(manager, "require", lambda version_id: stale)
        monkeypatch.setattr(manager, "get_by_id", lambda version_id: stale)

        with pytest.raises(InvalidStateError):
            manager.delete(active.id)

        with db.connection() as conn:
            llts = conn.execute("SELECT COUNT(*) FROM meddra_llt WHERE version_id = ?",
                                (active.id,)).fetchone()[0]
        assert llts == 6
        assert manager.get_active().id == active.id
