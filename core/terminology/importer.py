# SAGE Terminology Import Pipeline
# =================================
"""
Parse-file -> load-file orchestration for one dictionary type.

The whole file set is validated before any version row exists. Files are
then loaded strictly in distribution order (levels before relationships),
one transaction per file. A failure marks the version failed and leaves
earlier files committed; the caller deletes the failed version and
retries with a fresh import.

Progress is kept in a lock-guarded ImportProgress snapshot that pollers
read through get_progress(), which always returns a copy.
"""

import os
import logging
import threading
from pathlib import Path
from typing import Optional, Dict, List, Tuple, Iterator, Any, Callable

from .config import DEFAULT_BATCH_SIZE
from .database import TerminologyDB
from .errors import (
    DictionaryFileNotFoundError,
    ImportFailedError,
    InvalidStateError,
    UnsupportedFormatError,
)
from .flat_hierarchy import FILE_KEYS as FLAT_FILE_KEYS, FlatHierarchy, detect_version
from .loader import BulkLoader
from .models import DictionaryType, DictionaryVersion, ImportProgress, ImportStatus
from .parsers import (
    IGNORED_FILE_KEYS,
    FileFormat,
    ParseStats,
    distribution_files,
    parse_file,
)
from .versions import VersionManager

logger = logging.getLogger(__name__)

RUNNING_STATES = (ImportStatus.PARSING, ImportStatus.IMPORTING, ImportStatus.FINALIZING)

# (file key, callable producing the record stream and its stats)
ImportStep = Tuple[str, Callable[[], Tuple[Iterator[Any], ParseStats]]]


class DictionaryImporter:
    """Runs imports for one dictionary type and reports their progress."""

    def __init__(
        self,
        db: TerminologyDB,
        dictionary_type: DictionaryType,
        batch_size: int = DEFAULT_BATCH_SIZE,
        versions: Optional[VersionManager] = None
    ):
        self.db = db
        self.dictionary_type = DictionaryType(dictionary_type)
        self.versions = versions or VersionManager(db, self.dictionary_type)
        self.loader = BulkLoader(db, self.dictionary_type, batch_size=batch_size, versions=self.versions)

        self._lock = threading.Lock()
        self._progress: Optional[ImportProgress] = None

    # ==================== PROGRESS ====================

    def get_progress(self) -> Optional[ImportProgress]:
        """Snapshot of the running (or last) import, or None if none ran."""
        with self._lock:
            return self._progress.model_copy() if self._progress else None

    def _update(self, **changes):
        with self._lock:
            self._progress = self._progress.model_copy(update=changes)

    def _begin(self, total_files: int):
        with self._lock:
            if self._progress is not None and self._progress.status in RUNNING_STATES:
                raise InvalidStateError(
                    f"A {self.dictionary_type.value} import is already running "
                    f"(version {self._progress.version_id})"
                )
            self._progress = ImportProgress(
                dictionary_type=self.dictionary_type,
                status=ImportStatus.PARSING,
                total_files=total_files,
            )

    def _create_version(self, label: str, release_date: Optional[str], imported_by: Optional[str]) -> int:
        try:
            version_id = self.versions.create(label, release_date, imported_by)
        except Exception as e:
            self._update(status=ImportStatus.FAILED, error=f"create: {e}")
            raise
        self._update(version_id=version_id)
        return version_id

    # ==================== VALIDATION ====================

    def validate_files(self, file_paths: Dict[str, str]) -> List[Tuple[FileFormat, str]]:
        """
        Check a file set before anything is written.

        Args:
            file_paths: Mapping of file key to path

        Returns:
            (FileFormat, path) pairs in load order

        Raises:
            UnsupportedFormatError: unknown file key
            DictionaryFileNotFoundError: required file missing or unreadable
        """
        formats = distribution_files(self.dictionary_type)
        known = {f.key for f in formats}
        ignored = set(IGNORED_FILE_KEYS[self.dictionary_type])

        unknown = sorted(k for k in file_paths if k not in known and k not in ignored)
        if unknown:
            raise UnsupportedFormatError(
                f"Unknown {self.dictionary_type.value} file key(s): {', '.join(unknown)}"
            )

        plan = []
        for file_format in formats:
            path = file_paths.get(file_format.key)
            if not path:
                if file_format.required:
                    raise DictionaryFileNotFoundError(
                        file_format.key, file_format.description, "required file not provided"
                    )
                continue
            path = Path(path)
            if not path.is_file():
                raise DictionaryFileNotFoundError(file_format.key, str(path))
            if not os.access(path, os.R_OK):
                raise DictionaryFileNotFoundError(file_format.key, str(path), "file not readable")
            plan.append((file_format, str(path)))

        for key in sorted(ignored & set(file_paths)):
            logger.info(f"Ignoring {self.dictionary_type.value} file '{key}'")

        return plan

    # ==================== PIPELINE ====================

    def _execute(self, version_id: int, steps: List[ImportStep]) -> DictionaryVersion:
        records_total = 0
        skipped_total = 0

        for index, (file_key, open_stream) in enumerate(steps):
            self._update(status=ImportStatus.PARSING, current_file=file_key)
            try:
                records, stats = open_stream()
                self._update(status=ImportStatus.IMPORTING)
                count = self.loader.load(version_id, file_key, records)
            except Exception as e:
                self._fail(version_id, file_key, e)
                raise ImportFailedError(file_key, version_id, str(e)) from e

            if stats.lines_skipped:
                logger.warning(
                    f"{file_key}: skipped {stats.lines_skipped} malformed line(s) "
                    f"of {stats.lines_read}"
                )
            records_total += count
            skipped_total += stats.lines_skipped
            self._update(
                files_processed=index + 1,
                records_imported=records_total,
                lines_skipped=skipped_total,
            )

        self._update(status=ImportStatus.FINALIZING, current_file=None)
        try:
            self.loader.finalize(version_id)
        except Exception as e:
            self._fail(version_id, "finalize", e)
            raise ImportFailedError("finalize", version_id, str(e)) from e

        self._update(status=ImportStatus.COMPLETED)
        version = self.versions.require(version_id)
        logger.info(
            f"Imported {self.dictionary_type.value} {version.label} as version {version_id}: "
            f"{records_total} records, {skipped_total} skipped lines"
        )
        return version

    def _fail(self, version_id: int, file_key: str, error: Exception):
        logger.error(f"{self.dictionary_type.value} import failed on {file_key}: {error}")
        with self._lock:
            first_error = self._progress.error or f"{file_key}: {error}"
            self._progress = self._progress.model_copy(update={
                "status": ImportStatus.FAILED,
                "error": first_error,
            })
        self.versions.mark_failed(version_id)

    def run(
        self,
        label: str,
        file_paths: Dict[str, str],
        release_date: Optional[str] = None,
        imported_by: Optional[str] = None
    ) -> DictionaryVersion:
        """
        Import a complete distribution into a new version.

        The new version is left inactive; activation is a separate step.

        Args:
            label: Human label, e.g. "27.0"
            file_paths: Mapping of file key to path
            release_date: Vendor release date
            imported_by: Identity of the importer

        Returns:
            The loaded DictionaryVersion

        Raises:
            DictionaryFileNotFoundError, UnsupportedFormatError: before any write
            ImportFailedError: a file failed; the version is marked failed
        """
        plan = self.validate_files(file_paths)
        self._begin(total_files=len(plan))
        version_id = self._create_version(label, release_date, imported_by)

        def opener(file_format: FileFormat, path: str):
            def open_stream():
                stats = ParseStats(file_format.key)
                return parse_file(self.dictionary_type, file_format.key, path, stats), stats
            return open_stream

        steps = [(f.key, opener(f, path)) for f, path in plan]
        return self._execute(version_id, steps)

    def run_flat(
        self,
        path: str,
        label: Optional[str] = None,
        release_date: Optional[str] = None,
        imported_by: Optional[str] = None
    ) -> DictionaryVersion:
        """
        Import a MedDRA flat hierarchy extract (SAS, CSV or mdhier) into a new version.

        Args:
            path: Path to the extract
            label: Version label; detected from the file name when omitted
        """
        if self.dictionary_type != DictionaryType.MEDDRA:
            raise UnsupportedFormatError(
                f"Flat hierarchy import is only available for meddra, not {self.dictionary_type.value}"
            )
        # Reading up front keeps missing columns from creating a version row
        hierarchy = FlatHierarchy.from_file(path)
        if label is None:
            label = detect_version(path, hierarchy.df)

        self._begin(total_files=len(FLAT_FILE_KEYS))
        version_id = self._create_version(label, release_date, imported_by)

        def opener(file_key: str):
            def open_stream():
                stats = ParseStats(file_key)
                return hierarchy.records(file_key, stats), stats
            return open_stream

        steps = [(key, opener(key)) for key in FLAT_FILE_KEYS]
        return self._execute(version_id, steps)
