# SAGE Terminology Bulk Loader
# =============================
"""
Transactional batched insert of parsed records.

Records are pulled from the parser generator in bounded chunks and
written with executemany, so memory stays flat regardless of file size.
One file is one transaction: a failure rolls back that file's rows but
leaves previously loaded files in place.
"""

import logging
from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Iterator, List, Tuple, Dict, Any, Optional

from .config import DEFAULT_BATCH_SIZE
from .database import TerminologyDB
from .errors import InvalidStateError, UnsupportedFormatError
from .models import DictionaryType, VersionStatus
from .versions import VersionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsertSpec:
    """Target table of one distribution file."""
    table: str
    columns: Tuple[str, ...]
    attributes: Tuple[str, ...]
    ignore_duplicates: bool = False

    @property
    def sql(self) -> str:
        verb = "INSERT OR IGNORE" if self.ignore_duplicates else "INSERT"
        columns = ", ".join(("version_id",) + self.columns)
        placeholders = ", ".join("?" for _ in range(len(self.columns) + 1))
        return f"{verb} INTO {self.table} ({columns}) VALUES ({placeholders})"

    def row(self, version_id: int, record: Any) -> tuple:
        return (version_id,) + tuple(getattr(record, attr) for attr in self.attributes)


_EDGE = ("parent_code", "child_code")

INSERT_SPECS: Dict[DictionaryType, Dict[str, InsertSpec]] = {
    DictionaryType.MEDDRA: {
        "soc": InsertSpec("meddra_soc", ("code", "name", "abbrev"), ("code", "name", "abbrev")),
        "hlgt": InsertSpec("meddra_hlgt", ("code", "name"), ("code", "name")),
        "hlt": InsertSpec("meddra_hlt", ("code", "name"), ("code", "name")),
        "pt": InsertSpec("meddra_pt", ("code", "name", "primary_soc_code"),
                         ("code", "name", "primary_soc_code")),
        "llt": InsertSpec("meddra_llt", ("code", "name", "pt_code", "is_current"),
                          ("code", "name", "pt_code", "is_current")),
        "soc_hlgt": InsertSpec("meddra_soc_hlgt", _EDGE, _EDGE, ignore_duplicates=True),
        "hlgt_hlt": InsertSpec("meddra_hlgt_hlt", _EDGE, _EDGE, ignore_duplicates=True),
        "hlt_pt": InsertSpec("meddra_hlt_pt", _EDGE, _EDGE, ignore_duplicates=True),
    },
    DictionaryType.WHODRUG: {
        "atc": InsertSpec("whodrug_atc", ("code", "name", "level", "parent_code"),
                          ("code", "name", "level", "parent_code")),
        "ingredients": InsertSpec("whodrug_ingredients", ("code", "name"), ("code", "name")),
        "products": InsertSpec(
            "whodrug_products",
            ("code", "name", "name_english", "country_code", "company", "atc_code",
             "formulation", "marketing_status"),
            ("code", "name", "name_english", "country_code", "company", "atc_code",
             "formulation", "marketing_status"),
        ),
        "product_ingredients": InsertSpec(
            "whodrug_product_ingredients",
            ("parent_code", "child_code", "strength"),
            ("parent_code", "child_code", "strength"),
            ignore_duplicates=True,
        ),
    },
}

# (leaf table, term table) behind DictionaryVersion.leaf_count / term_count
COUNT_TABLES: Dict[DictionaryType, Tuple[str, str]] = {
    DictionaryType.MEDDRA: ("meddra_llt", "meddra_pt"),
    DictionaryType.WHODRUG: ("whodrug_products", "whodrug_ingredients"),
}


def chunked(records: Iterable[Any], size: int) -> Iterator[List[Any]]:
    """Split an iterable into lists of at most `size` items."""
    iterator = iter(records)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


class BulkLoader:
    """Loads parsed distribution files into a provisioning version."""

    def __init__(
        self,
        db: TerminologyDB,
        dictionary_type: DictionaryType,
        batch_size: int = DEFAULT_BATCH_SIZE,
        versions: Optional[VersionManager] = None
    ):
        self.db = db
        self.dictionary_type = DictionaryType(dictionary_type)
        self.batch_size = batch_size
        self.versions = versions or VersionManager(db, self.dictionary_type)

    def _spec(self, file_key: str) -> InsertSpec:
        try:
            return INSERT_SPECS[self.dictionary_type][file_key]
        except KeyError:
            raise UnsupportedFormatError(
                f"Unknown {self.dictionary_type.value} file key: {file_key}"
            )

    def _require_provisioning(self, version_id: int):
        version = self.versions.require(version_id)
        if version.status != VersionStatus.PROVISIONING:
            raise InvalidStateError(
                f"{self.dictionary_type.value} version {version_id} is "
                f"{version.status.value}; records can only be loaded while provisioning"
            )

    def load(self, version_id: int, file_key: str, records: Iterable[Any]) -> int:
        """
        Insert all records of one file inside a single transaction.

        Args:
            version_id: Target provisioning version
            file_key: Distribution file the records came from
            records: Homogeneous record stream (usually a parser generator)

        Returns:
            Number of records written
        """
        spec = self._spec(file_key)
        self._require_provisioning(version_id)

        total = 0
        with self.db.connection() as conn:
            for chunk in chunked(records, self.batch_size):
                conn.executemany(spec.sql, [spec.row(version_id, r) for r in chunk])
                total += len(chunk)
                logger.debug(f"{file_key}: {total} rows staged for version {version_id}")

        logger.info(f"Loaded {total} {file_key} records into {self.dictionary_type.value} version {version_id}")
        return total

    def finalize(self, version_id: int) -> Tuple[int, int]:
        """
        Recompute aggregate counts and mark the version loaded.

        Returns:
            (leaf_count, term_count)
        """
        self._require_provisioning(version_id)
        leaf_table, term_table = COUNT_TABLES[self.dictionary_type]

        with self.db.connection() as conn:
            leaf_count = conn.execute(
                f"SELECT COUNT(*) FROM {leaf_table} WHERE version_id = ?", (version_id,)
            ).fetchone()[0]
            term_count = conn.execute(
                f"SELECT COUNT(*) FROM {term_table} WHERE version_id = ?", (version_id,)
            ).fetchone()[0]

        self.versions.mark_loaded(version_id, leaf_count, term_count)
        logger.info(
            f"{self.dictionary_type.value} version {version_id} loaded: "
            f"{leaf_count} leaf terms, {term_count} terms"
        )
        return leaf_count, term_count
