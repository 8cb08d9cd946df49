# SAGE MedDRA Flat Hierarchy Reader
# ==================================
"""
Reads a denormalised MedDRA hierarchy extract with pandas and splits it
into the same typed records the ASCII parsers produce, so it loads
through the regular bulk loader.

Each row of the extract is one SOC/HLGT/HLT/PT(/LLT) path. Supported
inputs:
- .sas7bdat  SAS dataset (mdhier style, as shipped with SAS MedDRA kits)
- .csv       comma-separated with a header row
- .txt       $-delimited with a header row
- .asc       MedDRA mdhier.asc, $-delimited, no header

Expected columns after normalisation:
- SOC_CODE, SOC_NAME, HLGT_CODE, HLGT_NAME, HLT_CODE, HLT_NAME,
  PT_CODE, PT_NAME (required)
- LLT_CODE, LLT_NAME, LLT_CURRENCY, SOC_ABBREV, PT_SOC_CODE,
  PRIMARY_SOC_FG (optional)
"""

import re
import logging
from pathlib import Path
from typing import Optional, Dict, List, Iterator, Any, Set

import pandas as pd

from .errors import DictionaryFileNotFoundError, UnsupportedFormatError
from .parsers import (
    LLTRecord,
    ParseStats,
    PTRecord,
    RelationshipRecord,
    SOCRecord,
    TermRecord,
)

logger = logging.getLogger(__name__)

# Column mappings for different MedDRA extract formats
COLUMN_MAPPINGS = {
    "soc_code": ["soc_code", "soc_cd", "soccd"],
    "soc_name": ["soc_name", "soc_nm", "socname"],
    "soc_abbrev": ["soc_abbrev", "soc_abbr", "socabbr"],
    "hlgt_code": ["hlgt_code", "hlgt_cd", "hlgtcd"],
    "hlgt_name": ["hlgt_name", "hlgt_nm", "hlgtname"],
    "hlt_code": ["hlt_code", "hlt_cd", "hltcd"],
    "hlt_name": ["hlt_name", "hlt_nm", "hltname"],
    "pt_code": ["pt_code", "pt_cd", "ptcd", "meddra_pt_cd"],
    "pt_name": ["pt_name", "pt_nm", "ptname", "meddra_pt_name"],
    "pt_soc_code": ["pt_soc_code", "pt_soc_cd", "primary_soc_cd", "primary_soc_code"],
    "primary_soc_fg": ["primary_soc_fg", "primary_soc_flag", "primary_path_flag", "prim_soc_fg"],
    "llt_code": ["llt_code", "llt_cd", "lltcd"],
    "llt_name": ["llt_name", "llt_nm", "lltname"],
    "llt_currency": ["llt_currency", "llt_currency_fg", "llt_current", "currency"],
}

REQUIRED_COLUMNS = [
    "soc_code", "soc_name", "hlgt_code", "hlgt_name",
    "hlt_code", "hlt_name", "pt_code", "pt_name",
]

CODE_COLUMNS = ["soc_code", "hlgt_code", "hlt_code", "pt_code", "llt_code", "pt_soc_code"]

# mdhier.asc column layout
MDHIER_COLUMNS = [
    "pt_code", "hlt_code", "hlgt_code", "soc_code",
    "pt_name", "hlt_name", "hlgt_name", "soc_name",
    "soc_abbrev", "null_field", "pt_soc_code", "primary_soc_fg",
]

# Order in which records are handed to the loader
FILE_KEYS = ("soc", "hlgt", "hlt", "pt", "llt", "soc_hlgt", "hlgt_hlt", "hlt_pt")

SUPPORTED_SUFFIXES = (".sas7bdat", ".csv", ".txt", ".asc")


def _to_code(value: Any) -> Optional[int]:
    """Convert SAS numerics / strings like '10019211.0' to int codes."""
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    if text in ("", "nan", "None"):
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def _to_text(value: Any) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    if isinstance(value, bytes):
        value = value.decode("latin1")
    text = str(value).strip()
    return text or None


def _drop(stats: ParseStats, what: str, reason: str):
    stats.lines_skipped += 1
    logger.debug(f"{stats.file_key or 'extract'}: dropped {what}: {reason}")


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Lower-case column names and map known variants to standard names."""
    df.columns = [str(c).lower().strip() for c in df.columns]
    rename_map = {}
    for standard_name, variants in COLUMN_MAPPINGS.items():
        for variant in variants:
            if variant in df.columns:
                rename_map[variant] = standard_name
                break
    if rename_map:
        df = df.rename(columns=rename_map)
    return df


def read_extract(path: str) -> pd.DataFrame:
    """
    Read a flat hierarchy extract into a normalised DataFrame.

    Args:
        path: Path to .sas7bdat, .csv, .txt or .asc file

    Returns:
        DataFrame with standard column names and integer code columns
    """
    path = Path(path)
    if not path.exists():
        raise DictionaryFileNotFoundError("mdhier", str(path))

    suffix = path.suffix.lower()
    if suffix == ".sas7bdat":
        try:
            df = pd.read_sas(path, encoding="latin1")
        except UnicodeDecodeError:
            df = pd.read_sas(path, encoding="utf-8")
    elif suffix == ".csv":
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    elif suffix == ".txt":
        df = pd.read_csv(path, sep="$", dtype=str, keep_default_na=False, engine="python")
    elif suffix == ".asc":
        df = pd.read_csv(path, sep="$", header=None, dtype=str, keep_default_na=False,
                         engine="python", encoding="latin1")
        # Trailing $ produces an extra empty column
        df = df.iloc[:, :len(MDHIER_COLUMNS)]
        df.columns = MDHIER_COLUMNS[:df.shape[1]]
    else:
        raise UnsupportedFormatError(
            f"Unsupported flat hierarchy format '{suffix}'; expected one of {', '.join(SUPPORTED_SUFFIXES)}"
        )

    df = normalize_columns(df)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise UnsupportedFormatError(
            f"Flat hierarchy {path.name} is missing columns: {', '.join(missing)}"
        )

    for col in CODE_COLUMNS:
        if col in df.columns:
            df[col] = df[col].apply(_to_code).astype("object")

    logger.info(f"Read {len(df)} hierarchy rows from {path.name}")
    return df


def detect_version(file_path: str, df: Optional[pd.DataFrame] = None) -> str:
    """Try to detect the MedDRA version from the file name or data."""
    file_name = Path(file_path).name.lower()

    version_patterns = [
        r'meddra[_\s]*v?(\d+\.?\d*)',
        r'v(\d+\.?\d*)',
        r'(\d+\.\d+)',
    ]
    for pattern in version_patterns:
        match = re.search(pattern, file_name)
        if match:
            return match.group(1)

    if df is not None:
        for col in ("meddra_version", "version", "mdhier_version"):
            if col in df.columns:
                versions = df[col].dropna().unique()
                if len(versions) > 0:
                    return str(versions[0])

    return "Unknown"


class FlatHierarchy:
    """Per-file record streams derived from one flat hierarchy extract."""

    def __init__(self, df: pd.DataFrame):
        self.df = df

    @classmethod
    def from_file(cls, path: str) -> "FlatHierarchy":
        return cls(read_extract(path))

    def _unique(self, columns: List[str], key: str) -> pd.DataFrame:
        present = [c for c in columns if c in self.df.columns]
        frame = self.df[present]
        frame = frame[frame[key].notna()]
        return frame.drop_duplicates(subset=[key])

    def _named_codes(self, level: str) -> Set[int]:
        """Codes of a level that carry a usable name, i.e. the ones that load."""
        frame = self._unique([f"{level}_code", f"{level}_name"], f"{level}_code")
        return {
            int(code) for code, name in frame.itertuples(index=False)
            if _to_text(name)
        }

    def _terms(self, level: str, stats: ParseStats) -> Iterator[TermRecord]:
        frame = self._unique([f"{level}_code", f"{level}_name"], f"{level}_code")
        for row in frame.itertuples(index=False):
            stats.lines_read += 1
            code = int(getattr(row, f"{level}_code"))
            name = _to_text(getattr(row, f"{level}_name"))
            if not name:
                _drop(stats, f"{level.upper()} {code}", "no name")
                continue
            stats.records += 1
            yield TermRecord(code=code, name=name)

    def _edges(self, parent: str, child: str, stats: ParseStats) -> Iterator[RelationshipRecord]:
        frame = self.df[[f"{parent}_code", f"{child}_code"]].drop_duplicates()
        parents = self._named_codes(parent)
        children = self._named_codes(child)
        for parent_code, child_code in frame.itertuples(index=False):
            stats.lines_read += 1
            if pd.isna(parent_code) or pd.isna(child_code):
                _drop(stats, f"{parent}/{child} link", "missing code")
                continue
            parent_code, child_code = int(parent_code), int(child_code)
            if parent_code not in parents or child_code not in children:
                _drop(stats, f"{parent}/{child} link {parent_code}->{child_code}", "links a dropped term")
                continue
            stats.records += 1
            yield RelationshipRecord(parent_code=parent_code, child_code=child_code)

    def socs(self, stats: ParseStats) -> Iterator[SOCRecord]:
        frame = self._unique(["soc_code", "soc_name", "soc_abbrev"], "soc_code")
        for row in frame.itertuples(index=False):
            stats.lines_read += 1
            name = _to_text(row.soc_name)
            if not name:
                _drop(stats, f"SOC {int(row.soc_code)}", "no name")
                continue
            stats.records += 1
            yield SOCRecord(
                code=int(row.soc_code),
                name=name,
                abbrev=_to_text(getattr(row, "soc_abbrev", None)),
            )

    def _primary_socs(self) -> Dict[int, int]:
        """PT code -> primary SOC code, from PT_SOC_CODE or a Y/N path flag."""
        if "pt_soc_code" in self.df.columns:
            frame = self.df[["pt_code", "pt_soc_code"]].dropna()
            return {int(pt): int(soc) for pt, soc in frame.drop_duplicates("pt_code").itertuples(index=False)}
        if "primary_soc_fg" in self.df.columns:
            flags = self.df["primary_soc_fg"].astype(str).str.strip().str.upper()
            frame = self.df.loc[flags == "Y", ["pt_code", "soc_code"]].dropna()
            return {int(pt): int(soc) for pt, soc in frame.drop_duplicates("pt_code").itertuples(index=False)}
        return {}

    def pts(self, stats: ParseStats) -> Iterator[PTRecord]:
        primary = self._primary_socs()
        frame = self._unique(["pt_code", "pt_name"], "pt_code")
        for row in frame.itertuples(index=False):
            stats.lines_read += 1
            code = int(row.pt_code)
            name = _to_text(row.pt_name)
            if not name:
                _drop(stats, f"PT {code}", "no name")
                continue
            stats.records += 1
            yield PTRecord(code=code, name=name, primary_soc_code=primary.get(code))

    def llts(self, stats: ParseStats) -> Iterator[LLTRecord]:
        has_llt = "llt_code" in self.df.columns and self.df["llt_code"].notna().any()
        if not has_llt:
            # Extract stops at PT: each PT stands in as its own LLT
            for pt in self.pts(stats):
                yield LLTRecord(code=pt.code, name=pt.name, pt_code=pt.code, is_current=True)
            return

        pt_codes = self._named_codes("pt")
        frame = self._unique(["llt_code", "llt_name", "pt_code", "llt_currency"], "llt_code")
        for row in frame.itertuples(index=False):
            stats.lines_read += 1
            code = int(row.llt_code)
            name = _to_text(row.llt_name)
            if not name:
                _drop(stats, f"LLT {code}", "no name")
                continue
            if row.pt_code is None or pd.isna(row.pt_code):
                _drop(stats, f"LLT {code}", "no PT code")
                continue
            if int(row.pt_code) not in pt_codes:
                _drop(stats, f"LLT {code}", f"PT {int(row.pt_code)} was dropped")
                continue
            currency = _to_text(getattr(row, "llt_currency", None))
            stats.records += 1
            yield LLTRecord(
                code=code,
                name=name,
                pt_code=int(row.pt_code),
                is_current=currency is None or currency.upper() == "Y",
            )

    def records(self, file_key: str, stats: Optional[ParseStats] = None) -> Iterator[Any]:
        """
        Record stream for one distribution file key.

        Rows that cannot become a record, or that hang off a dropped term,
        are counted in stats.lines_skipped and logged at DEBUG.
        """
        if stats is None:
            stats = ParseStats(file_key)
        if file_key == "soc":
            return self.socs(stats)
        if file_key in ("hlgt", "hlt"):
            return self._terms(file_key, stats)
        if file_key == "pt":
            return self.pts(stats)
        if file_key == "llt":
            return self.llts(stats)
        if file_key == "soc_hlgt":
            return self._edges("soc", "hlgt", stats)
        if file_key == "hlgt_hlt":
            return self._edges("hlgt", "hlt", stats)
        if file_key == "hlt_pt":
            return self._edges("hlt", "pt", stats)
        raise UnsupportedFormatError(f"Unknown meddra file key: {file_key}")
