# SAGE Terminology Parsers
# =========================
"""
Streaming parsers for vendor distribution files.

Every parser is a generator: it yields typed records one line at a time
and cannot be restarted. Lines whose required leading columns do not
parse are dropped, never raised, but each drop is counted in the
ParseStats passed by the caller.

MedDRA ASCII ($-delimited, no header):
- soc.asc:      soc_code$soc_name$soc_abbrev$...
- hlgt.asc:     hlgt_code$hlgt_name$...
- hlt.asc:      hlt_code$hlt_name$...
- pt.asc:       pt_code$pt_name$null_field$pt_soc_code$...
- llt.asc:      llt_code$llt_name$pt_code$...$llt_currency$... (currency at column 10)
- soc_hlgt.asc, hlgt_hlt.asc, hlt_pt.asc: parent_code$child_code$

WHO Drug (|-delimited, optional header row):
- atc:                 atc_code|atc_name
- ingredients:         ingredient_id|name
- products:            drug_code|drug_name|drug_name_english|country_code|company|atc_code|formulation|marketing_status
- product_ingredients: drug_code|ingredient_id|strength
"""

import codecs
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict, Iterator, Callable, Tuple, Any

from .errors import UnsupportedFormatError
from .models import DictionaryType

logger = logging.getLogger(__name__)

MEDDRA_DELIMITER = "$"
WHODRUG_DELIMITER = "|"

# Tokens that mark the first WHO Drug line as a header row
HEADER_TOKENS = {
    "code", "id", "name", "atc", "atc_code", "atc_name", "drug_code", "drug_name",
    "drug_name_english", "ingredient", "ingredient_id", "ingredient_name", "strength",
}


@dataclass
class ParseStats:
    """Line accounting for one parsed file."""
    file_key: str = ""
    lines_read: int = 0
    records: int = 0
    lines_skipped: int = 0


# =============================================================================
# RECORD TYPES
# =============================================================================

@dataclass
class SOCRecord:
    code: int
    name: str
    abbrev: Optional[str] = None


@dataclass
class TermRecord:
    """HLGT or HLT term."""
    code: int
    name: str


@dataclass
class PTRecord:
    code: int
    name: str
    primary_soc_code: Optional[int] = None


@dataclass
class LLTRecord:
    code: int
    name: str
    pt_code: int
    is_current: bool = True


@dataclass
class RelationshipRecord:
    """Edge between adjacent levels, referenced by natural code."""
    parent_code: Any
    child_code: Any
    strength: Optional[str] = None


@dataclass
class ATCRecord:
    code: str
    name: str
    level: int
    parent_code: Optional[str] = None


@dataclass
class IngredientRecord:
    code: str
    name: str


@dataclass
class ProductRecord:
    code: str
    name: str
    name_english: Optional[str] = None
    country_code: Optional[str] = None
    company: Optional[str] = None
    atc_code: Optional[str] = None
    formulation: Optional[str] = None
    marketing_status: Optional[str] = None


# =============================================================================
# HELPERS
# =============================================================================

def _parse_int(value: str) -> Optional[int]:
    value = value.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _optional(parts: List[str], index: int) -> Optional[str]:
    if index >= len(parts):
        return None
    value = parts[index].strip()
    return value or None


def file_encoding(path: str) -> str:
    """
    utf-8-sig when the whole file decodes as UTF-8, otherwise latin-1.

    Older MedDRA and WHO Drug releases ship Latin-1 text; every byte
    sequence is valid latin-1, so the fallback never loses characters.
    """
    decoder = codecs.getincrementaldecoder("utf-8-sig")()
    with open(path, "rb") as f:
        try:
            for chunk in iter(lambda: f.read(1 << 16), b""):
                decoder.decode(chunk)
            decoder.decode(b"", final=True)
        except UnicodeDecodeError:
            logger.info(f"{Path(path).name} is not valid UTF-8; reading as latin-1")
            return "latin-1"
    return "utf-8-sig"


def _split_lines(path: str, delimiter: str, stats: ParseStats) -> Iterator[Tuple[int, List[str]]]:
    """Yield (line number, columns) for every non-blank line."""
    with open(path, "r", encoding=file_encoding(path), newline="") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            stats.lines_read += 1
            yield line_no, line.split(delimiter)


def _skip(stats: ParseStats, line_no: int, reason: str):
    stats.lines_skipped += 1
    logger.debug(f"{stats.file_key or 'file'} line {line_no} skipped: {reason}")


def looks_like_header(parts: List[str]) -> bool:
    """True if any column of the first line is an id/name-like token."""
    for token in parts:
        token = token.strip().lower()
        if not token:
            continue
        if token in HEADER_TOKENS or token.endswith(("_code", "_id", "_name")):
            return True
    return False


def _whodrug_rows(path: str, stats: ParseStats) -> Iterator[Tuple[int, List[str]]]:
    first = True
    for line_no, parts in _split_lines(path, WHODRUG_DELIMITER, stats):
        if first:
            first = False
            if looks_like_header(parts):
                stats.lines_read -= 1
                logger.debug(f"{stats.file_key or path}: header row detected")
                continue
        yield line_no, parts


def atc_level(code: str) -> int:
    """
    ATC level from code length.

    Level 1: A (1 char)
    Level 2: A01 (3 chars)
    Level 3: A01A (4 chars)
    Level 4: A01AA (5 chars)
    Level 5: A01AA01 (7+ chars)

    Returns 0 for lengths that match no level.
    """
    length = len(code or "")
    if length == 1:
        return 1
    if length == 3:
        return 2
    if length == 4:
        return 3
    if length == 5:
        return 4
    if length >= 7:
        return 5
    return 0


ATC_PREFIX_LENGTHS = {2: 1, 3: 3, 4: 4, 5: 5}


def atc_parent(code: str) -> Optional[str]:
    """Parent ATC code: the code truncated to the previous level's length."""
    level = atc_level(code)
    if level <= 1:
        return None
    return code[:ATC_PREFIX_LENGTHS[level]]


# =============================================================================
# MEDDRA PARSERS
# =============================================================================

def parse_soc(path: str, stats: Optional[ParseStats] = None) -> Iterator[SOCRecord]:
    stats = stats if stats is not None else ParseStats("soc")
    for line_no, parts in _split_lines(path, MEDDRA_DELIMITER, stats):
        code = _parse_int(parts[0])
        name = parts[1].strip() if len(parts) >= 3 else ""
        if code is None or not name:
            _skip(stats, line_no, "expected soc_code$soc_name$soc_abbrev")
            continue
        stats.records += 1
        yield SOCRecord(code=code, name=name, abbrev=_optional(parts, 2))


def _parse_simple_terms(path: str, stats: ParseStats) -> Iterator[TermRecord]:
    for line_no, parts in _split_lines(path, MEDDRA_DELIMITER, stats):
        code = _parse_int(parts[0])
        name = parts[1].strip() if len(parts) >= 2 else ""
        if code is None or not name:
            _skip(stats, line_no, "expected code$name")
            continue
        stats.records += 1
        yield TermRecord(code=code, name=name)


def parse_hlgt(path: str, stats: Optional[ParseStats] = None) -> Iterator[TermRecord]:
    return _parse_simple_terms(path, stats if stats is not None else ParseStats("hlgt"))


def parse_hlt(path: str, stats: Optional[ParseStats] = None) -> Iterator[TermRecord]:
    return _parse_simple_terms(path, stats if stats is not None else ParseStats("hlt"))


def parse_pt(path: str, stats: Optional[ParseStats] = None) -> Iterator[PTRecord]:
    stats = stats if stats is not None else ParseStats("pt")
    for line_no, parts in _split_lines(path, MEDDRA_DELIMITER, stats):
        code = _parse_int(parts[0])
        name = parts[1].strip() if len(parts) >= 4 else ""
        if code is None or not name:
            _skip(stats, line_no, "expected pt_code$pt_name$null_field$pt_soc_code")
            continue
        stats.records += 1
        yield PTRecord(code=code, name=name, primary_soc_code=_parse_int(parts[3]))


def parse_llt(path: str, stats: Optional[ParseStats] = None) -> Iterator[LLTRecord]:
    stats = stats if stats is not None else ParseStats("llt")
    for line_no, parts in _split_lines(path, MEDDRA_DELIMITER, stats):
        if len(parts) < 10:
            _skip(stats, line_no, "fewer than 10 columns")
            continue
        code = _parse_int(parts[0])
        pt_code = _parse_int(parts[2])
        name = parts[1].strip()
        if code is None or pt_code is None or not name:
            _skip(stats, line_no, "expected llt_code$llt_name$pt_code")
            continue
        stats.records += 1
        yield LLTRecord(
            code=code,
            name=name,
            pt_code=pt_code,
            is_current=parts[9].strip().upper() == "Y",
        )


def _parse_edges(path: str, stats: ParseStats) -> Iterator[RelationshipRecord]:
    for line_no, parts in _split_lines(path, MEDDRA_DELIMITER, stats):
        parent = _parse_int(parts[0])
        child = _parse_int(parts[1]) if len(parts) >= 2 else None
        if parent is None or child is None:
            _skip(stats, line_no, "expected parent_code$child_code")
            continue
        stats.records += 1
        yield RelationshipRecord(parent_code=parent, child_code=child)


def parse_soc_hlgt(path: str, stats: Optional[ParseStats] = None) -> Iterator[RelationshipRecord]:
    return _parse_edges(path, stats if stats is not None else ParseStats("soc_hlgt"))


def parse_hlgt_hlt(path: str, stats: Optional[ParseStats] = None) -> Iterator[RelationshipRecord]:
    return _parse_edges(path, stats if stats is not None else ParseStats("hlgt_hlt"))


def parse_hlt_pt(path: str, stats: Optional[ParseStats] = None) -> Iterator[RelationshipRecord]:
    return _parse_edges(path, stats if stats is not None else ParseStats("hlt_pt"))


# =============================================================================
# WHO DRUG PARSERS
# =============================================================================

def parse_atc(path: str, stats: Optional[ParseStats] = None) -> Iterator[ATCRecord]:
    stats = stats if stats is not None else ParseStats("atc")
    for line_no, parts in _whodrug_rows(path, stats):
        code = parts[0].strip()
        name = parts[1].strip() if len(parts) >= 2 else ""
        level = atc_level(code)
        if not code or not name or level == 0:
            _skip(stats, line_no, "expected atc_code|atc_name with a valid ATC code length")
            continue
        stats.records += 1
        yield ATCRecord(code=code, name=name, level=level, parent_code=atc_parent(code))


def parse_ingredients(path: str, stats: Optional[ParseStats] = None) -> Iterator[IngredientRecord]:
    stats = stats if stats is not None else ParseStats("ingredients")
    for line_no, parts in _whodrug_rows(path, stats):
        code = parts[0].strip()
        name = parts[1].strip() if len(parts) >= 2 else ""
        if not code or not name:
            _skip(stats, line_no, "expected ingredient_id|name")
            continue
        stats.records += 1
        yield IngredientRecord(code=code, name=name)


def parse_products(path: str, stats: Optional[ParseStats] = None) -> Iterator[ProductRecord]:
    stats = stats if stats is not None else ParseStats("products")
    for line_no, parts in _whodrug_rows(path, stats):
        code = parts[0].strip()
        name = parts[1].strip() if len(parts) >= 2 else ""
        if not code or not name:
            _skip(stats, line_no, "expected drug_code|drug_name")
            continue
        stats.records += 1
        yield ProductRecord(
            code=code,
            name=name,
            name_english=_optional(parts, 2),
            country_code=_optional(parts, 3),
            company=_optional(parts, 4),
            atc_code=_optional(parts, 5),
            formulation=_optional(parts, 6),
            marketing_status=_optional(parts, 7),
        )


def parse_product_ingredients(path: str, stats: Optional[ParseStats] = None) -> Iterator[RelationshipRecord]:
    stats = stats if stats is not None else ParseStats("product_ingredients")
    for line_no, parts in _whodrug_rows(path, stats):
        drug_code = parts[0].strip()
        ingredient_id = parts[1].strip() if len(parts) >= 2 else ""
        if not drug_code or not ingredient_id:
            _skip(stats, line_no, "expected drug_code|ingredient_id")
            continue
        stats.records += 1
        yield RelationshipRecord(
            parent_code=drug_code,
            child_code=ingredient_id,
            strength=_optional(parts, 2),
        )


# =============================================================================
# DISTRIBUTION LAYOUTS
# =============================================================================

@dataclass(frozen=True)
class FileFormat:
    """One file of a distribution, in load order."""
    key: str
    parser: Callable[..., Iterator[Any]]
    required: bool = True
    description: str = ""


# Level files first: relationship rows reference codes by value
DISTRIBUTIONS: Dict[DictionaryType, Tuple[FileFormat, ...]] = {
    DictionaryType.MEDDRA: (
        FileFormat("soc", parse_soc, description="soc.asc"),
        FileFormat("hlgt", parse_hlgt, description="hlgt.asc"),
        FileFormat("hlt", parse_hlt, description="hlt.asc"),
        FileFormat("pt", parse_pt, description="pt.asc"),
        FileFormat("llt", parse_llt, description="llt.asc"),
        FileFormat("soc_hlgt", parse_soc_hlgt, description="soc_hlgt.asc"),
        FileFormat("hlgt_hlt", parse_hlgt_hlt, description="hlgt_hlt.asc"),
        FileFormat("hlt_pt", parse_hlt_pt, description="hlt_pt.asc"),
    ),
    DictionaryType.WHODRUG: (
        FileFormat("atc", parse_atc, description="ATC codes"),
        FileFormat("ingredients", parse_ingredients, description="Ingredients"),
        FileFormat("products", parse_products, description="Products"),
        FileFormat("product_ingredients", parse_product_ingredients, required=False,
                   description="Product-Ingredient relationships"),
    ),
}

# Accepted in a file set but not loaded
IGNORED_FILE_KEYS: Dict[DictionaryType, Tuple[str, ...]] = {
    DictionaryType.MEDDRA: ("mdhier",),
    DictionaryType.WHODRUG: (),
}


def distribution_files(dictionary_type: DictionaryType) -> Tuple[FileFormat, ...]:
    try:
        return DISTRIBUTIONS[DictionaryType(dictionary_type)]
    except ValueError:
        raise UnsupportedFormatError(f"Unsupported dictionary type: {dictionary_type}")


def get_file_format(dictionary_type: DictionaryType, file_key: str) -> FileFormat:
    for file_format in distribution_files(dictionary_type):
        if file_format.key == file_key:
            return file_format
    raise UnsupportedFormatError(
        f"Unknown {DictionaryType(dictionary_type).value} file key: {file_key}"
    )


def parse_file(
    dictionary_type: DictionaryType,
    file_key: str,
    path: str,
    stats: Optional[ParseStats] = None
) -> Iterator[Any]:
    """
    Stream typed records from one distribution file.

    Args:
        dictionary_type: MEDDRA or WHODRUG
        file_key: Key of the file within the distribution (e.g. "llt")
        path: Path to the file
        stats: Optional ParseStats to accumulate line counts into

    Returns:
        Generator of records
    """
    file_format = get_file_format(dictionary_type, file_key)
    if stats is None:
        stats = ParseStats(file_key)
    elif not stats.file_key:
        stats.file_key = file_key
    return file_format.parser(str(path), stats)
