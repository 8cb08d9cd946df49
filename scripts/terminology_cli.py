#!/usr/bin/env python
# SAGE - Terminology Dictionary CLI
# ==================================
# Imports and queries versioned MedDRA / WHO Drug dictionaries
"""
Terminology command line tool.

Operator entry point for the terminology engine:
1. Import a distribution (file set or MedDRA flat hierarchy extract)
2. List, activate and delete dictionary versions
3. Search, browse and code terms against a version

Usage:
    python scripts/terminology_cli.py --type meddra import --label 27.0 --dir /data/meddra_27_0/MedAscii
    python scripts/terminology_cli.py --type meddra import-flat /data/mdhier_v27.0.sas7bdat --activate
    python scripts/terminology_cli.py --type whodrug import --label 2024-Mar --file atc=atc.txt --file products=drugs.txt ...
    python scripts/terminology_cli.py --type meddra list
    python scripts/terminology_cli.py --type meddra activate 2
    python scripts/terminology_cli.py --type meddra search "heart rate"
    python scripts/terminology_cli.py --type meddra browse --level soc --code 10007541
    python scripts/terminology_cli.py --type meddra code 10047065 "pt felt dizzy" --coder jdoe
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.terminology import (
    DictionaryType,
    Level,
    TerminologyDB,
    TerminologyError,
    TerminologyService,
    load_config,
)
from core.terminology.parsers import IGNORED_FILE_KEYS, distribution_files

logger = logging.getLogger(__name__)


def discover_files(directory: str, dictionary_type: DictionaryType) -> Dict[str, str]:
    """
    Map distribution file keys to files in a directory by file stem.

    e.g. MedAscii/llt.asc -> {"llt": ".../llt.asc"}
    """
    directory = Path(directory)
    keys = [f.key for f in distribution_files(dictionary_type)]
    keys.extend(IGNORED_FILE_KEYS[DictionaryType(dictionary_type)])

    found = {}
    for path in sorted(directory.iterdir()):
        if not path.is_file():
            continue
        stem = path.stem.lower()
        if stem in keys and stem not in found:
            found[stem] = str(path)
    return found


def parse_file_args(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated --file key=path options."""
    files = {}
    for value in values or []:
        if "=" not in value:
            raise argparse.ArgumentTypeError(f"Expected key=path, got '{value}'")
        key, path = value.split("=", 1)
        files[key.strip().lower()] = path.strip()
    return files


def build_service(args) -> TerminologyService:
    config = load_config()
    if args.db_path:
        config.db_path = Path(args.db_path)
    db = TerminologyDB(str(config.db_path))
    return TerminologyService(args.type, db=db, config=config)


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_import(service: TerminologyService, args) -> int:
    files = discover_files(args.dir, service.dictionary_type) if args.dir else {}
    files.update(parse_file_args(args.file))

    logger.info(f"Importing {service.dictionary_type.value} {args.label} from {len(files)} file(s)")
    version = service.import_dictionary(
        args.label, files,
        release_date=args.release_date,
        imported_by=args.imported_by,
    )
    _report_import(service, version.id)
    if args.activate:
        service.activate_version(version.id)
        logger.info(f"Version {version.id} is now active")
    return 0


def cmd_import_flat(service: TerminologyService, args) -> int:
    version = service.import_flat_hierarchy(
        args.path,
        label=args.label,
        release_date=args.release_date,
        imported_by=args.imported_by,
    )
    _report_import(service, version.id)
    if args.activate:
        service.activate_version(version.id)
        logger.info(f"Version {version.id} is now active")
    return 0


def _report_import(service: TerminologyService, version_id: int):
    version = service.get_version(version_id)
    progress = service.get_import_progress()
    logger.info("=" * 60)
    logger.info(f"Version {version.id}: {version.label} ({version.status.value})")
    logger.info(f"  Leaf terms: {version.leaf_count}")
    logger.info(f"  Terms: {version.term_count}")
    if progress is not None:
        logger.info(f"  Records imported: {progress.records_imported}")
        logger.info(f"  Lines skipped: {progress.lines_skipped}")
    logger.info("=" * 60)


def cmd_list(service: TerminologyService, args) -> int:
    versions = service.list_versions()
    if not versions:
        logger.info(f"No {service.dictionary_type.value} versions")
        return 0
    for v in versions:
        marker = "*" if v.is_active else " "
        logger.info(
            f"{marker} {v.id:>4}  {v.label:<12} {v.status.value:<12} "
            f"{v.leaf_count:>8} leaf  {v.term_count:>8} terms  {v.import_date:%Y-%m-%d %H:%M}"
        )
    return 0


def cmd_activate(service: TerminologyService, args) -> int:
    version = service.activate_version(args.version_id)
    logger.info(f"Activated {service.dictionary_type.value} version {version.id} ({version.label})")
    return 0


def cmd_delete(service: TerminologyService, args) -> int:
    service.delete_version(args.version_id)
    logger.info(f"Deleted {service.dictionary_type.value} version {args.version_id}")
    return 0


def cmd_search(service: TerminologyService, args) -> int:
    results = service.search(
        args.query,
        limit=args.limit,
        include_non_current=args.include_non_current,
        version_id=args.version,
        country_code=args.country,
    )
    if not results:
        logger.info(f"No matches for '{args.query}'")
        return 0
    for r in results:
        current = "" if r.is_current else " [non-current]"
        logger.info(
            f"[{r.match_score}] {r.code} {r.name}{current} | "
            f"{r.parent_code} {r.parent_name} | {r.top_code} {r.top_name}"
        )
    return 0


def cmd_browse(service: TerminologyService, args) -> int:
    level = Level(args.level) if args.level else None
    for node in service.browse(args.code, level, version_id=args.version):
        suffix = "" if node.is_leaf else " +"
        logger.info(f"{node.key:<20} {node.title}{suffix}")
    return 0


def cmd_code(service: TerminologyService, args) -> int:
    level = Level(args.level) if args.level else None
    coding = service.resolve_coding(
        args.code, args.verbatim,
        coder_id=args.coder,
        level=level,
        version_id=args.version,
    )
    logger.info(f"'{coding.verbatim_text}' -> {coding.code} {coding.name} (version {coding.version_label})")
    for entry in coding.path:
        logger.info(f"  {entry.level.value.upper():<10} {entry.code} {entry.name}")
    logger.info(
        f"  primary path: {coding.is_primary_path}, "
        f"alternative paths: {coding.alternative_path_count}"
    )
    for ingredient in coding.ingredients:
        logger.info(f"  ingredient: {ingredient}")
    return 0


def cmd_stats(service: TerminologyService, args) -> int:
    stats = service.get_statistics(args.version)
    logger.info("=" * 60)
    logger.info(f"{stats['dictionary_type']} version {stats['version_id']} ({stats['label']})")
    logger.info(f"  Status: {stats['status']}{' (active)' if stats['is_active'] else ''}")
    for level, count in stats["levels"].items():
        logger.info(f"  {level.upper():<12} {count}")
    logger.info("=" * 60)
    return 0


COMMANDS = {
    "import": cmd_import,
    "import-flat": cmd_import_flat,
    "list": cmd_list,
    "activate": cmd_activate,
    "delete": cmd_delete,
    "search": cmd_search,
    "browse": cmd_browse,
    "code": cmd_code,
    "stats": cmd_stats,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SAGE Terminology: MedDRA / WHO Drug dictionary management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/terminology_cli.py --type meddra import --label 27.0 --dir MedAscii --activate
  python scripts/terminology_cli.py --type meddra list
  python scripts/terminology_cli.py --type meddra search "headache"
  python scripts/terminology_cli.py --type whodrug browse --level atc1 --code N
        """
    )

    parser.add_argument(
        "--type",
        choices=[t.value for t in DictionaryType],
        default=DictionaryType.MEDDRA.value,
        help="Dictionary type"
    )

    parser.add_argument(
        "--db-path",
        help="Path to terminology database (default: TERMINOLOGY_DB_PATH or data/database/terminology.db)"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="Import a distribution file set")
    p.add_argument("--label", required=True, help="Version label, e.g. 27.0")
    p.add_argument("--dir", help="Directory holding the distribution files")
    p.add_argument("--file", action="append", help="key=path (repeatable, overrides --dir)")
    p.add_argument("--release-date", help="Vendor release date")
    p.add_argument("--imported-by", help="Importer identity")
    p.add_argument("--activate", action="store_true", help="Activate after a successful import")

    p = sub.add_parser("import-flat", help="Import a MedDRA flat hierarchy extract")
    p.add_argument("path", help="Path to .sas7bdat, .csv, .txt or mdhier .asc")
    p.add_argument("--label", help="Version label (default: detected from file name)")
    p.add_argument("--release-date", help="Vendor release date")
    p.add_argument("--imported-by", help="Importer identity")
    p.add_argument("--activate", action="store_true", help="Activate after a successful import")

    sub.add_parser("list", help="List versions")

    p = sub.add_parser("activate", help="Activate a version")
    p.add_argument("version_id", type=int)

    p = sub.add_parser("delete", help="Delete an inactive version")
    p.add_argument("version_id", type=int)

    p = sub.add_parser("search", help="Search leaf terms")
    p.add_argument("query")
    p.add_argument("--limit", type=int, help="Maximum results")
    p.add_argument("--include-non-current", action="store_true", help="Include non-current LLTs")
    p.add_argument("--country", help="WHO Drug country code filter")
    p.add_argument("--version", type=int, help="Version id (default: active)")

    p = sub.add_parser("browse", help="List children of a node (top level by default)")
    p.add_argument("--code", help="Parent code")
    p.add_argument("--level", help="Parent level (soc, hlgt, hlt, pt, atc1..atc5, product)")
    p.add_argument("--version", type=int, help="Version id (default: active)")

    p = sub.add_parser("code", help="Code a verbatim term")
    p.add_argument("code", help="Dictionary code")
    p.add_argument("verbatim", help="Verbatim text as reported")
    p.add_argument("--level", help="Level of the code (default: detected)")
    p.add_argument("--coder", help="Coder identity")
    p.add_argument("--version", type=int, help="Version id (default: active)")

    p = sub.add_parser("stats", help="Show version statistics")
    p.add_argument("--version", type=int, help="Version id (default: active)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        service = build_service(args)
        return COMMANDS[args.command](service, args)
    except (TerminologyError, ValueError, OSError, argparse.ArgumentTypeError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
