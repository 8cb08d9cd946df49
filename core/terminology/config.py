# SAGE Terminology Configuration
# ===============================
"""
Environment-driven configuration for the terminology engine.

Variables (a project-level .env file is loaded first):
- DATA_DIR: base data directory (default: data)
- TERMINOLOGY_DB_PATH: SQLite file (default: $DATA_DIR/database/terminology.db)
- TERMINOLOGY_BATCH_SIZE: rows per executemany chunk during bulk load
- TERMINOLOGY_SEARCH_LIMIT: default number of search results
- TERMINOLOGY_MIN_QUERY_LENGTH: shorter queries return no results
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

project_root = Path(__file__).parent.parent.parent

DEFAULT_BATCH_SIZE = 5000
DEFAULT_SEARCH_LIMIT = 20
DEFAULT_MIN_QUERY_LENGTH = 2


@dataclass
class TerminologyConfig:
    """Runtime settings for the terminology engine."""
    db_path: Path
    batch_size: int = DEFAULT_BATCH_SIZE
    search_limit: int = DEFAULT_SEARCH_LIMIT
    min_query_length: int = DEFAULT_MIN_QUERY_LENGTH


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default
    if value < 1:
        logger.warning(f"Ignoring non-positive {name}={value}, using {default}")
        return default
    return value


def load_config(env_file: Optional[Path] = None) -> TerminologyConfig:
    """
    Build configuration from the environment.

    Args:
        env_file: Optional .env file; defaults to the project root .env

    Returns:
        TerminologyConfig
    """
    load_dotenv(env_file or project_root / ".env")

    db_path = os.getenv("TERMINOLOGY_DB_PATH")
    if db_path is None:
        data_dir = Path(os.getenv("DATA_DIR", "data"))
        db_path = data_dir / "database" / "terminology.db"

    return TerminologyConfig(
        db_path=Path(db_path),
        batch_size=_int_env("TERMINOLOGY_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        search_limit=_int_env("TERMINOLOGY_SEARCH_LIMIT", DEFAULT_SEARCH_LIMIT),
        min_query_length=_int_env("TERMINOLOGY_MIN_QUERY_LENGTH", DEFAULT_MIN_QUERY_LENGTH),
    )
