"""
Pytest fixtures for terminology tests.
"""

import sys
import pytest
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from core.terminology import (
    DictionaryType,
    TerminologyConfig,
    TerminologyDB,
    TerminologyService,
)

from sample_data import (
    EXTRA_PRODUCTS,
    MEDDRA_DATA,
    SCENARIO_DATA,
    write_meddra_files,
    write_whodrug_files,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "terminology.db"


@pytest.fixture
def db(db_path):
    """Empty terminology database."""
    return TerminologyDB(str(db_path))


@pytest.fixture
def config(db_path):
    return TerminologyConfig(db_path=db_path, batch_size=3)


@pytest.fixture
def meddra_data():
    return MEDDRA_DATA


@pytest.fixture
def meddra_files(tmp_path):
    """MedDRA ASCII distribution with a multi-parent PT."""
    return write_meddra_files(tmp_path / "MedAscii", MEDDRA_DATA)


@pytest.fixture
def scenario_files(tmp_path):
    """Single-path Cardiac disorders / Tachycardia distribution."""
    return write_meddra_files(tmp_path / "scenario", SCENARIO_DATA)


@pytest.fixture
def whodrug_files(tmp_path):
    return write_whodrug_files(tmp_path / "whodrug")


@pytest.fixture
def meddra_service(db, config):
    return TerminologyService(DictionaryType.MEDDRA, db=db, config=config)


@pytest.fixture
def whodrug_service(db, config):
    return TerminologyService(DictionaryType.WHODRUG, db=db, config=config)


@pytest.fixture
def loaded_meddra(meddra_service, meddra_files):
    """MedDRA service with the sample distribution imported and active."""
    version = meddra_service.import_dictionary("27.0", meddra_files, imported_by="tester")
    meddra_service.activate_version(version.id)
    return meddra_service


@pytest.fixture
def loaded_whodrug(whodrug_service, whodrug_files):
    version = whodrug_service.import_dictionary("2024-Mar", whodrug_files)
    whodrug_service.activate_version(version.id)
    return whodrug_service


@pytest.fixture
def extended_whodrug(whodrug_service, tmp_path):
    """WHO Drug sample plus products classified at ATC4 or with English names."""
    files = write_whodrug_files(tmp_path / "whodrug-extended", extra_products=EXTRA_PRODUCTS)
    version = whodrug_service.import_dictionary("2024-Sep", files)
    whodrug_service.activate_version(version.id)
    return whodrug_service
