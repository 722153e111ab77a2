"""
Shared test setup.
"""

import os
import sys
from pathlib import Path

# Keep test runs from writing logs/firm_match.log; must precede config import
os.environ.setdefault("LOG_TO_FILE", "false")

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from matching.models import NameRecord
from matching.normalize import normalize_company_name


def make_records(rows) -> list[NameRecord]:
    """[(id, raw_name), ...] -> normalized NameRecords."""
    return [NameRecord(str(i), raw, normalize_company_name(raw)) for i, raw in rows]


@pytest.fixture
def records():
    return make_records
