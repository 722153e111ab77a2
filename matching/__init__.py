"""
Company Matching Module

Cascading resolution of free-text company names against a reference
dictionary:
- Exact normalized-key matching
- Blocked fuzzy matching (MinHash LSH + Jaro-Winkler)
- Token search (SQLite FTS5 + Jaro-Winkler)
- Rarity-weighted token scoring
"""

from matching.exceptions import (
    DuplicateKeyError,
    DuplicateQueryIdError,
    FirmMatchError,
    MissingColumnError,
    MissingCredentialsError,
)
from matching.matchers import (
    BlockedFuzzyMatcher,
    ExactMatcher,
    RarityTokenMatcher,
    TokenSearchMatcher,
)
from matching.models import (
    ColumnMapping,
    MatchResult,
    MatchType,
    NameRecord,
    PipelineConfig,
)
from matching.normalize import normalize_company_name
from matching.pipeline import CascadeMatcher, attach_names, match_companies, run_pipeline

__all__ = [
    "BlockedFuzzyMatcher",
    "CascadeMatcher",
    "ColumnMapping",
    "DuplicateKeyError",
    "DuplicateQueryIdError",
    "ExactMatcher",
    "FirmMatchError",
    "MatchResult",
    "MatchType",
    "MissingColumnError",
    "MissingCredentialsError",
    "NameRecord",
    "PipelineConfig",
    "RarityTokenMatcher",
    "TokenSearchMatcher",
    "attach_names",
    "match_companies",
    "normalize_company_name",
    "run_pipeline",
]
