"""
Records, results and configuration shared by the matching engines.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config.settings import settings


class MatchType(Enum):
    """Which cascade stage produced a match."""
    PERFECT = "Perfect"                      # Normalized keys are equal
    FUZZY_BLOCKED = "FuzzyBlocked"           # LSH blocking + Jaro-Winkler
    FUZZY_TOKEN_SEARCH = "FuzzyTokenSearch"  # Inverted index + Jaro-Winkler
    RARITY_TOKEN = "RarityToken"             # Rarity-weighted shared tokens


@dataclass(frozen=True)
class NameRecord:
    """One query or dictionary row, reduced to the fields the engines use."""
    id: str
    raw_name: str
    normalized_name: str


@dataclass(frozen=True)
class MatchResult:
    """A single query resolved to a single dictionary entry."""
    query_id: str
    dict_id: str
    match_type: MatchType
    score: float = 1.0

    def as_row(self, include_score: bool = False) -> dict:
        row = {
            "query_id": self.query_id,
            "dict_id": self.dict_id,
            "match_type": self.match_type.value,
        }
        if include_score:
            row["score"] = self.score
        return row

    def __repr__(self) -> str:
        return (
            f"<MatchResult({self.query_id} -> {self.dict_id}, "
            f"{self.match_type.value}, score={self.score:.3f})>"
        )


@dataclass(frozen=True)
class ColumnMapping:
    """Caller-supplied column names for the query and dictionary tables."""
    query_name_col: str = "company_name"
    query_id_col: str = "query_id"
    dict_name_col: str = "company_name"
    dict_id_col: str = "orbis_id"


@dataclass
class PipelineConfig:
    """Thresholds and tuning knobs for the cascade."""
    # Minimum Jaro-Winkler similarity for the blocked and token-search stages
    threshold_jw: float = settings.THRESHOLD_JW

    # Minimum 3-gram Jaccard similarity for a pair to survive blocking
    threshold_blocking: float = settings.THRESHOLD_BLOCKING

    # Minimum rarity score (weights per query sum to 1.0)
    threshold_rarity: float = settings.THRESHOLD_RARITY

    lsh_bands: int = settings.LSH_BANDS
    lsh_band_width: int = settings.LSH_BAND_WIDTH
    token_search_limit: int = settings.TOKEN_SEARCH_LIMIT
    rarity_min_token_length: int = settings.RARITY_MIN_TOKEN_LENGTH
    rarity_common_quantile: float = settings.RARITY_COMMON_QUANTILE

    def describe(self) -> str:
        return (
            f"JW={self.threshold_jw} | Blocking={self.threshold_blocking} "
            f"| Rarity={self.threshold_rarity}"
        )


def best_per_query(
    scored: list[tuple[str, int, str, float]],
) -> dict[str, tuple[str, float]]:
    """
    Reduce (query_id, dict_position, dict_id, score) candidates to one per query.

    Highest score wins; among equal scores the earliest dictionary position
    wins, so the result does not depend on candidate generation order.
    """
    best: dict[str, tuple[int, str, float]] = {}
    for query_id, position, dict_id, score in scored:
        current: Optional[tuple[int, str, float]] = best.get(query_id)
        if (
            current is None
            or score > current[2]
            or (score == current[2] and position < current[0])
        ):
            best[query_id] = (position, dict_id, score)
    return {qid: (dict_id, score) for qid, (_, dict_id, score) in best.items()}


@dataclass(frozen=True)
class TokenStatistic:
    """Dictionary-wide statistics for one surviving rarity token."""
    token: str
    document_frequency: int
    rarity: float
