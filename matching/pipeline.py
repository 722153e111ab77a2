"""
Cascading Match Pipeline

Runs the four engines in a fixed order, each over the queries that no
earlier engine resolved:

1. Exact      - normalized key equality (Perfect)
2. Blocked    - LSH blocking + Jaro-Winkler (FuzzyBlocked)
3. Token      - FTS5 prefix search + Jaro-Winkler (FuzzyTokenSearch)
4. Rarity     - rarity-weighted shared tokens (RarityToken)

A query appears in the output at most once; absence means unmatched.
"""

from collections import Counter
from typing import Optional

import pandas as pd

from config.logging import get_logger
from matching.exceptions import DuplicateKeyError, DuplicateQueryIdError, MissingColumnError
from matching.matchers import (
    BlockedFuzzyMatcher,
    ExactMatcher,
    RarityTokenMatcher,
    TokenSearchMatcher,
)
from matching.models import ColumnMapping, MatchResult, NameRecord, PipelineConfig
from matching.normalize import normalize_company_name

logger = get_logger(__name__)

OUTPUT_COLUMNS = ["query_id", "dict_id", "match_type"]


class CascadeMatcher:
    """
    Orchestrates the matching engines over in-memory NameRecords.

    Usage:
        cascade = CascadeMatcher(PipelineConfig(threshold_jw=0.85))
        results = cascade.run(query_records, dictionary_records)
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.stages = [
            ("Exact Match", ExactMatcher()),
            ("Fuzzy Blocked", BlockedFuzzyMatcher(
                similarity_threshold=self.config.threshold_jw,
                blocking_threshold=self.config.threshold_blocking,
                n_bands=self.config.lsh_bands,
                band_width=self.config.lsh_band_width,
            )),
            ("Token Search", TokenSearchMatcher(
                similarity_threshold=self.config.threshold_jw,
                limit=self.config.token_search_limit,
            )),
            ("Rarity Token", RarityTokenMatcher(
                score_threshold=self.config.threshold_rarity,
                min_token_length=self.config.rarity_min_token_length,
                common_quantile=self.config.rarity_common_quantile,
            )),
        ]

    @staticmethod
    def check_unique_keys(dictionary: list[NameRecord]):
        """Raise DuplicateKeyError if two dictionary entries share a normalized name."""
        counts = Counter(rec.normalized_name for rec in dictionary)
        duplicates = [key for key, n in counts.items() if n > 1]
        if duplicates:
            raise DuplicateKeyError(duplicates[0], len(duplicates))

    @staticmethod
    def check_unique_query_ids(queries: list[NameRecord]):
        """Raise DuplicateQueryIdError if two query rows share an id."""
        counts = Counter(rec.id for rec in queries)
        repeated = [query_id for query_id, n in counts.items() if n > 1]
        if repeated:
            raise DuplicateQueryIdError(repeated[0], len(repeated))

    def run(self, queries: list[NameRecord], dictionary: list[NameRecord]) -> list[MatchResult]:
        self.check_unique_keys(dictionary)
        self.check_unique_query_ids(queries)

        all_matches: list[MatchResult] = []
        resolved: set[str] = set()

        for step, (label, engine) in enumerate(self.stages, 1):
            remaining = [q for q in queries if q.id not in resolved]
            if not remaining:
                logger.info(f"Skipping {label} (all matched)")
                continue

            logger.info(f"Step {step}/{len(self.stages)}: {label} ({len(remaining)} queries)")
            matches = engine.match(remaining, dictionary)

            all_matches.extend(matches)
            resolved.update(m.query_id for m in matches)
            logger.info(f"{label}: Found {len(matches)} matches.")

        return all_matches


def _require_columns(df: pd.DataFrame, columns: list[str], table: str):
    for column in columns:
        if column not in df.columns:
            raise MissingColumnError(column, table)


def to_records(df: pd.DataFrame, id_col: str, name_col: str) -> list[NameRecord]:
    """Build NameRecords from a table; ids are compared as strings."""
    return [
        NameRecord(
            id=str(row_id),
            raw_name=raw if isinstance(raw, str) else "",
            normalized_name=normalize_company_name(raw),
        )
        for row_id, raw in zip(df[id_col], df[name_col])
    ]


def match_companies(
    queries: pd.DataFrame,
    dictionary: pd.DataFrame,
    query_col: str = "company_name",
    dict_col: str = "company_name",
    unique_id_col: str = "query_id",
    dict_id_col: str = "orbis_id",
    threshold_jw: Optional[float] = None,
    threshold_zoomer: Optional[float] = None,
    threshold_rarity: Optional[float] = None,
    include_scores: bool = False,
) -> pd.DataFrame:
    """
    Match company names against a dictionary.

    Args:
        queries: Table with the names to resolve
        dictionary: Reference table; normalized names must be unique
        query_col: Name column in ``queries``
        dict_col: Name column in ``dictionary``
        unique_id_col: ID column in ``queries``
        dict_id_col: ID column in ``dictionary``
        threshold_jw: Minimum Jaro-Winkler similarity (blocked and token stages)
        threshold_zoomer: Minimum 3-gram Jaccard similarity for LSH blocking
        threshold_rarity: Minimum rarity score
        include_scores: Add the engine score as a ``score`` column

    Returns:
        DataFrame with ``query_id``, ``dict_id`` and ``match_type``

    Raises:
        MissingColumnError: a named column is absent
        DuplicateKeyError: the dictionary has duplicate normalized names
        DuplicateQueryIdError: two query rows share an id
    """
    mapping = ColumnMapping(
        query_name_col=query_col,
        query_id_col=unique_id_col,
        dict_name_col=dict_col,
        dict_id_col=dict_id_col,
    )
    config = PipelineConfig()
    if threshold_jw is not None:
        config.threshold_jw = threshold_jw
    if threshold_zoomer is not None:
        config.threshold_blocking = threshold_zoomer
    if threshold_rarity is not None:
        config.threshold_rarity = threshold_rarity

    return run_pipeline(queries, dictionary, mapping, config, include_scores=include_scores)


def run_pipeline(
    queries: pd.DataFrame,
    dictionary: pd.DataFrame,
    mapping: ColumnMapping,
    config: Optional[PipelineConfig] = None,
    include_scores: bool = False,
) -> pd.DataFrame:
    """Table-level entry point driven by an explicit ColumnMapping."""
    config = config or PipelineConfig()

    logger.info("=" * 60)
    logger.info("COMPANY MATCHING PIPELINE")
    logger.info("=" * 60)
    logger.info(f"Params: {config.describe()}")

    _require_columns(queries, [mapping.query_name_col, mapping.query_id_col], "queries")
    _require_columns(dictionary, [mapping.dict_name_col, mapping.dict_id_col], "dictionary")

    logger.info("Normalizing strings...")
    dict_records = to_records(dictionary, mapping.dict_id_col, mapping.dict_name_col)
    CascadeMatcher.check_unique_keys(dict_records)
    query_records = to_records(queries, mapping.query_id_col, mapping.query_name_col)
    CascadeMatcher.check_unique_query_ids(query_records)

    matches = CascadeMatcher(config).run(query_records, dict_records)

    columns = OUTPUT_COLUMNS + (["score"] if include_scores else [])
    result = pd.DataFrame(
        [m.as_row(include_score=include_scores) for m in matches],
        columns=columns,
    )

    logger.info("=" * 60)
    logger.info("PIPELINE COMPLETE")
    if len(result):
        logger.info("Matches by type:")
        for match_type, count in result["match_type"].value_counts(sort=False).items():
            logger.info(f"  - {match_type}: {count}")
    else:
        logger.warning("No matches found.")
    logger.info(f"Unmatched queries: {len(query_records) - len(result)}")
    logger.info("=" * 60)

    return result


def attach_names(
    matches: pd.DataFrame,
    queries: pd.DataFrame,
    dictionary: pd.DataFrame,
    mapping: ColumnMapping,
) -> pd.DataFrame:
    """
    Join raw names back onto a match table for review or verification.

    Adds ``company_name_orig`` (query side) and ``company_name_dict``
    (dictionary side). Ids are joined as strings, matching the pipeline output.
    """
    _require_columns(queries, [mapping.query_name_col, mapping.query_id_col], "queries")
    _require_columns(dictionary, [mapping.dict_name_col, mapping.dict_id_col], "dictionary")

    dict_names = pd.DataFrame({
        "dict_id": dictionary[mapping.dict_id_col].astype(str),
        "company_name_dict": dictionary[mapping.dict_name_col],
    })
    query_names = pd.DataFrame({
        "query_id": queries[mapping.query_id_col].astype(str),
        "company_name_orig": queries[mapping.query_name_col],
    })

    return (
        matches
        .merge(dict_names, on="dict_id", how="left")
        .merge(query_names, on="query_id", how="left")
    )
