"""
Matching engines for the cascade.

Each engine takes the still-unresolved query records plus the full
dictionary and returns at most one MatchResult per query:

- ExactMatcher: normalized key equality
- BlockedFuzzyMatcher: first-letter blocking + MinHash LSH on 3-grams,
  re-scored with Jaro-Winkler
- TokenSearchMatcher: SQLite FTS5 prefix search, re-scored with Jaro-Winkler
- RarityTokenMatcher: shared rare tokens weighted by 1 / document frequency
"""

import re
from collections import Counter, defaultdict

import numpy as np
from rapidfuzz.distance import JaroWinkler
from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError

from config.logging import get_logger
from matching.lsh import MinHashLSH, jaccard, shingles
from matching.models import (
    MatchResult,
    MatchType,
    NameRecord,
    TokenStatistic,
    best_per_query,
)

logger = get_logger(__name__)

# Jaro-Winkler prefix bonus (standard Winkler value)
JW_PREFIX_WEIGHT = 0.1

NGRAM_WIDTH = 3

# Absorbs float error when normalized weights should sum to exactly 1.0
SCORE_TOLERANCE = 1e-9

RARITY_SPLIT_RE = re.compile(r"[^a-z0-9]+")


def jaro_winkler(s1: str, s2: str) -> float:
    """Jaro-Winkler similarity (0-1)."""
    if not s1 or not s2:
        return 0.0
    return JaroWinkler.similarity(s1, s2, prefix_weight=JW_PREFIX_WEIGHT)


def block_key(normalized_name: str) -> str:
    return normalized_name[:1]


class ExactMatcher:
    """Joins queries to dictionary entries with an identical normalized key."""

    def match(self, queries: list[NameRecord], dictionary: list[NameRecord]) -> list[MatchResult]:
        by_key = {rec.normalized_name: rec for rec in dictionary if rec.normalized_name}

        results = []
        for query in queries:
            # An empty key carries no information; never treat it as a match
            if not query.normalized_name:
                continue
            entry = by_key.get(query.normalized_name)
            if entry is not None:
                results.append(MatchResult(query.id, entry.id, MatchType.PERFECT, 1.0))
        return results


class BlockedFuzzyMatcher:
    """
    Approximate join restricted by blocking.

    Candidate pairs must share a block (first character), collide in at
    least one LSH band, and have a true 3-gram Jaccard similarity of at
    least ``blocking_threshold``. Survivors are re-scored with Jaro-Winkler
    and the best one per query is kept if it reaches ``similarity_threshold``.
    """

    def __init__(
        self,
        similarity_threshold: float = 0.8,
        blocking_threshold: float = 0.4,
        n_bands: int = 100,
        band_width: int = 4,
    ):
        self.similarity_threshold = similarity_threshold
        self.blocking_threshold = blocking_threshold
        self.n_bands = n_bands
        self.band_width = band_width

    def match(self, queries: list[NameRecord], dictionary: list[NameRecord]) -> list[MatchResult]:
        index = MinHashLSH(n_bands=self.n_bands, band_width=self.band_width)

        dict_shingles = []
        for position, entry in enumerate(dictionary):
            entry_shingles = shingles(entry.normalized_name, NGRAM_WIDTH)
            dict_shingles.append(entry_shingles)
            index.add(position, block_key(entry.normalized_name), entry_shingles)

        scored = []
        candidate_pairs = 0
        for query in queries:
            if not query.normalized_name:
                continue
            query_shingles = shingles(query.normalized_name, NGRAM_WIDTH)

            for position in index.query(block_key(query.normalized_name), query_shingles):
                if jaccard(query_shingles, dict_shingles[position]) < self.blocking_threshold:
                    continue
                candidate_pairs += 1

                entry = dictionary[position]
                similarity = jaro_winkler(query.normalized_name, entry.normalized_name)
                if similarity >= self.similarity_threshold:
                    scored.append((query.id, position, entry.id, similarity))

        logger.debug(f"Blocked join produced {candidate_pairs} candidate pairs")

        best = best_per_query(scored)
        return [
            MatchResult(query_id, dict_id, MatchType.FUZZY_BLOCKED, score)
            for query_id, (dict_id, score) in best.items()
        ]


class TokenSearchMatcher:
    """
    Inverted-index retrieval over dictionary names.

    Every query token becomes a prefix term and the terms are OR-ed, so
    word order does not matter and truncated words still hit. The top
    ``limit`` hits by FTS rank are re-scored with Jaro-Winkler.
    """

    def __init__(self, similarity_threshold: float = 0.8, limit: int = 25):
        self.similarity_threshold = similarity_threshold
        self.limit = limit

    @staticmethod
    def build_search_expression(normalized_name: str):
        """``"acme bau"`` -> ``"acme* OR bau*"``; None for a name without tokens."""
        parts = normalized_name.split()
        if not parts:
            return None
        return " OR ".join(f"{part}*" for part in parts)

    def match(self, queries: list[NameRecord], dictionary: list[NameRecord]) -> list[MatchResult]:
        if not dictionary:
            return []

        engine = create_engine("sqlite://")
        results = []
        skipped = 0

        try:
            with engine.connect() as conn:
                conn.execute(text(
                    "CREATE VIRTUAL TABLE dict_fts USING fts5(dict_id UNINDEXED, name_clean)"
                ))
                conn.execute(
                    text("INSERT INTO dict_fts (dict_id, name_clean) VALUES (:dict_id, :name_clean)"),
                    [{"dict_id": rec.id, "name_clean": rec.normalized_name} for rec in dictionary],
                )

                search = text(
                    "SELECT dict_id, name_clean FROM dict_fts "
                    "WHERE dict_fts MATCH :expression ORDER BY rank LIMIT :limit"
                )

                for query in queries:
                    expression = self.build_search_expression(query.normalized_name)
                    if expression is None:
                        continue

                    try:
                        candidates = conn.execute(
                            search, {"expression": expression, "limit": self.limit}
                        ).fetchall()
                    except DBAPIError as e:
                        skipped += 1
                        logger.debug(f"Search failed for '{expression}': {e}")
                        continue

                    best_id, best_score = None, -1.0
                    for dict_id, name_clean in candidates:
                        score = jaro_winkler(query.normalized_name, name_clean)
                        if score > best_score:
                            best_id, best_score = dict_id, score

                    if best_id is not None and best_score >= self.similarity_threshold:
                        results.append(
                            MatchResult(query.id, best_id, MatchType.FUZZY_TOKEN_SEARCH, best_score)
                        )
        finally:
            engine.dispose()

        if skipped:
            logger.warning(f"Token search skipped {skipped} queries with malformed search terms")

        return results


class RarityTokenMatcher:
    """
    Scores pairs by the rarity of the tokens they share.

    Token rarity is 1 / document frequency over the dictionary, after the
    most common tokens (above ``common_quantile`` of the frequency
    distribution) are dropped. Each query's rarities are normalized to sum
    to 1.0, so the score is the share of the query's rare-token weight
    found in the dictionary entry.
    """

    def __init__(
        self,
        score_threshold: float = 1.0,
        min_token_length: int = 5,
        common_quantile: float = 0.8,
    ):
        if not 0.0 <= common_quantile <= 1.0:
            raise ValueError(f"common_quantile must be in [0, 1], got {common_quantile}")
        self.score_threshold = score_threshold
        self.min_token_length = min_token_length
        self.common_quantile = common_quantile

    def tokenize(self, normalized_name: str) -> list[str]:
        """Distinct alphanumeric tokens of at least ``min_token_length``, in order."""
        tokens = (
            token for token in RARITY_SPLIT_RE.split(normalized_name)
            if len(token) >= self.min_token_length
        )
        return list(dict.fromkeys(tokens))

    def token_statistics(self, dictionary: list[NameRecord]) -> dict[str, TokenStatistic]:
        frequencies = Counter()
        for entry in dictionary:
            frequencies.update(self.tokenize(entry.normalized_name))

        if not frequencies:
            return {}

        cutoff = np.percentile(list(frequencies.values()), self.common_quantile * 100)
        return {
            token: TokenStatistic(token, count, 1.0 / count)
            for token, count in frequencies.items()
            if count <= cutoff
        }

    def match(self, queries: list[NameRecord], dictionary: list[NameRecord]) -> list[MatchResult]:
        stats = self.token_statistics(dictionary)
        if not stats:
            return []

        postings: dict[str, list[int]] = defaultdict(list)
        for position, entry in enumerate(dictionary):
            for token in self.tokenize(entry.normalized_name):
                if token in stats:
                    postings[token].append(position)

        logger.debug(f"Rarity index: {len(stats)} tokens after common-word cutoff")

        results = []
        for query in queries:
            tokens = [t for t in self.tokenize(query.normalized_name) if t in stats]
            if not tokens:
                continue

            total_rarity = sum(stats[t].rarity for t in tokens)
            scores: dict[int, float] = defaultdict(float)
            for token in tokens:
                weight = stats[token].rarity / total_rarity
                for position in postings[token]:
                    scores[position] += weight

            # Highest score, earliest dictionary position on ties
            position, score = min(scores.items(), key=lambda item: (-item[1], item[0]))
            if score + SCORE_TOLERANCE >= self.score_threshold:
                results.append(
                    MatchResult(query.id, dictionary[position].id, MatchType.RARITY_TOKEN, score)
                )

        return results
