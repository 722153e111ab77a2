#!/usr/bin/env python3
"""
Match a dirty company list against a dictionary, optionally verifying
fuzzy matches with the judgment service.

Usage:
    python scripts/run_matching.py --queries "test data/my_dirty_data.csv" \\
        --dictionary "test data/dictionary.csv" --query-id-col id
    python scripts/run_matching.py ... --threshold-jw 0.85 --threshold-blocking 0.6
    python scripts/run_matching.py ... --verify --batch-size 50 --checkpoint-dir llm
"""

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from matching import ColumnMapping, FirmMatchError, PipelineConfig, attach_names, run_pipeline
from verification import validate_matches_llm

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Resolve company names against a reference dictionary"
    )
    parser.add_argument("--queries", type=Path, required=True, help="CSV with names to match")
    parser.add_argument("--dictionary", type=Path, required=True, help="CSV with reference names")
    parser.add_argument("--query-col", default="company_name", help="Name column in queries")
    parser.add_argument("--query-id-col", default="query_id", help="ID column in queries")
    parser.add_argument("--dict-col", default="company_name", help="Name column in dictionary")
    parser.add_argument("--dict-id-col", default="orbis_id", help="ID column in dictionary")
    parser.add_argument("--threshold-jw", type=float, default=settings.THRESHOLD_JW)
    parser.add_argument("--threshold-blocking", type=float, default=settings.THRESHOLD_BLOCKING)
    parser.add_argument("--threshold-rarity", type=float, default=settings.THRESHOLD_RARITY)
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Send non-Perfect matches to the judgment service",
    )
    parser.add_argument("--checkpoint-dir", type=Path, default=Path("llm_checkpoints"))
    parser.add_argument("--batch-size", type=int, default=settings.LLM_BATCH_SIZE)
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("final_validated_matches.csv"),
        help="Where to write the match table",
    )
    args = parser.parse_args()

    # Ids stay strings so they round-trip unchanged
    queries = pd.read_csv(args.queries, dtype={args.query_id_col: str})
    dictionary = pd.read_csv(args.dictionary, dtype={args.dict_id_col: str})

    mapping = ColumnMapping(
        query_name_col=args.query_col,
        query_id_col=args.query_id_col,
        dict_name_col=args.dict_col,
        dict_id_col=args.dict_id_col,
    )
    config = PipelineConfig(
        threshold_jw=args.threshold_jw,
        threshold_blocking=args.threshold_blocking,
        threshold_rarity=args.threshold_rarity,
    )

    try:
        matches = run_pipeline(queries, dictionary, mapping, config)
        matches_full = attach_names(matches, queries, dictionary, mapping)

        if args.verify:
            matches_full = validate_matches_llm(
                matches_full,
                query_name_col="company_name_orig",
                dict_name_col="company_name_dict",
                output_dir=args.checkpoint_dir,
                batch_size=args.batch_size,
            )
    except FirmMatchError as e:
        logger.error(str(e))
        sys.exit(1)

    matches_full.to_csv(args.output, index=False)
    logger.info(f"Wrote {len(matches_full)} matches to {args.output}")


if __name__ == "__main__":
    main()
