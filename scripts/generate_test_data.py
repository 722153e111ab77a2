#!/usr/bin/env python3
"""
Generate synthetic matching data.

Writes a clean dictionary of 1000 company names and 1000 dirty queries:
500 distorted copies of dictionary names (typos, legal-form noise,
prefix/suffix noise) with ground truth in ``true_orbis_id``, and 500
plausible-looking names that are not in the dictionary.

Usage:
    python scripts/generate_test_data.py
    python scripts/generate_test_data.py --output-dir "test data" --seed 7
"""

import argparse
import random
import re
import string
import sys
from pathlib import Path

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from matching.normalize import normalize_company_name

ROOTS = ["Tech", "Immo", "Bio", "Soft", "Data", "Bau", "Gastro", "Consult", "Fin", "Auto"]
SECONDS = ["Nova", "Sol", "Venture", "Sys", "Net", "Line", "Base", "Work", "Trust", "Mat"]
DICT_FORMS = [" GmbH", " AG", " SE", " KG"]
DISTORT_FORMS = re.compile(r" GmbH| AG| KG| SE| Ltd")
NOISE_SUFFIXES = [" Deutschland", " Group", " & Co KG", " Service"]


def add_typo(rng: random.Random, s: str) -> str:
    """Swap, delete, or insert one character away from the ends."""
    n = len(s)
    if n < 4:
        return s

    kind = rng.randint(1, 3)
    pos = rng.randint(1, n - 2)

    if kind == 1:
        return s[:pos] + s[pos + 1] + s[pos] + s[pos + 2:]
    if kind == 2:
        return s[:pos] + s[pos + 1:]
    return s[:pos + 1] + rng.choice(string.ascii_lowercase) + s[pos + 1:]


def distort_legal(rng: random.Random, s: str) -> str:
    """Drop the legal form, or replace it with a noise suffix."""
    stripped = DISTORT_FORMS.sub("", s)
    if rng.random() > 0.5:
        return stripped
    return stripped + rng.choice(NOISE_SUFFIXES)


def build_dictionary(rng: random.Random, size: int = 1000) -> pd.DataFrame:
    names: list[str] = []
    seen: set[str] = set()
    while len(names) < size:
        name = (
            rng.choice(ROOTS)
            + rng.choice(SECONDS)
            + " "
            + "".join(rng.choices(string.ascii_uppercase, k=4))
            + rng.choice(DICT_FORMS)
        )
        # Unique by normalized key; "X GmbH" and "X AG" would collide
        key = normalize_company_name(name)
        if key not in seen:
            seen.add(key)
            names.append(name)

    return pd.DataFrame({
        "orbis_id": range(1, size + 1),
        "company_name": names,
        "turnover": [round(rng.uniform(1e5, 1e9)) for _ in range(size)],
    })


def build_queries(rng: random.Random, dictionary: pd.DataFrame, n_matches: int = 500) -> pd.DataFrame:
    matched = dictionary.head(n_matches)

    dirty = []
    for clean in matched["company_name"]:
        r = rng.random()
        if r < 0.3:
            dirty.append(add_typo(rng, clean).lower())
        elif r < 0.6:
            dirty.append(distort_legal(rng, clean))
        elif r < 0.8:
            dirty.append(f"Firma {clean} Germany")
        else:
            dirty.append(add_typo(rng, distort_legal(rng, clean)) + " (Insolvenz)")

    non_matches = [
        "".join(rng.choices(string.ascii_lowercase, k=8))
        + " Services "
        + rng.choice(["GmbH", "Limited"])
        for _ in range(n_matches)
    ]

    queries = pd.DataFrame({
        "id": range(1, 2 * n_matches + 1),
        "company_name": dirty + non_matches,
        "true_orbis_id": list(matched["orbis_id"]) + [None] * n_matches,
    })
    queries["true_orbis_id"] = queries["true_orbis_id"].astype("Int64")

    # Shuffle rows so they aren't in order
    return queries.sample(frac=1, random_state=123).reset_index(drop=True)


def main():
    parser = argparse.ArgumentParser(description="Generate synthetic company matching data")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=settings.project_root / "test data",
        help="Directory for dictionary.csv and my_dirty_data.csv",
    )
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    rng = random.Random(args.seed)
    dictionary = build_dictionary(rng)
    queries = build_queries(rng, dictionary)

    args.output_dir.mkdir(parents=True, exist_ok=True)
    dictionary.to_csv(args.output_dir / "dictionary.csv", index=False)
    queries.to_csv(args.output_dir / "my_dirty_data.csv", index=False)

    print(f"Created 'dictionary.csv' ({len(dictionary)} rows) and 'my_dirty_data.csv' ({len(queries)} rows)")
    print(f"Approx. {queries['true_orbis_id'].notna().sum()} rows in dirty data should match.")


if __name__ == "__main__":
    main()
