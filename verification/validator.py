"""
Resumable LLM verification of doubtful matches.

Rows that are matched but not Perfect (or manually confirmed) are sent
to the judgment service in fixed-size chunks. Each finished chunk is
written to ``{stem}_chunk_{index:04d}.csv`` in the output directory;
an existing chunk file means that chunk is done, so an interrupted run
resumes at the first missing chunk without repeating any request.

Chunks run strictly in order. Rows inside a chunk are judged
concurrently, bounded by a semaphore.
"""

import asyncio
import os
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from config.logging import get_logger
from config.settings import settings
from matching.exceptions import MissingColumnError
from verification.client import (
    Decision,
    JudgmentClient,
    RetryPolicy,
    VerificationDecision,
    build_judgment_client,
)

logger = get_logger(__name__)

# Matches that are already trusted and never sent for verification
EXCLUDED_MATCH_TYPES = {"Perfect", "Manual"}

ROW_ID_COL = ".row_id_internal"
CHUNK_COLUMNS = ["row_id", "LLM_decision", "LLM_reason"]

INCORRECT_FLAGS = {
    Decision.INCORRECT.value: 1,
    Decision.CORRECT.value: 0,
}


class CheckpointStore:
    """
    One CSV per completed chunk.

    Files are written to a temporary name, fsynced, and renamed into
    place, so a chunk file either exists completely or not at all.
    """

    def __init__(self, output_dir, stem: str):
        self.output_dir = Path(output_dir)
        self.stem = stem

    def path(self, index: int) -> Path:
        return self.output_dir / f"{self.stem}_chunk_{index:04d}.csv"

    def exists(self, index: int) -> bool:
        return self.path(index).exists()

    def write(self, index: int, decisions: list[VerificationDecision]) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        target = self.path(index)
        tmp = target.with_name(target.name + ".tmp")

        frame = pd.DataFrame([d.as_row() for d in decisions], columns=CHUNK_COLUMNS)
        with open(tmp, "w", newline="", encoding="utf-8") as f:
            frame.to_csv(f, index=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)
        return target

    def read(self, indices: Iterable[int]) -> pd.DataFrame:
        frames = [
            pd.read_csv(
                self.path(i),
                dtype={"row_id": "int64", "LLM_decision": str, "LLM_reason": str},
                keep_default_na=False,
            )
            for i in indices
            if self.exists(i)
        ]
        if not frames:
            return pd.DataFrame(columns=CHUNK_COLUMNS)
        return pd.concat(frames, ignore_index=True)


async def judge_row_with_semaphore(
    semaphore: asyncio.Semaphore,
    client: JudgmentClient,
    row_id: int,
    query_name: str,
    dict_name: str,
) -> VerificationDecision:
    """Judge a single row with semaphore for rate limiting."""
    async with semaphore:
        return await asyncio.to_thread(client.judge, row_id, query_name, dict_name)


async def judge_chunk(
    client: JudgmentClient,
    chunk: pd.DataFrame,
    query_name_col: str,
    dict_name_col: str,
    concurrency: int,
) -> list[VerificationDecision]:
    semaphore = asyncio.Semaphore(concurrency)
    tasks = [
        judge_row_with_semaphore(semaphore, client, int(row_id), str(q), str(d))
        for row_id, q, d in zip(chunk[ROW_ID_COL], chunk[query_name_col], chunk[dict_name_col])
    ]
    # gather preserves input order, so chunk files are row-ordered
    return list(await asyncio.gather(*tasks))


async def process_chunks(
    client: JudgmentClient,
    chunks: list[pd.DataFrame],
    store: CheckpointStore,
    query_name_col: str,
    dict_name_col: str,
    concurrency: int,
):
    total = len(chunks)
    for index, chunk in enumerate(chunks, 1):
        if store.exists(index):
            logger.info(f"[{index}/{total}] Checkpoint exists, skipping")
            continue

        decisions = await judge_chunk(client, chunk, query_name_col, dict_name_col, concurrency)
        store.write(index, decisions)

        errors = sum(1 for d in decisions if d.decision is Decision.ERROR)
        logger.info(f"[{index}/{total}] Judged {len(decisions)} rows ({errors} errors)")


def select_rows_to_check(df: pd.DataFrame) -> pd.DataFrame:
    """Matched rows whose match type still needs a second opinion."""
    mask = (
        df["dict_id"].notna()
        & df["match_type"].notna()
        & ~df["match_type"].isin(EXCLUDED_MATCH_TYPES)
    )
    return df[mask]


def validate_matches_llm(
    data: pd.DataFrame,
    query_name_col: str,
    dict_name_col: str,
    output_dir="llm_checkpoints",
    filename_stem: str = "match_validation",
    batch_size: Optional[int] = None,
    api_key: Optional[str] = None,
    endpoint: Optional[str] = None,
    deployment: Optional[str] = None,
    provider: Optional[str] = None,
    client: Optional[JudgmentClient] = None,
    retry_policy: Optional[RetryPolicy] = None,
    concurrency: Optional[int] = None,
) -> pd.DataFrame:
    """
    Validate doubtful matches with the judgment service.

    Args:
        data: Match table with ``dict_id``, ``match_type`` and both name columns
        query_name_col: Column with the query-side name (Employer)
        dict_name_col: Column with the matched dictionary name (Registry)
        output_dir: Directory for chunk checkpoints
        filename_stem: Base name of the chunk files
        batch_size: Rows per chunk (default LLM_BATCH_SIZE)
        api_key: Service API key (default from settings)
        endpoint: Service endpoint (default from settings)
        deployment: Model/deployment name (default from settings)
        provider: "azure" or "anthropic" (default JUDGE_PROVIDER)
        client: Pre-built JudgmentClient; skips credential lookup
        retry_policy: Retry policy for a client built here
        concurrency: Max concurrent requests within a chunk (default LLM_CONCURRENCY)

    Returns:
        ``data`` plus ``LLM_decision``, ``LLM_reason`` and ``LLM_incorrect``
        (1 = INCORRECT, 0 = CORRECT, <NA> otherwise). If no row needs
        checking, ``data`` is returned unchanged.

    Raises:
        MissingCredentialsError: no client given and credentials are not configured
        MissingColumnError: a required column is absent
    """
    if client is None:
        client = build_judgment_client(
            provider=provider,
            api_key=api_key,
            endpoint=endpoint,
            deployment=deployment,
            retry_policy=retry_policy,
        )

    for column in (query_name_col, dict_name_col, "dict_id", "match_type"):
        if column not in data.columns:
            raise MissingColumnError(column, "data")

    batch_size = batch_size or settings.LLM_BATCH_SIZE
    concurrency = concurrency or settings.LLM_CONCURRENCY
    if batch_size < 1 or concurrency < 1:
        raise ValueError("batch_size and concurrency must be positive")

    df_in = data.reset_index(drop=True)
    df_in[ROW_ID_COL] = range(1, len(df_in) + 1)

    to_check = select_rows_to_check(df_in)
    if to_check.empty:
        logger.info("No doubtful matches found. Returning original data.")
        return data

    chunks = [to_check.iloc[i:i + batch_size] for i in range(0, len(to_check), batch_size)]
    store = CheckpointStore(output_dir, filename_stem)

    logger.info("=" * 60)
    logger.info("LLM VALIDATION")
    logger.info("=" * 60)
    logger.info(f"Total rows to validate: {len(to_check)}")
    logger.info(f"Chunks: {len(chunks)} x {batch_size} rows")
    logger.info(f"Checkpoints: {store.output_dir}")
    logger.info("=" * 60)

    asyncio.run(process_chunks(
        client, chunks, store, query_name_col, dict_name_col, concurrency,
    ))

    logger.info("Merging chunks...")
    results = store.read(range(1, len(chunks) + 1)).rename(columns={"row_id": ROW_ID_COL})

    final_df = df_in.merge(results, on=ROW_ID_COL, how="left")
    final_df["LLM_incorrect"] = final_df["LLM_decision"].map(INCORRECT_FLAGS).astype("Int64")

    errors = int((final_df["LLM_decision"] == Decision.ERROR.value).sum())
    if errors:
        logger.warning(f"{errors} rows could not be judged (LLM_decision = ERROR)")

    return final_df.drop(columns=[ROW_ID_COL])
