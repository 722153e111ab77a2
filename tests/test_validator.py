"""
Tests for resumable match verification.

A fake judge stands in for the service so chunking, checkpointing and
the final merge can be checked without network access.
"""

import threading

import pandas as pd
import pytest

from config.settings import settings
from matching.exceptions import MissingColumnError, MissingCredentialsError
from verification.client import (
    Decision,
    JudgmentClient,
    JudgmentServiceError,
    RetryPolicy,
    VerificationDecision,
)
from verification.validator import CheckpointStore, select_rows_to_check, validate_matches_llm


class FakeJudge:
    """CORRECT when the names share their first three letters, else INCORRECT."""

    def __init__(self, errors=(), interrupt_on=()):
        self.errors = set(errors)
        self.interrupt_on = set(interrupt_on)
        self.calls = []
        self._lock = threading.Lock()

    def judge(self, row_id, query_name, dict_name):
        with self._lock:
            self.calls.append(row_id)
        if row_id in self.interrupt_on:
            raise RuntimeError("interrupted")
        if row_id in self.errors:
            return VerificationDecision(row_id, Decision.ERROR, "API Failed")
        if query_name[:3].lower() == dict_name[:3].lower():
            return VerificationDecision(row_id, Decision.CORRECT, "prefix match")
        return VerificationDecision(row_id, Decision.INCORRECT, "different prefix")


class AlwaysBusy:
    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    def complete(self, system_msg, user_msg):
        with self._lock:
            self.calls += 1
        raise JudgmentServiceError("HTTP 503", status=503)


@pytest.fixture
def matches():
    # Doubtful rows (1-based): 2, 3, 4, 6, 8, 9
    return pd.DataFrame({
        "query_id": [f"q{i}" for i in range(1, 10)],
        "dict_id": ["1", "2", "3", "4", None, "6", "7", "8", "9"],
        "match_type": [
            "Perfect", "FuzzyBlocked", "FuzzyTokenSearch", "RarityToken", None,
            "FuzzyBlocked", "Manual", "FuzzyTokenSearch", "RarityToken",
        ],
        "company_name_orig": [
            "Acme Bau", "Technova", "Biosol", "Datawork", "Unmatched Co",
            "Gastro Line", "Immo Base", "Softnet", "Automat",
        ],
        "company_name_dict": [
            "Acme Bau GmbH", "Technova Systems AG", "Biosolar KG", "Fintrust SE", None,
            "Gastroline GmbH", "Immobase AG", "Softnetz GmbH", "Autonova AG",
        ],
    })


def validate(data, output_dir, client, **kwargs):
    return validate_matches_llm(
        data,
        query_name_col="company_name_orig",
        dict_name_col="company_name_dict",
        output_dir=output_dir,
        client=client,
        batch_size=kwargs.pop("batch_size", 2),
        **kwargs,
    )


def test_select_rows_to_check(matches):
    selected = select_rows_to_check(matches)
    assert list(selected["query_id"]) == ["q2", "q3", "q4", "q6", "q8", "q9"]


def test_decisions_and_incorrect_flag(matches, tmp_path):
    judge = FakeJudge(errors={9})

    result = validate(matches, tmp_path, judge).set_index("query_id")

    assert sorted(judge.calls) == [2, 3, 4, 6, 8, 9]
    assert result.loc["q2", "LLM_decision"] == "CORRECT"
    assert result.loc["q2", "LLM_incorrect"] == 0
    assert result.loc["q4", "LLM_decision"] == "INCORRECT"
    assert result.loc["q4", "LLM_incorrect"] == 1
    assert result.loc["q9", "LLM_decision"] == "ERROR"
    assert pd.isna(result.loc["q9", "LLM_incorrect"])
    assert str(result["LLM_incorrect"].dtype) == "Int64"


def test_trusted_and_unmatched_rows_are_not_sent(matches, tmp_path):
    result = validate(matches, tmp_path, FakeJudge()).set_index("query_id")

    for query_id in ["q1", "q5", "q7"]:
        assert pd.isna(result.loc[query_id, "LLM_decision"])
        assert pd.isna(result.loc[query_id, "LLM_incorrect"])

    # Input columns and row order survive; the internal row id does not
    assert list(result.index) == list(matches["query_id"])
    assert ".row_id_internal" not in result.columns


def test_chunk_files_are_written_atomically(matches, tmp_path):
    validate(matches, tmp_path, FakeJudge(), filename_stem="run")

    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == ["run_chunk_0001.csv", "run_chunk_0002.csv", "run_chunk_0003.csv"]

    chunk = pd.read_csv(tmp_path / "run_chunk_0002.csv")
    assert list(chunk.columns) == ["row_id", "LLM_decision", "LLM_reason"]
    assert list(chunk["row_id"]) == [4, 6]


def test_resume_after_interruption(matches, tmp_path):
    interrupted_dir = tmp_path / "interrupted"
    clean_dir = tmp_path / "clean"

    # The second chunk (rows 4 and 6) fails before it is committed
    with pytest.raises(RuntimeError):
        validate(matches, interrupted_dir, FakeJudge(interrupt_on={4}))

    assert (interrupted_dir / "match_validation_chunk_0001.csv").exists()
    assert not (interrupted_dir / "match_validation_chunk_0002.csv").exists()

    rerun_judge = FakeJudge()
    resumed = validate(matches, interrupted_dir, rerun_judge)

    assert sorted(rerun_judge.calls) == [4, 6, 8, 9]

    uninterrupted = validate(matches, clean_dir, FakeJudge())
    pd.testing.assert_frame_equal(resumed, uninterrupted)


def test_completed_run_issues_no_requests(matches, tmp_path):
    first = validate(matches, tmp_path, FakeJudge())

    idle_judge = FakeJudge()
    second = validate(matches, tmp_path, idle_judge)

    assert idle_judge.calls == []
    pd.testing.assert_frame_equal(first, second)


def test_retry_exhaustion_marks_rows_as_error(matches, tmp_path):
    transport = AlwaysBusy()
    client = JudgmentClient(transport, retry_policy=RetryPolicy(max_attempts=3, sleep=lambda s: None))

    result = validate(matches, tmp_path, client, batch_size=10)

    assert transport.calls == 3 * 6
    checked = result[result["LLM_decision"].notna()]
    assert set(checked["LLM_decision"]) == {"ERROR"}
    assert set(checked["LLM_reason"]) == {"API Failed"}
    assert checked["LLM_incorrect"].isna().all()


def test_nothing_to_check_returns_input(tmp_path):
    data = pd.DataFrame({
        "dict_id": ["1", None],
        "match_type": ["Perfect", None],
        "company_name_orig": ["Acme", "Beta"],
        "company_name_dict": ["Acme GmbH", None],
    })
    judge = FakeJudge()

    result = validate(data, tmp_path / "out", judge)

    assert result is data
    assert judge.calls == []
    assert not (tmp_path / "out").exists()


def test_missing_column(matches, tmp_path):
    with pytest.raises(MissingColumnError) as exc_info:
        validate(matches.drop(columns=["match_type"]), tmp_path, FakeJudge())
    assert exc_info.value.column == "match_type"


def test_missing_credentials_before_any_work(monkeypatch, matches, tmp_path):
    monkeypatch.setattr(settings, "JUDGE_PROVIDER", "azure")
    monkeypatch.setattr(settings, "AZURE_API_KEY", "")
    monkeypatch.setattr(settings, "AZURE_ENDPOINT", "")
    monkeypatch.setattr(settings, "AZURE_DEPLOYMENT", "")

    with pytest.raises(MissingCredentialsError):
        validate(matches, tmp_path / "out", None)

    assert not (tmp_path / "out").exists()


def test_checkpoint_store_round_trip(tmp_path):
    store = CheckpointStore(tmp_path, "unit")
    decisions = [
        VerificationDecision(1, Decision.CORRECT, "same"),
        VerificationDecision(2, Decision.INCORRECT, ""),
    ]

    path = store.write(7, decisions)

    assert path.name == "unit_chunk_0007.csv"
    assert store.exists(7)
    assert not list(tmp_path.glob("*.tmp"))

    frame = store.read([7, 8])
    assert list(frame["row_id"]) == [1, 2]
    assert list(frame["LLM_reason"]) == ["same", ""]
