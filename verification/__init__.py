"""
Match Verification Module

LLM-based second opinion on fuzzy matches, with per-chunk checkpoints
so long runs survive interruption.
"""

from verification.client import (
    AnthropicTransport,
    Decision,
    JudgmentClient,
    JudgmentServiceError,
    ResponseParseError,
    ResponsesApiTransport,
    RetryPolicy,
    VerificationDecision,
    build_judgment_client,
    parse_judgment,
)
from verification.validator import CheckpointStore, validate_matches_llm

__all__ = [
    "AnthropicTransport",
    "CheckpointStore",
    "Decision",
    "JudgmentClient",
    "JudgmentServiceError",
    "ResponseParseError",
    "ResponsesApiTransport",
    "RetryPolicy",
    "VerificationDecision",
    "build_judgment_client",
    "parse_judgment",
    "validate_matches_llm",
]
