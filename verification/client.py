"""
Judgment-service client for match verification.

Asks an LLM whether a query name and its matched registry name refer to
the same company. The request is a fixed system instruction plus one
user prompt per row; the reply must be JSON of the form

    {"decision": "CORRECT" | "INCORRECT", "reason": "..."}

Two transports are supported:
- ResponsesApiTransport: Azure-style ``/openai/v1/responses`` endpoint (requests)
- AnthropicTransport: Anthropic Messages API (anthropic SDK)

Retries are governed by RetryPolicy, not by the transport, so both
behave identically: server errors, rate limits and network failures are
retried with increasing delay; anything else is final.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import anthropic
import requests

from config.logging import get_logger
from config.settings import settings
from matching.exceptions import MissingCredentialsError

logger = get_logger(__name__)


SYSTEM_PROMPT = """You are an expert on German company registries.
Your task: decide if the match between an Employer Name (from reviews) and an Official Registry Name is CORRECT.

Definitions:
- CORRECT: Same legal entity, subsidiary, or clear corporate group match.
- INCORRECT: Different company, no clear relation, or unsure.

Clarifications:
- Ignore legal suffixes (GmbH, AG) unless they distinguish totally different firms.
- Allow small typos/abbreviations.

Output strict JSON: {"decision": "CORRECT" (or "INCORRECT"), "reason": "short explanation"}"""

USER_PROMPT = "Employer: {query_name}\nRegistry Entry: {dict_name}\n\nIs this the same company?"


class Decision(Enum):
    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"
    ERROR = "ERROR"


@dataclass
class VerificationDecision:
    """Verdict for one internal row id."""
    row_id: int
    decision: Decision
    reason: str

    def as_row(self) -> dict:
        return {
            "row_id": self.row_id,
            "LLM_decision": self.decision.value,
            "LLM_reason": self.reason,
        }


class JudgmentServiceError(Exception):
    """A call to the judgment service failed. ``status`` is None for network errors."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ResponseParseError(JudgmentServiceError):
    """The service answered, but not with the expected structure."""


def is_transient_status(status: Optional[int]) -> bool:
    """Server errors, rate limits, and network failures (no status) are worth retrying."""
    return status is None or status >= 500 or status == 429


def linear_backoff(attempt: int) -> float:
    """2s after the first failure, 4s after the second, ..."""
    return 2.0 * attempt


@dataclass
class RetryPolicy:
    """Bounded retry with backoff for judgment-service calls."""
    max_attempts: int = settings.LLM_MAX_ATTEMPTS
    backoff: Callable[[int], float] = linear_backoff
    is_retryable: Callable[[Optional[int]], bool] = is_transient_status
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def should_retry(self, error: JudgmentServiceError) -> bool:
        if isinstance(error, ResponseParseError):
            return False
        return self.is_retryable(error.status)

    def call(self, fn: Callable[[], str]) -> str:
        """Run ``fn``; re-raise the last error once attempts are exhausted."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except JudgmentServiceError as e:
                if attempt >= self.max_attempts or not self.should_retry(e):
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    f"Transient judgment-service failure (status={e.status}), "
                    f"attempt {attempt}/{self.max_attempts}; retrying in {delay:.1f}s"
                )
                self.sleep(delay)
        raise RuntimeError("RetryPolicy.max_attempts must be at least 1")


def extract_output_text(payload) -> Optional[str]:
    """
    Pull the model text out of a /responses payload.

    Tries ``output_text`` first, then ``output[0].content[0].text``.
    """
    if not isinstance(payload, dict):
        return None

    output_text = payload.get("output_text")
    if isinstance(output_text, str):
        return output_text
    if isinstance(output_text, list) and all(isinstance(t, str) for t in output_text):
        return "\n".join(output_text)

    output = payload.get("output")
    if isinstance(output, list) and output and isinstance(output[0], dict):
        content = output[0].get("content")
        if isinstance(content, list) and content and isinstance(content[0], dict):
            text = content[0].get("text")
            if isinstance(text, str):
                return text

    return None


class ResponsesApiTransport:
    """POSTs to ``{endpoint}/openai/v1/responses`` with an ``api-key`` header."""

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        deployment: str,
        timeout: int = settings.LLM_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.url = endpoint.rstrip("/") + "/openai/v1/responses"
        self.api_key = api_key
        self.deployment = deployment
        self.timeout = timeout
        self.session = session or requests.Session()

    def complete(self, system_msg: str, user_msg: str) -> str:
        body = {
            "model": self.deployment,
            "input": [
                {"role": "system", "content": system_msg},
                {"role": "user", "content": user_msg},
            ],
            "temperature": 0,
            "max_output_tokens": 256,
        }

        try:
            response = self.session.post(
                self.url,
                headers={"Content-Type": "application/json", "api-key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise JudgmentServiceError(f"Request failed: {e}") from e

        if response.status_code != 200:
            raise JudgmentServiceError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ResponseParseError(f"Response body is not JSON: {e}", status=200) from e

        text = extract_output_text(payload)
        if text is None:
            raise ResponseParseError("No output text in response", status=200)
        return text


class AnthropicTransport:
    """Anthropic Messages API; SDK-level retries are disabled in favour of RetryPolicy."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: int = settings.LLM_TIMEOUT,
        base_url: Optional[str] = None,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self.model = model
        self.client = client or anthropic.Anthropic(
            api_key=api_key,
            base_url=base_url or None,
            max_retries=0,
            timeout=timeout,
        )

    def complete(self, system_msg: str, user_msg: str) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=256,
                temperature=0,
                system=system_msg,
                messages=[{"role": "user", "content": user_msg}],
            )
        except anthropic.APIStatusError as e:
            raise JudgmentServiceError(str(e), status=e.status_code) from e
        except anthropic.APIConnectionError as e:
            raise JudgmentServiceError(f"Connection failed: {e}") from e
        except anthropic.APIError as e:
            # e.g. APIResponseValidationError: the service answered, but malformed
            raise ResponseParseError(str(e), status=200) from e

        if not response.content or not hasattr(response.content[0], "text"):
            raise ResponseParseError("No text block in response", status=200)
        return response.content[0].text


def parse_judgment(raw_text: str) -> tuple[Decision, str]:
    """
    Parse the model reply into (decision, reason).

    Raises:
        ResponseParseError: not JSON, or missing/invalid decision or reason
    """
    text = raw_text.strip()

    # Handle potential markdown code blocks
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Reply is not JSON: {raw_text[:200]}") from e

    if not isinstance(parsed, dict):
        raise ResponseParseError(f"Reply is not an object: {raw_text[:200]}")

    decision = parsed.get("decision")
    reason = parsed.get("reason")
    if not isinstance(decision, str) or not isinstance(reason, str):
        raise ResponseParseError(f"Reply lacks decision/reason: {raw_text[:200]}")

    verdict = decision.strip().upper()
    if verdict not in (Decision.CORRECT.value, Decision.INCORRECT.value):
        raise ResponseParseError(f"Unknown decision '{decision}'")
    return Decision(verdict), reason


class JudgmentClient:
    """
    Judges one (query name, registry name) pair per call.

    Never raises for service problems: a failed or unparseable call
    becomes an ERROR decision for that row.
    """

    def __init__(
        self,
        transport,
        retry_policy: Optional[RetryPolicy] = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy()
        self.system_prompt = system_prompt

    def judge(self, row_id: int, query_name: str, dict_name: str) -> VerificationDecision:
        user_msg = USER_PROMPT.format(query_name=query_name, dict_name=dict_name)

        try:
            raw_text = self.retry_policy.call(
                lambda: self.transport.complete(self.system_prompt, user_msg)
            )
            decision, reason = parse_judgment(raw_text)
        except ResponseParseError as e:
            logger.error(f"Row {row_id}: unparseable judgment: {e}")
            return VerificationDecision(row_id, Decision.ERROR, "Unparseable response")
        except JudgmentServiceError as e:
            logger.error(f"Row {row_id}: judgment service failed: {e}")
            return VerificationDecision(row_id, Decision.ERROR, "API Failed")

        return VerificationDecision(row_id, decision, reason)


def build_judgment_client(
    provider: Optional[str] = None,
    api_key: Optional[str] = None,
    endpoint: Optional[str] = None,
    deployment: Optional[str] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> JudgmentClient:
    """
    Create a JudgmentClient from explicit arguments, falling back to settings.

    Raises:
        MissingCredentialsError: a required credential is empty
        ValueError: unknown provider
    """
    provider = (provider or settings.JUDGE_PROVIDER).lower()

    if provider == "azure":
        creds = {
            "AZURE_API_KEY": api_key or settings.AZURE_API_KEY,
            "AZURE_ENDPOINT": endpoint or settings.AZURE_ENDPOINT,
            "AZURE_DEPLOYMENT": deployment or settings.AZURE_DEPLOYMENT,
        }
    elif provider == "anthropic":
        creds = {
            "ANTHROPIC_API_KEY": api_key or settings.ANTHROPIC_API_KEY,
            "JUDGE_MODEL": deployment or settings.JUDGE_MODEL,
        }
    else:
        raise ValueError(f"Unknown judgment provider '{provider}' (expected 'azure' or 'anthropic')")

    missing = [name for name, value in creds.items() if not value]
    if missing:
        raise MissingCredentialsError(
            f"Judgment-service credentials missing. Please set {', '.join(missing)}."
        )

    if provider == "azure":
        transport = ResponsesApiTransport(
            endpoint=creds["AZURE_ENDPOINT"],
            api_key=creds["AZURE_API_KEY"],
            deployment=creds["AZURE_DEPLOYMENT"],
        )
    else:
        transport = AnthropicTransport(
            api_key=creds["ANTHROPIC_API_KEY"],
            model=creds["JUDGE_MODEL"],
            base_url=endpoint,
        )

    return JudgmentClient(transport, retry_policy=retry_policy)
