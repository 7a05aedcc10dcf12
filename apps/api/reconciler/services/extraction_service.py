"""Extraction engine - structured qualification data from call transcripts.

The LLM call is the only long blocking step in a webhook request. It is
bounded by a RetryPolicy (attempt count and elapsed cap) and its response is
validated against ExtractionResult before anything is persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from reconciler.core.config import settings
from reconciler.core.errors import (
    ExtractionFailure,
    SchemaViolation,
    TransientExternalError,
)
from reconciler.core.retry import RetryPolicy
from reconciler.db.enums import ExtractionStatus
from reconciler.services.ai_prompt_schemas import EXTRACTION_SYSTEM_PROMPT, ExtractionResult
from reconciler.services.ai_provider import AIProvider, ChatMessage, get_provider
from reconciler.services.ai_response_validation import parse_model_response

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[... transcript truncated ...]\n\n"

# Status codes worth retrying; every other 4xx is a request problem
TRANSIENT_STATUSES = {408, 429, 500, 502, 503, 504}


def truncate_transcript(text: str, max_chars: int, head_ratio: float = 0.6) -> str:
    """
    Fit a transcript into max_chars, keeping the start and the end.

    The middle is dropped. The result, marker included, is never longer
    than max_chars.
    """
    if len(text) <= max_chars:
        return text
    budget = max_chars - len(TRUNCATION_MARKER)
    if budget <= 0:
        return text[:max_chars]
    head_len = int(budget * head_ratio)
    tail_len = budget - head_len
    tail = text[-tail_len:] if tail_len else ""
    return f"{text[:head_len]}{TRUNCATION_MARKER}{tail}"


@dataclass
class ExtractionOutcome:
    status: ExtractionStatus
    result: ExtractionResult | None = None
    raw: str | None = None
    model: str | None = None


def classify_http_error(exc: httpx.HTTPError) -> Exception:
    """Map an httpx error to TransientExternalError or ExtractionFailure."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in TRANSIENT_STATUSES:
            return TransientExternalError(f"Extraction provider returned {status}")
        return ExtractionFailure(
            f"Extraction provider rejected the request ({status})",
            details={"status_code": status},
        )
    if isinstance(exc, httpx.TimeoutException):
        return TransientExternalError("Extraction provider timed out")
    return TransientExternalError(f"Extraction provider unreachable: {exc.__class__.__name__}")


class ExtractionEngine:
    """Runs transcript extraction against an AIProvider under a RetryPolicy."""

    def __init__(
        self,
        provider: AIProvider,
        retry_policy: RetryPolicy | None = None,
        *,
        max_transcript_chars: int = 12000,
        head_ratio: float = 0.6,
        min_confidence: float = 0.5,
        model: str | None = None,
    ):
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_transcript_chars = max_transcript_chars
        self.head_ratio = head_ratio
        self.min_confidence = min_confidence
        self.model = model

    def build_messages(self, transcript: str) -> list[ChatMessage]:
        text = truncate_transcript(transcript, self.max_transcript_chars, self.head_ratio)
        return [
            ChatMessage(role="system", content=EXTRACTION_SYSTEM_PROMPT),
            ChatMessage(role="user", content=f"Transcript:\n{text}"),
        ]

    async def _call_provider(self, messages: list[ChatMessage]):
        try:
            return await self.provider.chat(
                messages, model=self.model, temperature=0.1, json_mode=True
            )
        except httpx.HTTPError as exc:
            raise classify_http_error(exc) from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            # 2xx with a body the provider adapter could not read
            raise ExtractionFailure(
                "Extraction provider returned an unreadable response",
                details={"error": type(exc).__name__},
            ) from exc

    async def extract(self, transcript: str | None) -> ExtractionOutcome:
        """
        Extract structured data from a transcript.

        Returns a SKIPPED outcome for blank transcripts without calling the
        provider. Raises ExtractionFailure when the provider keeps failing or
        rejects the request, and SchemaViolation when its response cannot be
        validated.
        """
        if not transcript or not transcript.strip():
            return ExtractionOutcome(status=ExtractionStatus.SKIPPED)

        messages = self.build_messages(transcript)
        try:
            response = await self.retry_policy.run(
                lambda: self._call_provider(messages), operation="transcript extraction"
            )
        except TransientExternalError as exc:
            raise ExtractionFailure(
                "Extraction provider unavailable after retries",
                details={"max_attempts": self.retry_policy.max_attempts},
            ) from exc

        result = parse_model_response(ExtractionResult, response.content)
        if result is None:
            raise SchemaViolation("Extraction response did not match the expected schema")

        logger.info(
            "Extraction completed (model=%s, tokens=%s)",
            response.model,
            response.total_tokens,
        )
        return ExtractionOutcome(
            status=ExtractionStatus.DONE,
            result=result,
            raw=response.content,
            model=response.model,
        )


def build_default_engine() -> ExtractionEngine:
    """Engine configured from settings."""
    provider = get_provider(
        settings.AI_PROVIDER,
        settings.AI_API_KEY,
        model=settings.AI_MODEL or None,
        timeout=settings.AI_TIMEOUT_SECONDS,
    )
    policy = RetryPolicy.from_retries(
        settings.EXTRACTION_MAX_RETRIES,
        base_delay=settings.EXTRACTION_RETRY_BASE_DELAY,
        max_delay=settings.EXTRACTION_RETRY_MAX_DELAY,
        max_elapsed=settings.EXTRACTION_MAX_ELAPSED_SECONDS,
    )
    return ExtractionEngine(
        provider,
        policy,
        max_transcript_chars=settings.EXTRACTION_MAX_TRANSCRIPT_CHARS,
        head_ratio=settings.EXTRACTION_HEAD_RATIO,
        min_confidence=settings.EXTRACTION_MIN_CONFIDENCE,
    )
