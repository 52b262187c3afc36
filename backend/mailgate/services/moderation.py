"""
Content moderation service.

ModerationClient wraps one call to the OpenAI moderation endpoint for a single
text or image input, bounded by a fixed timeout. ModerationAggregator fans the
calls for one message out concurrently and merges them into a single verdict.

Failure policy: every moderation failure degrades toward *allow*.
  - a call that times out or errors yields a degraded, not-flagged outcome
  - an unexpected error anywhere in aggregation yields the all-clear result
Both are logged; neither is raised to the caller.
"""

import asyncio
import logging
import os
from typing import Any, Optional

from openai import AsyncOpenAI

from mailgate.config import MODERATION_TIMEOUT_SECONDS, get_moderation_model
from mailgate.models.inbound_email import EmailMessage
from mailgate.models.moderation import (
    AggregateModerationResult,
    CandidateImage,
    ModerationOutcome,
    ModerationVerdict,
)
from mailgate.services.html_images import collect_candidate_images

logger = logging.getLogger(__name__)


def _as_dict(value: Any) -> dict:
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    # SDK models use aliases for slash-separated names, e.g. "harassment/threatening"
    return value.model_dump(by_alias=True)


def verdict_from_result(result: Any) -> ModerationVerdict:
    """Convert one entry of a moderation response's ``results`` list."""
    categories = _as_dict(getattr(result, "categories", None))
    scores = _as_dict(getattr(result, "category_scores", None))
    return ModerationVerdict(
        flagged=bool(getattr(result, "flagged", False)),
        categories={k: bool(v) for k, v in categories.items() if v is not None},
        scores={k: float(v) for k, v in scores.items() if v is not None},
    )


class ModerationClient:
    """
    Timeout-bounded moderation of a single text or image.

    Each call runs under its own ``asyncio.wait_for``; on timeout only that
    call is cancelled. The SDK client is created lazily so a missing API key
    surfaces as a degraded outcome rather than an import-time failure.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout_seconds: float = MODERATION_TIMEOUT_SECONDS,
    ):
        self._client = client
        self.model = model or get_moderation_model()
        self.timeout_seconds = timeout_seconds

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"), max_retries=0)
        return self._client

    async def moderate_text(self, text: str) -> ModerationOutcome:
        return await self._moderate([{"type": "text", "text": text}], label="text")

    async def moderate_image(self, image: CandidateImage) -> ModerationOutcome:
        label = f"{image.type.value} image {image.filename or image.content_type}"
        return await self._moderate(
            [{"type": "image_url", "image_url": {"url": image.data_uri}}],
            label=label,
        )

    async def _create(self, moderation_input: list[dict]):
        client = self._get_client()
        return await client.moderations.create(model=self.model, input=moderation_input)

    async def _moderate(self, moderation_input: list[dict], label: str) -> ModerationOutcome:
        try:
            response = await asyncio.wait_for(
                self._create(moderation_input),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Moderation of {label} timed out after {self.timeout_seconds}s")
            return ModerationOutcome.degraded("timeout")
        except Exception as e:
            logger.error(f"Moderation of {label} failed: {e}", exc_info=True)
            return ModerationOutcome.degraded(f"error: {type(e).__name__}")

        results = getattr(response, "results", None)
        if not results:
            logger.warning(f"Moderation of {label} returned no results")
            return ModerationOutcome.degraded("empty response")

        return ModerationOutcome.ok(verdict_from_result(results[0]))


class ModerationAggregator:
    """Moderates the text body and every candidate image of a message concurrently."""

    def __init__(self, client: Optional[ModerationClient] = None):
        self.client = client or ModerationClient()

    async def moderate_email(self, email: EmailMessage) -> AggregateModerationResult:
        try:
            candidates = collect_candidate_images(email)

            outcomes = await asyncio.gather(
                self.client.moderate_text(email.TextBody),
                *(self.client.moderate_image(image) for image in candidates),
            )

            result = AggregateModerationResult.from_outcomes(
                text=outcomes[0],
                images=list(zip(candidates, outcomes[1:])),
            )
        except Exception as e:
            logger.error(f"Unexpected content moderation error: {e}", exc_info=True)
            return AggregateModerationResult.all_clear(reason=f"error: {type(e).__name__}")

        degraded = sum(1 for o in outcomes if o.is_degraded)
        logger.info(
            f"Moderation: text_flagged={result.text.flagged}, "
            f"images={result.summary.total_images}, flagged_images={result.summary.flagged_images}, "
            f"degraded_calls={degraded}, passed={result.overall_passed}"
        )
        return result
