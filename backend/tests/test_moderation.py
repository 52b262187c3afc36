"""
Unit tests for the moderation client and aggregator with a MOCKED OpenAI client.
No real API calls are made.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mailgate.models.inbound_email import Attachment, EmailMessage
from mailgate.models.moderation import CandidateImage, ImageSource, ModerationVerdict
from mailgate.services.moderation import (
    ModerationAggregator,
    ModerationClient,
    verdict_from_result,
)

PNG_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
FLAGGED_B64 = "RkxBR0dFRA=="


def _response(flagged: bool = False, categories: dict | None = None, scores: dict | None = None):
    """Mimic the shape of a ModerationCreateResponse."""
    return SimpleNamespace(
        results=[
            SimpleNamespace(
                flagged=flagged,
                categories=categories or {"sexual": flagged, "violence": False},
                category_scores=scores or {"sexual": 0.9 if flagged else 0.01, "violence": 0.02},
            )
        ]
    )


def _mock_openai(create):
    client = MagicMock()
    client.moderations.create = AsyncMock(side_effect=create)
    return client


def _image_url(kwargs) -> str | None:
    item = kwargs["input"][0]
    if item["type"] == "image_url":
        return item["image_url"]["url"]
    return None


class TestVerdictFromResult:
    def test_maps_dict_fields(self):
        verdict = verdict_from_result(_response(flagged=True).results[0])
        assert verdict.flagged is True
        assert verdict.categories["sexual"] is True
        assert verdict.scores["sexual"] == pytest.approx(0.9)

    def test_uses_sdk_aliases(self):
        categories = MagicMock()
        categories.model_dump.return_value = {"harassment/threatening": True, "sexual": None}
        scores = MagicMock()
        scores.model_dump.return_value = {"harassment/threatening": 0.8}
        result = SimpleNamespace(flagged=True, categories=categories, category_scores=scores)

        verdict = verdict_from_result(result)

        categories.model_dump.assert_called_once_with(by_alias=True)
        assert verdict.categories == {"harassment/threatening": True}
        assert verdict.scores == {"harassment/threatening": 0.8}


class TestModerationClient:
    @pytest.mark.asyncio
    async def test_text_request_shape(self):
        openai_client = _mock_openai(lambda **kw: _response())
        client = ModerationClient(client=openai_client, model="omni-moderation-latest")

        outcome = await client.moderate_text("hello there")

        assert outcome.status == "ok"
        assert outcome.verdict.flagged is False
        kwargs = openai_client.moderations.create.call_args.kwargs
        assert kwargs["model"] == "omni-moderation-latest"
        assert kwargs["input"] == [{"type": "text", "text": "hello there"}]

    @pytest.mark.asyncio
    async def test_image_request_uses_data_uri(self):
        openai_client = _mock_openai(lambda **kw: _response(flagged=True))
        client = ModerationClient(client=openai_client)
        image = CandidateImage(type=ImageSource.INLINE, content_type="image/png", content=PNG_B64)

        outcome = await client.moderate_image(image)

        assert outcome.verdict.flagged is True
        kwargs = openai_client.moderations.create.call_args.kwargs
        assert _image_url(kwargs) == f"data:image/png;base64,{PNG_B64}"

    @pytest.mark.asyncio
    async def test_timeout_degrades_to_not_flagged(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)
            return _response(flagged=True)

        client = ModerationClient(client=_mock_openai(slow), timeout_seconds=0.05)
        outcome = await client.moderate_text("anything")

        assert outcome.is_degraded
        assert outcome.reason == "timeout"
        assert outcome.verdict == ModerationVerdict()

    @pytest.mark.asyncio
    async def test_service_error_degrades_to_not_flagged(self):
        def boom(**kwargs):
            raise RuntimeError("service unavailable")

        client = ModerationClient(client=_mock_openai(boom))
        outcome = await client.moderate_text("anything")

        assert outcome.is_degraded
        assert outcome.reason == "error: RuntimeError"
        assert outcome.verdict.flagged is False
        assert outcome.verdict.categories == {}
        assert outcome.verdict.scores == {}

    @pytest.mark.asyncio
    async def test_empty_results_degrades(self):
        client = ModerationClient(client=_mock_openai(lambda **kw: SimpleNamespace(results=[])))
        outcome = await client.moderate_text("anything")
        assert outcome.is_degraded
        assert outcome.verdict.flagged is False

    @pytest.mark.asyncio
    async def test_missing_api_key_degrades(self, mocker):
        mocker.patch("mailgate.services.moderation.AsyncOpenAI", side_effect=Exception("no key"))
        client = ModerationClient()
        outcome = await client.moderate_text("anything")
        assert outcome.is_degraded
        assert outcome.verdict.flagged is False

    def test_default_timeout_is_45_seconds(self):
        assert ModerationClient(client=MagicMock()).timeout_seconds == 45.0


class TestModerationAggregator:
    """ModerationAggregator.moderate_email() fans out text + image calls."""

    @staticmethod
    def _flag_images(**kwargs):
        url = _image_url(kwargs)
        return _response(flagged=bool(url and FLAGGED_B64 in url))

    @pytest.mark.asyncio
    async def test_text_only_passes(self):
        openai_client = _mock_openai(self._flag_images)
        aggregator = ModerationAggregator(ModerationClient(client=openai_client))

        result = await aggregator.moderate_email(EmailMessage(From="a@b.com", TextBody="hello"))

        assert result.overall_passed is True
        assert result.images == []
        assert result.summary.total_images == 0
        assert openai_client.moderations.create.await_count == 1

    @pytest.mark.asyncio
    async def test_flagged_text_fails_with_no_images(self):
        aggregator = ModerationAggregator(
            ModerationClient(client=_mock_openai(lambda **kw: _response(flagged=True)))
        )
        result = await aggregator.moderate_email(EmailMessage(From="a@b.com", TextBody="bad"))
        assert result.overall_passed is False
        assert result.text.flagged is True

    @pytest.mark.asyncio
    async def test_one_call_per_candidate(self):
        openai_client = _mock_openai(self._flag_images)
        aggregator = ModerationAggregator(ModerationClient(client=openai_client))
        email = EmailMessage(
            From="a@b.com",
            TextBody="hello",
            HtmlBody=f'<img src="data:image/png;base64,{PNG_B64}"><img src="cid:logo">',
            Attachments=[
                Attachment(Name="logo.png", ContentType="image/png", ContentID="LOGO", Content=PNG_B64),
                Attachment(Name="photo.png", ContentType="image/png", Content=PNG_B64),
            ],
        )

        result = await aggregator.moderate_email(email)

        assert openai_client.moderations.create.await_count == 4  # text + 3 images
        assert result.summary.total_images == 3
        assert result.summary.inline_images == 2
        assert result.summary.attachments == 1
        assert result.summary.flagged_images == 0
        assert result.overall_passed is True

    @pytest.mark.asyncio
    async def test_flagged_inline_image_fails(self):
        aggregator = ModerationAggregator(ModerationClient(client=_mock_openai(self._flag_images)))
        email = EmailMessage(
            From="a@b.com",
            TextBody="clean text",
            HtmlBody=f'<img src="data:image/png;base64,{FLAGGED_B64}">',
        )

        result = await aggregator.moderate_email(email)

        assert result.text.flagged is False
        assert result.overall_passed is False
        assert result.summary.flagged_images == 1
        assert result.images[0].type == ImageSource.INLINE

    @pytest.mark.asyncio
    async def test_slow_call_does_not_abort_siblings(self):
        async def create(**kwargs):
            url = _image_url(kwargs)
            if url and PNG_B64 in url:
                await asyncio.sleep(1)
            return self._flag_images(**kwargs)

        aggregator = ModerationAggregator(
            ModerationClient(client=_mock_openai(create), timeout_seconds=0.05)
        )
        email = EmailMessage(
            From="a@b.com",
            TextBody="hi",
            HtmlBody=(
                f'<img src="data:image/png;base64,{PNG_B64}">'
                f'<img src="data:image/png;base64,{FLAGGED_B64}">'
            ),
        )

        result = await aggregator.moderate_email(email)

        assert result.summary.total_images == 2
        slow, flagged = result.images
        assert slow.degraded is True
        assert slow.moderation.flagged is False
        assert flagged.moderation.flagged is True
        assert result.overall_passed is False

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_open(self):
        aggregator = ModerationAggregator(ModerationClient(client=_mock_openai(self._flag_images)))
        with patch(
            "mailgate.services.moderation.collect_candidate_images",
            side_effect=RuntimeError("parser exploded"),
        ):
            result = await aggregator.moderate_email(EmailMessage(From="a@b.com", TextBody="x"))

        assert result.overall_passed is True
        assert result.degraded is True
        assert result.images == []
        assert result.summary.total_images == 0
