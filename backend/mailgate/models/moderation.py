"""
Pydantic models for content moderation.

Models:
  ModerationVerdict          — flagged/categories/scores for one text or image
  ModerationOutcome          — tagged result of one moderation call (ok | degraded)
  CandidateImage             — an image selected for moderation from one message
  ImageModeration            — per-image entry in the aggregate result
  ModerationSummary          — counts over the image candidates
  AggregateModerationResult  — merged verdict for a whole message
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ModerationVerdict(BaseModel):
    flagged: bool = False
    categories: dict[str, bool] = Field(default_factory=dict)
    scores: dict[str, float] = Field(default_factory=dict)


class ModerationOutcome(BaseModel):
    """
    Result of a single moderation call.

    A degraded outcome always carries the default (not flagged) verdict: a
    timeout or service failure is treated as "nothing wrong found".
    """
    status: Literal["ok", "degraded"]
    verdict: ModerationVerdict
    reason: Optional[str] = None

    @classmethod
    def ok(cls, verdict: ModerationVerdict) -> "ModerationOutcome":
        return cls(status="ok", verdict=verdict)

    @classmethod
    def degraded(cls, reason: str) -> "ModerationOutcome":
        return cls(status="degraded", verdict=ModerationVerdict(), reason=reason)

    @property
    def is_degraded(self) -> bool:
        return self.status == "degraded"


class ImageSource(str, Enum):
    INLINE = "inline"
    ATTACHMENT = "attachment"


class CandidateImage(BaseModel):
    type: ImageSource
    content_type: str
    content: str                        # base64 payload
    filename: Optional[str] = None
    content_id: Optional[str] = None    # lowercased, CID-matched images only

    @property
    def data_uri(self) -> str:
        return f"data:{self.content_type};base64,{self.content}"


class ImageModeration(BaseModel):
    type: ImageSource
    filename: Optional[str] = None
    moderation: ModerationVerdict
    degraded: bool = False


class ModerationSummary(BaseModel):
    total_images: int = 0
    inline_images: int = 0
    attachments: int = 0
    flagged_images: int = 0


class AggregateModerationResult(BaseModel):
    """
    Merged moderation verdict for one message.

    overall_passed is true iff the text is not flagged and no image is flagged.
    """
    text: ModerationVerdict
    images: list[ImageModeration] = Field(default_factory=list)
    overall_passed: bool
    summary: ModerationSummary = Field(default_factory=ModerationSummary)
    degraded: bool = False
    reason: Optional[str] = None

    @classmethod
    def from_outcomes(
        cls,
        text: ModerationOutcome,
        images: list[tuple[CandidateImage, ModerationOutcome]],
    ) -> "AggregateModerationResult":
        image_results = [
            ImageModeration(
                type=candidate.type,
                filename=candidate.filename,
                moderation=outcome.verdict,
                degraded=outcome.is_degraded,
            )
            for candidate, outcome in images
        ]
        return cls(
            text=text.verdict,
            images=image_results,
            overall_passed=(
                not text.verdict.flagged
                and not any(img.moderation.flagged for img in image_results)
            ),
            summary=ModerationSummary(
                total_images=len(image_results),
                inline_images=sum(1 for i in image_results if i.type == ImageSource.INLINE),
                attachments=sum(1 for i in image_results if i.type == ImageSource.ATTACHMENT),
                flagged_images=sum(1 for i in image_results if i.moderation.flagged),
            ),
        )

    @classmethod
    def all_clear(cls, reason: Optional[str] = None) -> "AggregateModerationResult":
        """Empty-result baseline returned when aggregation itself fails."""
        return cls(
            text=ModerationVerdict(),
            images=[],
            overall_passed=True,
            summary=ModerationSummary(),
            degraded=reason is not None,
            reason=reason,
        )

    def to_public_dict(self) -> dict:
        """camelCase view matching the persisted / diagnostic JSON shape."""
        return {
            "text": {
                "flagged": self.text.flagged,
                "categories": self.text.categories,
                "categoryScores": self.text.scores,
            },
            "images": [
                {
                    "type": img.type.value,
                    "filename": img.filename,
                    "moderation": {
                        "flagged": img.moderation.flagged,
                        "categories": img.moderation.categories,
                        "category_scores": img.moderation.scores,
                    },
                }
                for img in self.images
            ],
            "overallPassed": self.overall_passed,
            "summary": {
                "totalImages": self.summary.total_images,
                "inlineImages": self.summary.inline_images,
                "attachments": self.summary.attachments,
                "flaggedImages": self.summary.flagged_images,
            },
        }
