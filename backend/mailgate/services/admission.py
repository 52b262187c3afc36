"""
Email admission pipeline.

Runs the gates in a fixed order and stops at the first one that fails:

  1. length       body length within config.length
  2. attachments  attachment count within config.attachments
  3. moderation   text + images not flagged (external call)
  4. sender       domain/username decision table

The boolean verdict is the only contract for routing; the per-gate detail is
carried alongside for logging and the diagnostic payload.
"""

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from mailgate.models.filter_config import FilterConfig
from mailgate.models.inbound_email import EmailMessage
from mailgate.models.moderation import AggregateModerationResult
from mailgate.services.checks import (
    AttachmentCheck,
    LengthCheck,
    check_attachment_count,
    check_email_length,
)
from mailgate.services.moderation import ModerationAggregator
from mailgate.services.sender_rules import is_sender_allowed

logger = logging.getLogger(__name__)


class Gate(str, Enum):
    LENGTH = "length"
    ATTACHMENTS = "attachments"
    MODERATION = "moderation"
    SENDER = "sender"


class AdmissionResult(BaseModel):
    is_allowed: bool
    denied_by: Optional[Gate] = None
    length: LengthCheck
    attachments: Optional[AttachmentCheck] = None
    moderation: Optional[AggregateModerationResult] = None
    sender_allowed: Optional[bool] = None

    def to_diagnostics(self, config: FilterConfig) -> dict:
        """
        Diagnostic payload for logging / the preview endpoint.

        contentModeration and attachmentNum are always present. When an earlier
        gate denied, moderation was never called and contentModeration is the
        zero-count baseline marked "skipped".
        """
        skipped = self.moderation is None
        m = self.moderation or AggregateModerationResult.all_clear()
        content_moderation = {
            "text": {
                "passed": not m.text.flagged,
                "categories": m.text.categories,
                "scores": m.text.scores,
            },
            "images": [
                {
                    "type": img.type.value,
                    "filename": img.filename or "inline-image",
                    "passed": not img.moderation.flagged,
                    "categories": img.moderation.categories,
                    "scores": img.moderation.scores,
                }
                for img in m.images
            ],
            "summary": m.to_public_dict()["summary"],
            "overallPassed": m.overall_passed,
            "degraded": m.degraded,
            "skipped": skipped,
        }

        attachment_num = None
        if self.attachments is not None:
            attachment_num = {
                "count": self.attachments.count,
                "maxCount": self.attachments.max_count,
                "passed": self.attachments.passed,
            }

        return {
            "isAllowed": self.is_allowed,
            "deniedBy": self.denied_by.value if self.denied_by else None,
            "filterConfig": config.to_public_dict(),
            "contentModeration": content_moderation,
            "lengthValidation": {
                "contentLength": self.length.content_length,
                "min": self.length.min,
                "max": self.length.max,
                "passed": self.length.passed,
            },
            "attachmentNum": attachment_num,
        }


class EmailAdmissionPipeline:
    """Allow/deny decision for one inbound message."""

    def __init__(
        self,
        config: FilterConfig,
        aggregator: Optional[ModerationAggregator] = None,
    ):
        self.config = config
        self.aggregator = aggregator or ModerationAggregator()

    async def evaluate(self, email: EmailMessage) -> AdmissionResult:
        logger.info(f"Evaluating message from={email.From!r}, subject={email.Subject!r}")

        length = check_email_length(email, self.config)
        # Pure count, reported even when the length gate denies
        attachments = check_attachment_count(email.Attachments, self.config)
        if not length.passed:
            logger.info("Failed length check")
            return AdmissionResult(
                is_allowed=False,
                denied_by=Gate.LENGTH,
                length=length,
                attachments=attachments,
            )

        if not attachments.passed:
            logger.info(f"Failed attachment check: {attachments.count} > {attachments.max_count}")
            return AdmissionResult(
                is_allowed=False,
                denied_by=Gate.ATTACHMENTS,
                length=length,
                attachments=attachments,
            )

        moderation = await self.aggregator.moderate_email(email)
        if not moderation.overall_passed:
            logger.info("Failed moderation check")
            return AdmissionResult(
                is_allowed=False,
                denied_by=Gate.MODERATION,
                length=length,
                attachments=attachments,
                moderation=moderation,
            )

        sender_allowed = is_sender_allowed(email.From, self.config)
        logger.info(f"Sender rules result: {sender_allowed}")
        return AdmissionResult(
            is_allowed=sender_allowed,
            denied_by=None if sender_allowed else Gate.SENDER,
            length=length,
            attachments=attachments,
            moderation=moderation,
            sender_allowed=sender_allowed,
        )
