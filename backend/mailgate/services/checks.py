"""
Static content checks: body length and attachment count.

Both are pure functions of the message and the FilterConfig; they run before
any external call.
"""

import logging
from typing import Optional, Sequence

from pydantic import BaseModel

from mailgate.models.filter_config import FilterConfig
from mailgate.models.inbound_email import Attachment, EmailMessage

logger = logging.getLogger(__name__)


class LengthCheck(BaseModel):
    content_length: int
    min: int
    max: Optional[int]
    passed: bool


class AttachmentCheck(BaseModel):
    count: int
    max_count: Optional[int]
    passed: bool


def check_email_length(email: EmailMessage, config: FilterConfig) -> LengthCheck:
    """
    Check the body length against config.length.

    The content under test is TextBody if non-empty, else HtmlBody. Passes iff
    len >= min and (max is unbounded or len <= max).
    """
    content = email.body_for_checks
    min_len = config.length.min
    max_len = config.length.max

    meets_min = len(content) >= min_len
    meets_max = max_len is None or len(content) <= max_len

    logger.info(
        f"Content length check: text={len(email.TextBody)}, html={len(email.HtmlBody)}, "
        f"min={min_len}, max={max_len}"
    )
    return LengthCheck(
        content_length=len(content),
        min=min_len,
        max=max_len,
        passed=meets_min and meets_max,
    )


def check_attachment_count(
    attachments: Optional[Sequence[Attachment]],
    config: FilterConfig,
) -> AttachmentCheck:
    """Passes iff max_count is unbounded or the attachment count is <= max_count."""
    max_count = config.attachments.max_count
    count = len(attachments or [])
    return AttachmentCheck(
        count=count,
        max_count=max_count,
        passed=max_count is None or count <= max_count,
    )
