"""
Image candidate extraction for content moderation.

An HTML body can embed images two ways:

  data URI   <img src="data:image/png;base64,iVBORw0...">
  CID        <img src="cid:image001.png@01DA...">  resolved against the
             attachment whose ContentID matches (case-insensitive)

Every distinct image payload must be moderated exactly once. An image
attachment referenced by a cid: tag is moderated as an inline image and is
excluded from the attachment pass.
"""

import logging
import re
from html.parser import HTMLParser
from typing import Iterable, List, Set

from mailgate.models.inbound_email import Attachment, EmailMessage
from mailgate.models.moderation import CandidateImage, ImageSource

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:(.+);base64,(.+)$", re.IGNORECASE | re.DOTALL)
_CID_RE = re.compile(r"^cid:(.+)$", re.IGNORECASE | re.DOTALL)


class _AttributeCollector(HTMLParser):
    """Collects the values of one attribute on one tag, in document order."""

    def __init__(self, tag: str, attr: str):
        super().__init__(convert_charrefs=True)
        self._tag = tag.lower()
        self._attr = attr.lower()
        self.values: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag != self._tag:
            return
        for name, value in attrs:
            if name == self._attr and value is not None:
                self.values.append(value.strip())


def find_attribute_values(html: str, tag: str, attr: str) -> List[str]:
    """Return every value of ``attr`` on ``<tag>`` elements in ``html``."""
    if not html:
        return []
    collector = _AttributeCollector(tag, attr)
    collector.feed(html)
    collector.close()
    return collector.values


def extract_base64_images(html: str) -> List[CandidateImage]:
    """One inline candidate per ``<img src="data:<mime>;base64,<payload>">``."""
    images: List[CandidateImage] = []
    for src in find_attribute_values(html, "img", "src"):
        m = _DATA_URI_RE.match(src)
        if m:
            images.append(
                CandidateImage(
                    type=ImageSource.INLINE,
                    content_type=m.group(1),
                    content=m.group(2),
                )
            )
    logger.info(f"Extracted {len(images)} base64 inline images: {[i.content_type for i in images]}")
    return images


def referenced_content_ids(html: str) -> Set[str]:
    """Lowercased identifiers of every ``<img src="cid:...">`` in ``html``."""
    cids: Set[str] = set()
    for src in find_attribute_values(html, "img", "src"):
        m = _CID_RE.match(src)
        if m:
            cids.add(m.group(1).lower())
    return cids


def match_cid_references(html: str, attachments: Iterable[Attachment]) -> List[CandidateImage]:
    """Attachments whose ContentID is referenced by a cid: image, as inline candidates."""
    cids = referenced_content_ids(html)
    if not cids:
        return []
    return [
        CandidateImage(
            type=ImageSource.INLINE,
            content_type=att.ContentType,
            content=att.Content,
            filename=att.Name,
            content_id=att.content_id_key,
        )
        for att in attachments
        if att.content_id_key and att.content_id_key in cids
    ]


def collect_candidate_images(email: EmailMessage) -> List[CandidateImage]:
    """
    Full candidate set for one message.

    Order: base64 inline images, then CID-matched inline images, then the
    remaining image attachments. An image attachment whose ContentID was
    matched inline is not repeated as an attachment candidate.
    """
    base64_images = extract_base64_images(email.HtmlBody)
    cid_images = match_cid_references(email.HtmlBody, email.Attachments)
    excluded_cids = {img.content_id for img in cid_images if img.content_id}

    attachment_images = [
        CandidateImage(
            type=ImageSource.ATTACHMENT,
            content_type=att.ContentType,
            content=att.Content,
            filename=att.Name,
            content_id=att.content_id_key,
        )
        for att in email.Attachments
        if att.is_image and att.content_id_key not in excluded_cids
    ]

    logger.info(
        f"Image candidates: base64={len(base64_images)}, cid={len(cid_images)}, "
        f"attachments={len(attachment_images)} (of {len(email.Attachments)} total attachments)"
    )
    return base64_images + cid_images + attachment_images
