"""
Inbound email model consumed by the admission pipeline.

Field names follow the upstream Postmark webhook (PascalCase) so a payload can
be validated directly. Postmark sends many more fields; unknown fields are
silently ignored.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Attachment(BaseModel):
    """A single attachment as delivered by the webhook (content still base64)."""
    model_config = ConfigDict(extra="ignore")

    Name: str = ""
    ContentType: str = "application/octet-stream"
    ContentID: Optional[str] = None
    Content: str = ""       # base64-encoded file content

    @field_validator("Name", "ContentType", "Content", mode="before")
    @classmethod
    def none_to_default(cls, v, info):
        return v if v is not None else cls.model_fields[info.field_name].default

    @property
    def is_image(self) -> bool:
        return self.ContentType.lower().startswith("image/")

    @property
    def content_id_key(self) -> Optional[str]:
        """Lowercased Content-ID for case-insensitive matching, None when absent."""
        return self.ContentID.lower() if self.ContentID else None


class EmailMessage(BaseModel):
    """
    Parsed inbound email.

    TextBody/HtmlBody default to "" and Attachments to [] when the provider
    omits them or sends null.
    """
    model_config = ConfigDict(extra="ignore")

    From: str
    Subject: Optional[str] = None
    TextBody: str = ""
    HtmlBody: str = ""
    Attachments: list[Attachment] = []

    @field_validator("TextBody", "HtmlBody", mode="before")
    @classmethod
    def none_to_empty_string(cls, v):
        return v if v is not None else ""

    @field_validator("Attachments", mode="before")
    @classmethod
    def none_to_empty_list(cls, v):
        return v if v is not None else []

    @property
    def body_for_checks(self) -> str:
        """TextBody if non-empty, else HtmlBody, else empty string."""
        return self.TextBody or self.HtmlBody or ""
