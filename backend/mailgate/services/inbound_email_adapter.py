"""
Inbound email adapter service.

Normalizes the Postmark inbound webhook payload into an EmailMessage.

Postmark field assumptions
--------------------------
Postmark posts a JSON body with PascalCase keys; some setups forward it
wrapped in a ``MessageDetails`` object. The fields used here are:

  From          str   sender address
  Subject       str   subject line
  TextBody      str   plain-text body (may be absent)
  HtmlBody      str   HTML body (may be absent)
  Attachments   list  each item has:
                        Name         str  original filename
                        Content      str  base64-encoded file bytes
                        ContentType  str  MIME type
                        ContentID    str  Content-ID (inline parts only)

All other fields are ignored.
"""

from typing import Any

from pydantic import ValidationError

from mailgate.models.inbound_email import EmailMessage


def unwrap_postmark(payload: Any) -> dict:
    """Return the message object, unwrapping ``MessageDetails`` if present."""
    if not isinstance(payload, dict):
        raise ValueError("Webhook payload must be a JSON object")
    details = payload.get("MessageDetails")
    return details if isinstance(details, dict) else payload


def normalize_postmark(payload: Any) -> EmailMessage:
    """
    Convert a Postmark inbound webhook payload to an EmailMessage.

    Raises ValueError when the payload is not an object or has no sender.
    """
    message = unwrap_postmark(payload)
    if not message.get("From"):
        raise ValueError("Webhook payload has no 'From' address")

    try:
        return EmailMessage.model_validate(message)
    except ValidationError as exc:
        raise ValueError(f"Malformed webhook payload: {exc.error_count()} invalid field(s)") from exc
