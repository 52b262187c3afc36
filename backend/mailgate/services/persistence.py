"""
Downstream persistence of processed messages.

After the admission decision is made, each message is appended as one row to a
spreadsheet (Google Apps Script web app) and, once that succeeds, the combined
JSON blob is POSTed to a CRUD server.

Persistence is isolated from the admission verdict: save_submission() never
raises and never changes the already-computed result.

Row schema (order-sensitive, exactly 11 fields)
-----------------------------------------------
  0  timestamp             "10/19/2026, 14:03:22" (local time, 24h)
  1  sender
  2  subject
  3  text body
  4  has HTML              "Yes" / "No"
  5  attachment count
  6  text moderation scores (compact JSON)
  7  raw original payload  (compact JSON)
  8  payload too long      "true" / "false" (over 50,000 chars)
  9  combined JSON blob
  10 allowed               "true" / "false"

Environment variables
---------------------
GOOGLE_SCRIPT_URL   Apps Script endpoint accepting {"data": [...row]}.
CRUD_SERVER_URL     Endpoint accepting the combined JSON blob.
"""

import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from mailgate.models.inbound_email import EmailMessage
from mailgate.services.admission import AdmissionResult

logger = logging.getLogger(__name__)

SHEET_ROW_LENGTH = 11
SHEETS_CELL_LIMIT = 50_000
HTTP_TIMEOUT_SECONDS = 30.0

# Control characters except \n and \r
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x09\x0b\x0c\x0e-\x1f\x7f]")


class PersistenceConfigError(Exception):
    """A required downstream endpoint is not configured."""


class DownstreamPersistenceError(Exception):
    """The spreadsheet append or CRUD post failed."""


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def sanitize_for_sheets(value: Any) -> str:
    """Strip control characters and truncate to the spreadsheet cell limit."""
    if not isinstance(value, str):
        return ""
    return _CONTROL_CHARS_RE.sub("", value)[:SHEETS_CELL_LIMIT]


def format_sheet_timestamp(now: datetime) -> str:
    return f"{now.month}/{now.day}/{now.year}, {now:%H:%M:%S}"


def _require_url(name: str) -> str:
    url = os.getenv(name, "").strip()
    if not url:
        raise PersistenceConfigError(f"{name} environment variable is not set")
    return url


def build_combined_data(original: dict, result: AdmissionResult) -> dict:
    moderation = result.moderation.to_public_dict() if result.moderation else None
    return {
        "postmarkJSON": original,
        "moderationResults": moderation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def build_sheet_row(
    email: EmailMessage,
    original: dict,
    result: AdmissionResult,
    combined: dict,
    now: Optional[datetime] = None,
) -> list[str]:
    """Build the 11-field spreadsheet row for one processed message."""
    now = now or datetime.now()
    scores = result.moderation.text.scores if result.moderation else {}
    raw_json = _compact_json(original)

    return [
        format_sheet_timestamp(now),
        sanitize_for_sheets(email.From or "N/A"),
        sanitize_for_sheets(email.Subject or "N/A"),
        sanitize_for_sheets(email.TextBody or "N/A"),
        "Yes" if email.HtmlBody else "No",
        str(len(email.Attachments)),
        sanitize_for_sheets(_compact_json(scores)),
        sanitize_for_sheets(raw_json),
        str(len(raw_json) > SHEETS_CELL_LIMIT).lower(),
        sanitize_for_sheets(_compact_json(combined)),
        str(result.is_allowed).lower(),
    ]


async def append_to_sheet(row: list[str], client: httpx.AsyncClient) -> None:
    """
    POST one row to the Apps Script endpoint.

    Raises:
        PersistenceConfigError: GOOGLE_SCRIPT_URL is not set.
        DownstreamPersistenceError: Wrong row length or the script reported failure.
        httpx.HTTPError: Transport or HTTP status failure.
    """
    url = _require_url("GOOGLE_SCRIPT_URL")

    if len(row) != SHEET_ROW_LENGTH:
        raise DownstreamPersistenceError(
            f"Malformed row length: expected {SHEET_ROW_LENGTH}, got {len(row)}"
        )

    response = await client.post(url, json={"data": row})
    response.raise_for_status()
    try:
        body = response.json()
    except ValueError as exc:
        raise DownstreamPersistenceError("Apps Script returned a non-JSON response") from exc

    logger.info(f"Apps Script response: {body}")
    if body.get("status") != "success":
        raise DownstreamPersistenceError(f"Apps Script reported failure: {body.get('message')}")


async def post_to_crud(combined: dict, client: httpx.AsyncClient) -> None:
    """POST the combined JSON blob to the CRUD server."""
    url = _require_url("CRUD_SERVER_URL")
    response = await client.post(url, json=combined)
    response.raise_for_status()


async def _save(
    email: EmailMessage,
    original: dict,
    result: AdmissionResult,
    client: httpx.AsyncClient,
) -> None:
    combined = build_combined_data(original, result)
    row = build_sheet_row(email, original, result, combined)

    await append_to_sheet(row, client)
    logger.info("Email data saved to spreadsheet")

    # CRUD failures are logged only
    try:
        await post_to_crud(combined, client)
        logger.info("Combined data posted to CRUD server")
    except (PersistenceConfigError, httpx.HTTPError) as e:
        logger.error(f"Error posting combined data to CRUD server: {e}")


async def save_submission(
    email: EmailMessage,
    original: dict,
    result: AdmissionResult,
    client: Optional[httpx.AsyncClient] = None,
) -> bool:
    """
    Persist one processed message. Returns True if the spreadsheet append succeeded.

    Never raises: failures are logged and reported as False.
    """
    try:
        if client is not None:
            await _save(email, original, result, client)
        else:
            # Apps Script answers POSTs with a redirect to the result page
            async with httpx.AsyncClient(
                timeout=HTTP_TIMEOUT_SECONDS, follow_redirects=True
            ) as http:
                await _save(email, original, result, http)
        return True
    except (PersistenceConfigError, DownstreamPersistenceError, httpx.HTTPError) as e:
        logger.error(f"Failed to save email from {email.From!r}: {e}")
        return False
    except Exception as e:
        logger.error(f"Unexpected error saving email from {email.From!r}: {e}", exc_info=True)
        return False
