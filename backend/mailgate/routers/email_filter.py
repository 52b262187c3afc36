"""
Email filter router.

Receives inbound email webhooks, runs the admission pipeline and hands the
result to downstream persistence.

Environment variables
---------------------
INBOUND_WEBHOOK_SECRET  When set, requests must carry it in X-Webhook-Secret.
                        When unset the webhook is open.

Endpoints:
  POST /webhook/email       — provider webhook; returns the allow/deny verdict
  POST /api/filter-results  — run the pipeline and return diagnostics (no persistence)
"""

import logging
import os
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse

from mailgate.config import get_filter_config
from mailgate.models.inbound_email import EmailMessage
from mailgate.services.admission import EmailAdmissionPipeline
from mailgate.services.inbound_email_adapter import normalize_postmark, unwrap_postmark
from mailgate.services.persistence import save_submission

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def _verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    """Raise 401 if a webhook secret is configured and the header does not match."""
    expected = os.getenv("INBOUND_WEBHOOK_SECRET", "")
    if not expected:
        return
    if x_webhook_secret != expected:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


@lru_cache(maxsize=1)
def get_pipeline() -> EmailAdmissionPipeline:
    """Process-wide pipeline bound to the process-wide FilterConfig."""
    return EmailAdmissionPipeline(get_filter_config())


def _parse_email(payload: dict) -> EmailMessage:
    try:
        return normalize_postmark(payload)
    except ValueError as exc:
        logger.error(f"Rejected malformed webhook payload: {exc}")
        raise HTTPException(status_code=400, detail=str(exc))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/webhook/email")
async def receive_email_webhook(
    payload: dict,
    _: None = Depends(_verify_webhook_secret),
    pipeline: EmailAdmissionPipeline = Depends(get_pipeline),
):
    """
    Postmark inbound webhook receiver.

    Returns 200 with the verdict whether the message is allowed or blocked.
    Persistence failures are reported in ``savedToSheets`` and never change
    ``allowed``.
    """
    email = _parse_email(payload)
    logger.info(
        f"Webhook received: from={email.From!r}, text={len(email.TextBody)}, "
        f"html={len(email.HtmlBody)}, attachments={len(email.Attachments)}"
    )

    try:
        result = await pipeline.evaluate(email)
    except Exception as exc:
        logger.error(f"Webhook handler error: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    saved = await save_submission(email, unwrap_postmark(payload), result)

    logger.info(
        f"Email {'allowed' if result.is_allowed else 'blocked'}: from={email.From!r}, "
        f"denied_by={result.denied_by.value if result.denied_by else None}, saved={saved}"
    )
    return {"success": True, "allowed": result.is_allowed, "savedToSheets": saved}


@router.post("/api/filter-results")
async def preview_filter_results(
    payload: dict,
    pipeline: EmailAdmissionPipeline = Depends(get_pipeline),
) -> dict:
    """Run the pipeline on a payload and return the full diagnostic view."""
    email = _parse_email(payload)
    result = await pipeline.evaluate(email)
    return {
        "filterResults": result.to_diagnostics(pipeline.config),
        "email": email.model_dump(),
    }
