"""
Mailgate Backend API
FastAPI application for inbound email admission filtering.
"""

import logging

from fastapi import FastAPI

from mailgate.routers import email_filter

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Mailgate API",
    description="Inbound email admission filter with content moderation",
    version="0.1.0",
)

app.include_router(email_filter.router, tags=["email-filter"])


@app.get("/")
async def root():
    return {"message": "Mailgate API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}
