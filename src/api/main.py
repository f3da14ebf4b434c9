"""
Story Verification API - Main Application

FastAPI application for running story evaluations and inspecting the
evidence cache.

Run with:
    uvicorn src.api.main:app --reload --port 8000

API Documentation available at:
    - Swagger UI: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from src.logging_utils import configure_safe_logging

# =============================================================================
# File-based logging (survives stdout/pipe issues)
# =============================================================================
# Evaluations run for minutes; the file handler keeps their logs even when
# stdout is gone (detached terminal, broken pipe).
_LOG_FILE = os.getenv("STORY_VERIFICATION_LOG_FILE", "/tmp/story-verification-app.log")
configure_safe_logging(level=logging.INFO, log_file=_LOG_FILE)

# =============================================================================

# Load .env from project root so OPENAI_API_KEY and DATABASE_URL are available
load_dotenv(Path(__file__).parent.parent.parent / ".env")

from src.api.routers import evaluations, evidence_cache, health

logger = logging.getLogger(__name__)


# Create FastAPI application
app = FastAPI(
    title="Story Verification API",
    description="""
    Verifies that a codebase still satisfies natural-language user stories.

    ## Features

    - **Evaluations**: Decompose a story into steps and verify each step
      against a checkout
    - **Evidence Cache**: Inspect and invalidate cached per-step evidence
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Register routers
app.include_router(health.router)
app.include_router(evidence_cache.router)
app.include_router(evaluations.router)


@app.get("/")
def root():
    """Root endpoint with API information."""
    return {
        "name": "Story Verification API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
