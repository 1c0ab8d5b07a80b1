"""Context Engine: FastAPI application entry point."""

import logging

from fastapi import FastAPI

from context_engine.config.settings import get_settings
from context_engine.context.routes import router as context_router
from context_engine.middleware.error_handler import register_error_handlers

logging.basicConfig(
    level=get_settings().LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Conversation Context Engine",
    description=(
        "Builds bounded LLM context windows for follow-up conversations about a market gap analysis.\n\n"
        "## Features\n"
        "- Token budget partitioning across system prompt, analysis, history and query\n"
        "- Tiered history summarization (recent verbatim, middle digest, archive)\n"
        "- Analysis context reduction with TTL caching\n"
        "- Smart head/tail truncation and a compression cascade\n"
        "- Lexical near-duplicate query detection"
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Context", "description": "Context window building, deduplication and cache control"},
    ],
)

# --- Error handlers ---
register_error_handlers(app)

# --- Routes ---
app.include_router(context_router)


@app.get("/health", tags=["Health"], summary="Health check", description="Returns OK if the service is running.")
async def health_check():
    return {"status": "ok"}
