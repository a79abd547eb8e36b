"""
FastAPI application entry point.

Run with: uvicorn ogimg.api.main:app
"""
import logging
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

# Load environment variables from .env (optional) before other imports that read env
env_path = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(env_path)

from ogimg.api.routes import preview
from ogimg.settings import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

STARTED_AT = datetime.now(timezone.utc)

# Create app
app = FastAPI(
    title="ogimg",
    description="Social preview card renderer",
    version="0.1.0",
)

app.include_router(preview.router, tags=["preview"])


@app.get("/", response_class=PlainTextResponse)
async def root():
    """Uptime report."""
    now = datetime.now(timezone.utc)
    return f"Server is on since {STARTED_AT.isoformat(timespec='seconds')}. Online: {now - STARTED_AT}\n"


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
