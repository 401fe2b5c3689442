"""
Receipt Extraction API - Main Application
FastAPI application for structured receipt extraction

Run with: python main.py
Access API docs at: http://localhost:8000/docs
"""

import sys
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from receipt_extraction import __version__
from receipt_extraction.api.models import HealthResponse
from receipt_extraction.api.routes import router
from receipt_extraction.config import load_config
from receipt_extraction.utils import setup_logging

config = load_config()
setup_logging(config['logging'].get('file'), config['logging'].get('level', 'INFO'))

# Create FastAPI app
app = FastAPI(
    title="Receipt Extraction API",
    description="Extract store, items, totals, date and payment details from receipt images",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Receipt Extraction API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    return HealthResponse(version=__version__)


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Receipt Extraction API on http://0.0.0.0:8000")
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
