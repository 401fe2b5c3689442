"""
API Package
Contains FastAPI routes and models
"""

from receipt_extraction.api.models import (
    ErrorResponse,
    HealthResponse,
    ParseTextRequest,
    TemplateListResponse,
)
from receipt_extraction.api.routes import router

__all__ = [
    'router',
    'ParseTextRequest',
    'TemplateListResponse',
    'HealthResponse',
    'ErrorResponse'
]
