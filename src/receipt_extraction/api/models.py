"""
API Models - Request and Response schemas
Using Pydantic for automatic validation and documentation

Receipt parsing endpoints return ReceiptParsingResponse
(receipt_extraction.models) directly.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from receipt_extraction.models import CamelModel, OcrRegion


# ─── Requests ─────────────────────────────────────────────────────────────────

class ParseTextRequest(CamelModel):
    """Already-OCR'd receipt text."""
    text: str = Field(..., description="Receipt text, one line per row")
    regions: List[OcrRegion] = Field(default_factory=list, description="Optional OCR regions")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "text": "SUPERMART\n2 x Milk 3.50\nBread 2.00\nSUBTOTAL 9.00\nTAX 0.72\nTOTAL 9.72",
                "regions": [],
            }
        }
    )


# ─── Templates ────────────────────────────────────────────────────────────────

class AnchorInfo(BaseModel):
    token: str
    weight: float


class TemplateInfo(CamelModel):
    id: str
    store_name: str
    anchors: List[AnchorInfo]


class TemplateListResponse(BaseModel):
    status: str = Field("success", description="Response status")
    templates: List[TemplateInfo]


# ─── Health & Error Models ────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    """Health check response."""
    status: str  = Field("healthy",                    description="Health status")
    service: str = Field("receipt-extraction-api",     description="Service name")
    version: str = Field("1.0.0",                      description="API version")


class ErrorResponse(BaseModel):
    """Error response."""
    status: str           = Field("error", description="Response status")
    error: str            = Field(...,     description="Error type")
    message: str          = Field(...,     description="Error message")
    detail: Optional[str] = Field(None,    description="Additional details")
