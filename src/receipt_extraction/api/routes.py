"""
API Routes - All API endpoints
"""

from functools import lru_cache

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from loguru import logger

from receipt_extraction.api.models import (
    AnchorInfo,
    ErrorResponse,
    ParseTextRequest,
    TemplateInfo,
    TemplateListResponse,
)
from receipt_extraction.config import load_config
from receipt_extraction.models import ReceiptParsingResponse
from receipt_extraction.ocr_providers import create_provider
from receipt_extraction.pipeline import ReceiptPipeline
from receipt_extraction.utils import validate_image_filename
from receipt_extraction.vision_adapter import VisionAdapter

# Create router
router = APIRouter()

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB


# ==================== DEPENDENCIES ====================

@lru_cache()
def get_pipeline() -> ReceiptPipeline:
    """Text-only pipeline: registry and extractors, no OCR engine loaded."""
    return ReceiptPipeline(load_config())


@lru_cache()
def get_image_pipeline() -> ReceiptPipeline:
    """Full pipeline; loads the OCR provider on first use."""
    base = get_pipeline()
    adapter = VisionAdapter.from_config(create_provider(base.config), base.config)
    return ReceiptPipeline(base.config, base.registry, adapter)


# ==================== UTILITY FUNCTIONS ====================

def validate_file(file: UploadFile):
    """Validate uploaded file"""
    is_valid, msg = validate_image_filename(file.filename)
    if not is_valid:
        raise HTTPException(400, detail=msg)


# ==================== API ENDPOINTS ====================

@router.post(
    "/receipts/parse",
    response_model=ReceiptParsingResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}},
    tags=["Receipts"],
)
async def parse_receipt(
    file: UploadFile = File(..., description="Receipt image"),
    pipeline: ReceiptPipeline = Depends(get_image_pipeline),
):
    """
    **Parse a receipt image**

    Runs OCR, then extracts store, items, totals, date and payment details.

    **Returns:**
    - `success: true` with a validated receipt, or
    - `success: false` with whatever was extracted and the missing fields
      listed in `errors`

    **Example:**
    ```bash
    curl -X POST http://localhost:8000/api/v1/receipts/parse \\
      -F "file=@receipt.jpg"
    ```
    """
    try:
        validate_file(file)
        content = await file.read()
        if len(content) > MAX_FILE_SIZE:
            raise HTTPException(413, detail=f"File too large: {len(content)} bytes (max {MAX_FILE_SIZE})")

        logger.info(f"Processing: {file.filename} ({len(content)} bytes)")
        return await pipeline.process_image(content)

    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error processing {file.filename}: {e}")
        raise HTTPException(500, str(e))


@router.post(
    "/receipts/parse-text",
    response_model=ReceiptParsingResponse,
    response_model_exclude_none=True,
    tags=["Receipts"],
)
def parse_receipt_text(
    request: ParseTextRequest,
    pipeline: ReceiptPipeline = Depends(get_pipeline),
):
    """
    **Parse already-OCR'd receipt text**

    Same as `/receipts/parse` without the OCR step, for clients that run
    their own OCR.

    **Example:**
    ```bash
    curl -X POST http://localhost:8000/api/v1/receipts/parse-text \\
      -H "Content-Type: application/json" \\
      -d '{"text": "SUPERMART\\n2 x Milk 3.50\\nTOTAL 3.50"}'
    ```
    """
    try:
        return pipeline.process_text(request.text, request.regions)
    except Exception as e:
        logger.exception(f"Error processing text: {e}")
        raise HTTPException(500, str(e))


@router.get("/templates", response_model=TemplateListResponse, tags=["Templates"])
def list_templates(pipeline: ReceiptPipeline = Depends(get_pipeline)):
    """**List registered merchant templates** with their anchor tokens."""
    return TemplateListResponse(
        templates=[
            TemplateInfo(
                id=t.id,
                store_name=t.store_name,
                anchors=[AnchorInfo(token=a.token, weight=a.weight) for a in t.anchors],
            )
            for t in pipeline.registry
        ]
    )
