"""
Receipt Extraction
Turns OCR text from photographed receipts into structured, confidence-scored
receipt records.
"""

from receipt_extraction.models import Receipt, ReceiptParsingResponse
from receipt_extraction.pipeline import ReceiptPipeline

__version__ = "1.0.0"

__all__ = ["Receipt", "ReceiptParsingResponse", "ReceiptPipeline", "__version__"]
