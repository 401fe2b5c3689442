"""
Data Models
===========
Pydantic records passed between the pipeline stages, plus the outbound
ReceiptParsingResponse.

Python attributes are snake_case; serialized JSON uses camelCase aliases
(rawText, unitPrice, cardLast4 ...) because that is the shape the front-end
consumes.

Stage flow
----------
  RawOcrResult  →  SanitizedText  →  ExtractedReceipt  →  Receipt
                                                      ↘  ReceiptParsingResponse
"""

from typing import Generic, List, Literal, Optional, Tuple, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")

FieldSource = Literal["template", "generic", "default"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── OCR ──────────────────────────────────────────────────────────────────────

class BoundingBox(CamelModel):
    x: float      = Field(..., ge=0, description="Left edge in pixels")
    y: float      = Field(..., ge=0, description="Top edge in pixels")
    width: float  = Field(..., ge=0)
    height: float = Field(..., ge=0)


class OcrRegion(CamelModel):
    """One recognised text region with its OCR confidence."""
    text: str = Field(..., description="Recognised text")
    confidence: float = Field(..., ge=0, le=1, description="OCR confidence (0-1)")
    bounding_box: Optional[BoundingBox] = None


class RawOcrResult(CamelModel):
    """Provider output. Never mutated after the Vision Adapter returns it."""
    model_config = ConfigDict(frozen=True)

    text: str = ""
    regions: Tuple[OcrRegion, ...] = ()
    confidence: Optional[float] = Field(None, ge=0, le=1)
    language: Optional[str] = None


class SanitizedText(CamelModel):
    """Normalized, markup-free OCR text."""
    model_config = ConfigDict(frozen=True)

    text: str
    warnings: Tuple[str, ...] = ()
    truncated: bool = False

    @property
    def lines(self) -> List[str]:
        return [line for line in self.text.split("\n") if line]


# ─── Extraction (partial) ─────────────────────────────────────────────────────

class ExtractedField(CamelModel, Generic[T]):
    """A value plus how much we trust it and where it came from."""
    value: T
    confidence: float = Field(..., ge=0, le=1)
    source: FieldSource


class StoreCandidate(CamelModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    tax_id: Optional[str] = None


class ItemCandidate(CamelModel):
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    unit_price: Optional[float] = Field(None, ge=0)
    quantity_explicit: bool = False
    category: Optional[str] = None
    line_index: int = Field(0, ge=0, description="Source line in the sanitized text")


class ExtractedTotals(CamelModel):
    subtotal: Optional[ExtractedField[float]] = None
    tax: Optional[ExtractedField[float]] = None
    total: Optional[ExtractedField[float]] = None
    tip: Optional[ExtractedField[float]] = None
    discount: Optional[ExtractedField[float]] = None

    def present(self) -> List[ExtractedField[float]]:
        return [f for f in (self.subtotal, self.tax, self.total, self.tip, self.discount)
                if f is not None]


class PaymentCandidate(CamelModel):
    method: str = Field(..., description="CASH | CREDIT | DEBIT | DIGITAL | OTHER")
    card_type: Optional[str] = None
    card_last4: Optional[str] = Field(None, pattern=r"^\d{4}$")


class ExtractedReceipt(CamelModel):
    """Everything the extractor found, including partial results."""
    template_id: str = "generic"
    store: Optional[ExtractedField[StoreCandidate]] = None
    date: Optional[ExtractedField[str]] = Field(None, description="ISO date YYYY-MM-DD")
    items: List[ExtractedField[ItemCandidate]] = Field(default_factory=list)
    totals: ExtractedTotals = Field(default_factory=ExtractedTotals)
    payment: Optional[ExtractedField[PaymentCandidate]] = None


# ─── Validated receipt ────────────────────────────────────────────────────────

class Store(CamelModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    tax_id: Optional[str] = None


class ReceiptItem(CamelModel):
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    unit_price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    tax_rate: Optional[float] = Field(None, ge=0)
    confidence: float = Field(..., ge=0, le=1)


class ReceiptTotals(CamelModel):
    subtotal: float = Field(..., ge=0)
    tax: float = Field(0.0, ge=0)
    total: float = Field(..., ge=0)
    tip: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0)


class PaymentInfo(CamelModel):
    method: str
    card_type: Optional[str] = None
    card_last4: Optional[str] = None


class Receipt(CamelModel):
    store: Store
    items: List[ReceiptItem] = Field(..., min_length=1)
    totals: ReceiptTotals
    date: Optional[str] = None
    payment_info: Optional[PaymentInfo] = None
    confidence: float = Field(..., ge=0, le=1)
    raw_text: str


class ReceiptParsingResponse(CamelModel):
    """The only artifact that leaves the pipeline."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "data": {
                    "store": {"name": "SUPERMART"},
                    "items": [
                        {"name": "Milk", "price": 3.5, "quantity": 2,
                         "unitPrice": 1.75, "category": "Dairy", "confidence": 0.85},
                        {"name": "Bread", "price": 2.0, "quantity": 1,
                         "category": "Bakery", "confidence": 0.77},
                    ],
                    "totals": {"subtotal": 9.0, "tax": 0.72, "total": 9.72},
                    "confidence": 0.84,
                    "rawText": "SUPERMART\n2 x Milk 3.50\n...",
                },
                "rawText": "SUPERMART\n2 x Milk 3.50\n...",
                "confidence": 0.84,
                "errors": [],
            }
        }
    )

    success: bool
    data: Optional[Union[Receipt, ExtractedReceipt]] = None
    raw_text: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0, le=1)
    errors: List[str] = Field(default_factory=list)
