"""
Receipt Assembler
=================
Final stage: validates mandatory fields, fills safe defaults and builds the
ReceiptParsingResponse.

Outcomes
--------
  no items, no total        success=False  data=ExtractedReceipt  errors name both
  total but no items        success=False  data=ExtractedReceipt  (a Receipt needs an item)
  items, no totals block    subtotal = total = Σ item prices, tax 0, penalized
  items, subtotal, no total total = subtotal + tax − discount + tip, penalized
  computed total <= 0       subtotal = total = Σ item prices, penalized
  subtotal + total, no tax  tax = total − subtotal − tip + discount
  items + positive total    success=True   data=Receipt

A missing store becomes the configured placeholder with source "default",
in partial results too. Totals that look wrong (total below subtotal with no
discount, tax rate outside ``tax_rate_range``) only add warnings.

Warnings from earlier stages (truncation, reconciliation) travel in
``errors`` alongside the result.
"""

from typing import Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from receipt_extraction.confidence_scorer import ScoreResult
from receipt_extraction.config import default_config
from receipt_extraction.models import (
    ExtractedField,
    ExtractedReceipt,
    PaymentInfo,
    Receipt,
    ReceiptItem,
    ReceiptParsingResponse,
    ReceiptTotals,
    SanitizedText,
    Store,
    StoreCandidate,
)
from receipt_extraction.sanitizer import sanitize_value
from receipt_extraction.utils import clamp

MISSING_ITEMS = "No items found in receipt"
MISSING_TOTAL = "Receipt total is missing"


class ReceiptAssembler:

    def __init__(self, config: Optional[Dict] = None):
        assembly = (config or default_config())['assembly']
        self.missing_totals_penalty = float(assembly['missing_totals_penalty'])
        self.default_store_name = str(assembly['default_store_name'])
        self.min_tax_rate, self.max_tax_rate = (float(r) for r in assembly['tax_rate_range'])

    @staticmethod
    def failure(errors: List[str], raw_text: Optional[str] = None) -> ReceiptParsingResponse:
        """Fatal response: nothing usable was produced."""
        return ReceiptParsingResponse(success=False, raw_text=raw_text, errors=list(errors))

    def assemble(
        self,
        extracted: ExtractedReceipt,
        score: ScoreResult,
        sanitized: SanitizedText,
    ) -> ReceiptParsingResponse:
        warnings: List[str] = list(sanitized.warnings) + list(score.warnings)
        confidence = score.confidence
        extracted = self._with_default_store(extracted)
        total_field = extracted.totals.total
        has_total = total_field is not None and total_field.value > 0

        if not extracted.items:
            errors = [MISSING_ITEMS] + ([] if has_total else [MISSING_TOTAL])
            logger.info(f"[ReceiptAssembler] Partial result: {errors}")
            return ReceiptParsingResponse(
                success=False,
                data=extracted,
                raw_text=sanitized.text,
                confidence=confidence,
                errors=errors + warnings,
            )

        totals, penalized = self._totals(extracted, warnings)
        if penalized:
            confidence *= self.missing_totals_penalty
        if totals is None:
            return ReceiptParsingResponse(
                success=False,
                data=extracted,
                raw_text=sanitized.text,
                confidence=confidence,
                errors=[MISSING_TOTAL] + warnings,
            )

        try:
            receipt = Receipt(
                store=self._store(extracted, warnings),
                items=[
                    ReceiptItem(
                        name=sanitize_value(f.value.name) or "Unknown Item",
                        price=f.value.price,
                        quantity=f.value.quantity,
                        unit_price=f.value.unit_price,
                        category=f.value.category,
                        confidence=f.confidence,
                    )
                    for f in extracted.items
                ],
                totals=totals,
                date=extracted.date.value if extracted.date else None,
                payment_info=self._payment(extracted),
                confidence=round(clamp(confidence), 4),
                raw_text=sanitized.text,
            )
        except ValidationError as e:
            logger.error(f"[ReceiptAssembler] Receipt failed validation: {e}")
            return ReceiptParsingResponse(
                success=False,
                data=extracted,
                raw_text=sanitized.text,
                confidence=round(clamp(confidence), 4),
                errors=[f"Receipt failed validation: {e.error_count()} error(s)"] + warnings,
            )

        logger.info(
            f"[ReceiptAssembler] Receipt assembled: store={receipt.store.name!r} "
            f"items={len(receipt.items)} total={receipt.totals.total:.2f} "
            f"confidence={receipt.confidence:.2f} warnings={len(warnings)}"
        )
        return ReceiptParsingResponse(
            success=True,
            data=receipt,
            raw_text=sanitized.text,
            confidence=receipt.confidence,
            errors=warnings,
        )

    # ── Defaults ──────────────────────────────────────────────────────────────

    def _totals(self, extracted: ExtractedReceipt, warnings: List[str]):
        """Returns (ReceiptTotals or None, penalized)."""
        t = extracted.totals
        items_sum = round(sum(f.value.price for f in extracted.items), 2)
        tax = t.tax.value if t.tax else 0.0
        tip = t.tip.value if t.tip else None
        discount = t.discount.value if t.discount else None
        adjust = (tip or 0.0) - (discount or 0.0)
        penalized = False

        if not t.present():
            subtotal = total = items_sum
            tax = 0.0
            penalized = True
            warnings.append("Totals not found; subtotal and total computed from item prices")
        elif t.total is not None and t.total.value > 0:
            total = t.total.value
            if t.subtotal is not None:
                subtotal = t.subtotal.value
                derived_tax = round(total - subtotal - adjust, 2)
                if t.tax is None and derived_tax > 0:
                    tax = derived_tax
                    warnings.append("Tax not found; derived from total and subtotal")
            else:
                subtotal = round(total - tax - adjust, 2)
                if subtotal < 0:
                    subtotal = items_sum
                warnings.append("Subtotal not found; derived from total")
        else:
            subtotal = t.subtotal.value if t.subtotal is not None and t.subtotal.value > 0 else items_sum
            total = round(subtotal + tax + adjust, 2)
            penalized = True
            warnings.append("Total not found; computed from subtotal, tax, discount and tip")

        if total <= 0 < items_sum:
            subtotal = total = items_sum
            tax = 0.0
            tip = discount = None
            penalized = True
            warnings.append("Total not positive; subtotal and total computed from item prices")
        if total <= 0:
            return None, penalized

        if subtotal > 0:
            if total < subtotal and not discount:
                warnings.append("Total is less than subtotal without a discount")
            if tax > 0:
                rate = tax / subtotal * 100
                if rate < self.min_tax_rate or rate > self.max_tax_rate:
                    warnings.append(f"Unusual tax rate: {rate:.1f}%")
        return ReceiptTotals(subtotal=subtotal, tax=tax, total=total, tip=tip, discount=discount), penalized

    def _with_default_store(self, extracted: ExtractedReceipt) -> ExtractedReceipt:
        """Put the placeholder store in place of a missing or blank one."""
        if extracted.store is not None and sanitize_value(extracted.store.value.name):
            return extracted
        placeholder = ExtractedField[StoreCandidate](
            value=StoreCandidate(name=self.default_store_name),
            confidence=0.0,
            source="default",
        )
        return extracted.model_copy(update={"store": placeholder})

    @staticmethod
    def _store(extracted: ExtractedReceipt, warnings: List[str]) -> Store:
        candidate = extracted.store.value
        if extracted.store.source == "default":
            warnings.append("Store name not found")
            return Store(name=candidate.name)
        return Store(
            name=sanitize_value(candidate.name),
            address=sanitize_value(candidate.address),
            phone=sanitize_value(candidate.phone),
            website=sanitize_value(candidate.website),
            tax_id=sanitize_value(candidate.tax_id),
        )

    @staticmethod
    def _payment(extracted: ExtractedReceipt) -> Optional[PaymentInfo]:
        if not extracted.payment:
            return None
        p = extracted.payment.value
        return PaymentInfo(method=p.method, card_type=p.card_type, card_last4=p.card_last4)
