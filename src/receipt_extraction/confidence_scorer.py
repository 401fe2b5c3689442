"""
Confidence Scorer
=================
Folds per-field confidences into one receipt-level score and checks that
the totals add up.

Weights (all configurable under ``scoring``)
-------
  store   1
  item    price / receipt total      larger items matter more
  totals  2                          mean of the totals fields present,
                                     halved when the total itself is missing

Reconciliation
--------------
  |subtotal + tax − discount + tip − total| ≤ tolerance

Tip and discount count as 0 when absent. The check needs both subtotal and
total. A mismatch multiplies the aggregate by ``reconciliation_penalty`` and
adds a warning; it never blocks assembly.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Tuple

from loguru import logger

from receipt_extraction.config import default_config
from receipt_extraction.models import ExtractedField, ExtractedReceipt, ExtractedTotals
from receipt_extraction.utils import clamp


@dataclass(frozen=True)
class ScoreResult:
    confidence: float
    store_confidence: float
    item_confidences: Tuple[float, ...]
    totals_confidence: float
    reconciled: Optional[bool]
    warnings: Tuple[str, ...] = ()


def _dec(field: Optional[ExtractedField]) -> Decimal:
    return Decimal(str(field.value)) if field is not None else Decimal("0")


class ConfidenceScorer:

    def __init__(self, config: Optional[Dict] = None):
        scoring = (config or default_config())['scoring']
        self.store_weight = float(scoring['store_weight'])
        self.totals_weight = float(scoring['totals_weight'])
        self.tolerance = Decimal(str(scoring['reconciliation_tolerance']))
        self.reconciliation_penalty = float(scoring['reconciliation_penalty'])
        self.missing_total_factor = float(scoring['missing_total_factor'])

    def score(self, extracted: ExtractedReceipt) -> ScoreResult:
        """Aggregate confidence plus reconciliation outcome for one receipt."""
        store_conf = extracted.store.confidence if extracted.store else 0.0
        totals_conf = self.totals_confidence(extracted.totals)
        item_confs = tuple(f.confidence for f in extracted.items)

        prices = [f.value.price for f in extracted.items]
        total = extracted.totals.total
        reference = total.value if total is not None and total.value > 0 else sum(prices)
        if reference > 0:
            item_weights = [p / reference for p in prices]
        else:
            item_weights = [1.0 / len(prices)] * len(prices) if prices else []

        weighted = (
            self.store_weight * store_conf
            + sum(w * c for w, c in zip(item_weights, item_confs))
            + self.totals_weight * totals_conf
        )
        weight_sum = self.store_weight + sum(item_weights) + self.totals_weight
        aggregate = weighted / weight_sum if weight_sum > 0 else 0.0

        warnings = []
        reconciled = self.reconcile(extracted.totals)
        if reconciled is False:
            aggregate *= self.reconciliation_penalty
            warnings.append(self._mismatch_message(extracted.totals))
            logger.warning(f"[ConfidenceScorer] {warnings[-1]}")

        self._check_item_sum(extracted)

        aggregate = round(clamp(aggregate), 4)
        logger.debug(
            f"[ConfidenceScorer] store={store_conf:.2f} totals={totals_conf:.2f} "
            f"items={len(item_confs)} reconciled={reconciled} → {aggregate:.2f}"
        )
        return ScoreResult(
            confidence=aggregate,
            store_confidence=store_conf,
            item_confidences=item_confs,
            totals_confidence=totals_conf,
            reconciled=reconciled,
            warnings=tuple(warnings),
        )

    def totals_confidence(self, totals: ExtractedTotals) -> float:
        present = totals.present()
        if not present:
            return 0.0
        conf = sum(f.confidence for f in present) / len(present)
        if totals.total is None:
            conf *= self.missing_total_factor
        return round(conf, 4)

    def reconcile(self, totals: ExtractedTotals) -> Optional[bool]:
        """True/False when checkable, None when subtotal or total is missing."""
        if totals.subtotal is None or totals.total is None:
            return None
        return abs(self._difference(totals)) <= self.tolerance

    @staticmethod
    def _difference(totals: ExtractedTotals) -> Decimal:
        expected = (_dec(totals.subtotal) + _dec(totals.tax)
                    - _dec(totals.discount) + _dec(totals.tip))
        return expected - _dec(totals.total)

    def _mismatch_message(self, totals: ExtractedTotals) -> str:
        expected = _dec(totals.total) + self._difference(totals)
        return (
            f"Totals do not reconcile: subtotal {_dec(totals.subtotal)} + tax {_dec(totals.tax)}"
            f" - discount {_dec(totals.discount)} + tip {_dec(totals.tip)} = {expected},"
            f" but total is {_dec(totals.total)}"
        )

    @staticmethod
    def _check_item_sum(extracted: ExtractedReceipt):
        if not extracted.items or extracted.totals.subtotal is None:
            return
        items_sum = sum(Decimal(str(f.value.price)) for f in extracted.items)
        subtotal = _dec(extracted.totals.subtotal)
        if subtotal > 0 and abs(items_sum - subtotal) > max(Decimal("1"), subtotal * Decimal("0.05")):
            logger.info(
                f"[ConfidenceScorer] Item prices sum to {items_sum}, subtotal reads {subtotal}; "
                f"some item lines were probably not recognised"
            )
