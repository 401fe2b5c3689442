"""
Tests for receipt assembly and defaults
"""

import pytest

from receipt_extraction.confidence_scorer import ConfidenceScorer
from receipt_extraction.models import (
    ExtractedField,
    ExtractedReceipt,
    ExtractedTotals,
    ItemCandidate,
    Receipt,
    SanitizedText,
    StoreCandidate,
)
from receipt_extraction.receipt_assembler import MISSING_ITEMS, MISSING_TOTAL, ReceiptAssembler


def _f(value, confidence=0.8):
    return ExtractedField(value=value, confidence=confidence, source="generic")


def _receipt(items=(("Tea", 2.0), ("Cake", 3.0)), store="Cafe", **totals):
    return ExtractedReceipt(
        store=_f(StoreCandidate(name=store)) if store else None,
        items=[_f(ItemCandidate(name=name, price=price)) for name, price in items],
        totals=ExtractedTotals(**{k: _f(v) for k, v in totals.items()}),
    )


@pytest.fixture
def scorer(config):
    return ConfidenceScorer(config)


@pytest.fixture
def assembler(config):
    return ReceiptAssembler(config)


@pytest.fixture
def assemble(scorer, assembler):
    def _assemble(extracted, text="raw", warnings=()):
        score = scorer.score(extracted)
        return assembler.assemble(extracted, score, SanitizedText(text=text, warnings=tuple(warnings))), score
    return _assemble


def test_complete_receipt(assemble):
    response, score = assemble(_receipt(subtotal=5.0, tax=0.5, total=5.5))
    assert response.success
    assert isinstance(response.data, Receipt)
    assert response.data.totals.total == 5.5
    assert response.data.store.name == "Cafe"
    assert response.confidence == score.confidence
    assert response.errors == []


def test_totals_computed_from_items(assemble):
    response, score = assemble(_receipt())
    totals = response.data.totals
    assert response.success
    assert (totals.subtotal, totals.tax, totals.total) == (5.0, 0.0, 5.0)
    assert response.confidence == pytest.approx(score.confidence * 0.8, abs=1e-4)
    assert any("Totals not found" in e for e in response.errors)


def test_total_computed_from_subtotal(assemble):
    response, _ = assemble(_receipt(subtotal=5.0, tax=0.4, discount=1.0))
    assert response.data.totals.total == 4.4
    assert any("Total not found" in e for e in response.errors)


def test_subtotal_derived_from_total(assemble):
    response, _ = assemble(_receipt(tax=0.5, total=5.5))
    assert response.data.totals.subtotal == 5.0
    assert any("Subtotal not found" in e for e in response.errors)


def test_default_store_name(assemble):
    response, _ = assemble(_receipt(store=None, total=5.0))
    assert response.success
    assert response.data.store.name == "Unknown Store"
    assert "Store name not found" in response.errors


def test_store_name_sanitized(assemble):
    response, _ = assemble(_receipt(store="<b>Cafe</b> Luna", total=5.0))
    assert response.data.store.name == "Cafe Luna"


def test_no_items_is_partial_failure(assemble):
    response, _ = assemble(_receipt(items=(), total=5.0))
    assert not response.success
    assert isinstance(response.data, ExtractedReceipt)
    assert response.data.totals.total.value == 5.0
    assert response.errors == [MISSING_ITEMS]


def test_nothing_found(assemble):
    response, _ = assemble(ExtractedReceipt(), text="")
    assert not response.success
    assert MISSING_ITEMS in response.errors
    assert MISSING_TOTAL in response.errors


def test_earlier_warnings_carried(assemble):
    response, _ = assemble(
        _receipt(subtotal=5.0, total=9.0),
        warnings=["Text truncated from 30 to 10 characters"],
    )
    assert response.success
    assert response.errors[0] == "Text truncated from 30 to 10 characters"
    assert any(e.startswith("Totals do not reconcile") for e in response.errors)


def test_failure_response():
    response = ReceiptAssembler.failure(["OCR failed: timeout"])
    assert not response.success
    assert response.data is None
    assert response.errors == ["OCR failed: timeout"]


def test_non_positive_total_recomputed_from_items(assemble):
    response, _ = assemble(_receipt(subtotal=1.0, discount=5.0))
    assert response.success
    assert response.data.totals.total == 5.0
    assert any("Total not positive" in e for e in response.errors)


def test_tax_derived_from_subtotal_and_total(assemble):
    response, _ = assemble(_receipt(subtotal=5.0, total=5.4))
    assert response.data.totals.tax == 0.4
    assert "Tax not found; derived from total and subtotal" in response.errors


def test_tax_derivation_accounts_for_tip_and_discount(assemble):
    response, _ = assemble(_receipt(subtotal=10.0, tip=2.0, discount=1.0, total=11.8))
    assert response.data.totals.tax == 0.8


def test_total_below_subtotal_flagged(assemble):
    response, _ = assemble(_receipt(subtotal=5.0, tax=0.4, total=4.0))
    assert response.success
    assert "Total is less than subtotal without a discount" in response.errors


def test_discount_explains_low_total(assemble):
    response, _ = assemble(_receipt(subtotal=5.0, tax=0.4, discount=1.0, total=4.4))
    assert not any("less than subtotal" in e for e in response.errors)


def test_unusual_tax_rate_flagged(assemble):
    high, _ = assemble(_receipt(subtotal=5.0, tax=2.0, total=7.0))
    low, _ = assemble(_receipt(subtotal=100.0, tax=0.5, total=100.5))
    assert "Unusual tax rate: 40.0%" in high.errors
    assert "Unusual tax rate: 0.5%" in low.errors


def test_default_store_tagged_in_partial_result(assemble):
    response, _ = assemble(_receipt(items=(), store=None, total=5.0))
    store = response.data.store
    assert store.source == "default"
    assert store.value.name == "Unknown Store"
    assert store.confidence == 0.0


def test_found_store_keeps_its_source(assemble):
    response, _ = assemble(_receipt(items=(), total=5.0))
    assert response.data.store.source == "generic"
