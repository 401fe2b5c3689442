"""
Tests for the text sanitizer
"""

import html

import pytest

from receipt_extraction.exceptions import SanitizationError
from receipt_extraction.sanitizer import sanitize, sanitize_value


def test_script_tag_removed_with_content():
    """Script elements disappear entirely, surrounding text survives"""
    result = sanitize("<script>alert(1)</script>TOTAL 5.00")
    assert result.text == "TOTAL 5.00"
    assert "alert" not in result.text


def test_markup_tags_stripped():
    result = sanitize('<div class="x"><b>Milk</b> 3.50</div>\n<p>Bread 2.00</p>')
    assert "<" not in result.text and ">" not in result.text
    assert "Milk 3.50" in result.text
    assert "Bread 2.00" in result.text


def test_encoded_markup_is_stripped_too():
    result = sanitize("&lt;script&gt;alert(1)&lt;/script&gt;Milk 3.50")
    assert "script" not in result.text
    assert "Milk 3.50" in result.text


def test_entities_decoded():
    assert sanitize("Fish &amp; Chips 5.00").text == "Fish & Chips 5.00"


def test_whitespace_normalized():
    result = sanitize("  Milk\t\t3.50  \r\n\r\n\r\nBread   2.00 ")
    assert result.text == "Milk 3.50\nBread 2.00"
    assert result.lines == ["Milk 3.50", "Bread 2.00"]


def test_fullwidth_characters_normalized():
    """NFKC folds fullwidth OCR output onto ASCII"""
    assert sanitize("ＴＯＴＡＬ １２.５０").text == "TOTAL 12.50"


def test_control_and_invisible_characters_removed():
    assert sanitize("TO\x00TAL\u200b 5.00\x07").text == "TOTAL 5.00"


def test_split_amount_repaired():
    assert sanitize("Milk 3 . 50").text == "Milk 3.50"
    assert sanitize("TOTAL 12 .50").text == "TOTAL 12.50"


def test_sanitize_is_idempotent():
    samples = [
        "<b>SUPERMART</b>\n2 x Milk 3 . 50\r\nTOTAL&nbsp;9.72",
        "&lt;i&gt;Coffee&lt;/i&gt;\t4.95",
        "ＴＯＴＡＬ １２.５０\x00",
        "",
    ]
    for raw in samples:
        once = sanitize(raw).text
        assert sanitize(once).text == once


def test_utf8_bytes_accepted():
    assert sanitize("Café 3.50".encode("utf-8")).text == "Café 3.50"


def test_invalid_bytes_rejected():
    with pytest.raises(SanitizationError) as exc:
        sanitize(b"TOTAL \xff\xfe 5.00")
    assert exc.value.component == "Sanitizer"


def test_unpaired_surrogate_rejected():
    with pytest.raises(SanitizationError):
        sanitize("TOTAL \ud800 5.00")


def test_truncation_reported():
    result = sanitize("A" * 30, max_length=10)
    assert result.truncated
    assert result.text == "A" * 10
    assert result.warnings == ("Text truncated from 30 to 10 characters",)


def test_no_warning_when_within_limit():
    result = sanitize("TOTAL 5.00", max_length=100)
    assert not result.truncated
    assert result.warnings == ()


def test_empty_input():
    result = sanitize("")
    assert result.text == ""
    assert result.lines == []


def test_sanitize_value_single_line():
    assert sanitize_value("<b>Fresh</b>\nMart") == "Fresh Mart"
    assert sanitize_value(None) is None


@pytest.mark.parametrize("depth", [1, 8, 9, 20])
def test_nested_entity_encoding_fully_neutralized(depth):
    """However many times markup was entity-encoded, no tag comes out"""
    payload = "<script>alert(1)</script>"
    for _ in range(depth):
        payload = html.escape(payload)

    result = sanitize(payload + "TOTAL 5.00")
    assert result.text == "TOTAL 5.00"
    assert sanitize(result.text).text == result.text


def test_nested_encoding_of_plain_tags_is_idempotent():
    payload = "<b>Milk</b>"
    for _ in range(9):
        payload = html.escape(payload)
    once = sanitize(payload + " 3.50").text
    assert once == "Milk 3.50"
    assert sanitize(once).text == once
