"""
Sanitizer
=========
Turns raw OCR text into normalized, markup-free text that is safe to place
into a receipt record.

Passes (repeated until the text stops changing, however deeply it is encoded)
------
  1  Unicode NFKC, line endings → LF
  2  control / format / private-use characters removed
  3  markup stripped with nh3 (empty allow-list, script/style content dropped),
     entities decoded; encoded markup is caught on the next round
  4  whitespace collapsed per line, empty lines dropped
  5  stray spaces inside amounts repaired   "3 . 50" → "3.50"

Truncation to ``max_length`` runs last and is reported as a warning.
"""

import html
import re
import unicodedata
from typing import List, Optional, Union

import nh3
from loguru import logger

from receipt_extraction.exceptions import SanitizationError
from receipt_extraction.models import SanitizedText

DEFAULT_MAX_LENGTH = 20000
_MAX_ROUNDS = 8

_DROP_CATEGORIES = {"Cc", "Cf", "Co", "Cs"}
_INLINE_SPACE = re.compile(r'[^\S\n]+')
_SPLIT_AMOUNT = re.compile(r'(?<=\d)(?: +\. *| *\. +| +, *)(?=\d{2}(?!\d))')


def _decode(raw: Union[str, bytes]) -> str:
    if isinstance(raw, (bytes, bytearray)):
        try:
            return bytes(raw).decode("utf-8", errors="strict")
        except UnicodeDecodeError as e:
            raise SanitizationError("Text is not valid UTF-8", e)
    try:
        raw.encode("utf-8", errors="strict")
    except UnicodeEncodeError as e:
        raise SanitizationError("Text contains unpaired surrogate characters", e)
    return raw


def _strip_controls(text: str) -> str:
    return "".join(
        ch for ch in text
        if ch == "\n" or unicodedata.category(ch) not in _DROP_CATEGORIES
    )


def _strip_markup(text: str) -> str:
    cleaned = nh3.clean(
        text,
        tags=set(),
        clean_content_tags={"script", "style"},
        attributes={},
        strip_comments=True,
    )
    return html.unescape(cleaned)


def _normalize_lines(text: str) -> List[str]:
    lines = []
    for line in text.split("\n"):
        line = _INLINE_SPACE.sub(" ", line).strip()
        line = _SPLIT_AMOUNT.sub(lambda m: m.group(0).strip(), line)
        if line:
            lines.append(line)
    return lines


def _clean_once(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    text = "\n".join(text.splitlines())
    text = text.replace("\t", " ")
    text = _strip_controls(text)
    text = _strip_markup(text)
    text = _strip_controls(text)
    return "\n".join(_normalize_lines(text))


def _clean(text: str) -> str:
    # After the first round every change shortens the text, so this bound
    # covers any depth of entity encoding.
    for _ in range(_MAX_ROUNDS + len(text)):
        cleaned = _clean_once(text)
        if cleaned == text:
            return cleaned
        text = cleaned
    logger.warning("[Sanitizer] Text did not settle; dropping angle brackets")
    return text.replace("<", "").replace(">", "")


def sanitize(raw: Union[str, bytes], max_length: Optional[int] = DEFAULT_MAX_LENGTH) -> SanitizedText:
    """
    Normalize and neutralize OCR text.

    Args:
        raw:        OCR text; bytes are decoded as strict UTF-8
        max_length: Character cap, None for unlimited

    Returns:
        SanitizedText with any truncation warning attached

    Raises:
        SanitizationError: input cannot be decoded
    """
    text = _clean(_decode(raw))
    warnings = []
    truncated = False

    if max_length is not None and len(text) > max_length:
        original_length = len(text)
        text = _clean(text[:max_length])
        truncated = True
        warnings.append(
            f"Text truncated from {original_length} to {len(text)} characters"
        )
        logger.warning(f"[Sanitizer] {warnings[-1]}")

    return SanitizedText(text=text, warnings=tuple(warnings), truncated=truncated)


def sanitize_value(value: Optional[str]) -> Optional[str]:
    """Clean a single field value (store name, item name ...) onto one line."""
    if value is None:
        return None
    return " ".join(_clean(_decode(value)).split("\n"))
