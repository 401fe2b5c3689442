"""
Utility functions for receipt extraction
"""

import os
import re
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from loguru import logger

ALLOWED_IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.webp', '.bmp', '.tiff')


# ─── Amounts ──────────────────────────────────────────────────────────────────

# Currency amount with exactly two decimals. O/o, I/l inside the digits are
# common OCR confusions and are repaired by parse_amount().
_AMOUNT = re.compile(
    r'(?<![\w.,])'
    r'(?P<neg>-)?'
    r'(?:[$€£¥₹]\s?)?'
    r'(?P<num>(?=[\dOoIl,]*\d)[\dOoIl]{1,3}(?:,[\dOoIl]{3})*(?:[.,][\dOoIl]{2})'
    r'|(?=[\dOoIl]*\d)[\dOoIl]+[.,][\dOoIl]{2})'
    r'(?![\d.,]|\s?%)'
)

_OCR_DIGITS = str.maketrans({'O': '0', 'o': '0', 'I': '1', 'l': '1'})


def parse_amount(token: str) -> Optional[float]:
    """
    Parse a currency token into a float rounded to cents.

    Handles "$1,234.56", "3,50" (decimal comma), "-2.00" and OCR letter
    confusions such as "3.5O". Returns None when the token is not an amount.
    """
    if token is None:
        return None
    s = token.strip().translate(_OCR_DIGITS)
    negative = s.startswith('-')
    s = re.sub(r'[^\d.,]', '', s)
    if not s:
        return None

    if ',' in s and '.' in s:
        s = s.replace(',', '')
    elif ',' in s:
        head, _, tail = s.rpartition(',')
        if len(tail) == 2:
            s = head.replace(',', '') + '.' + tail
        else:
            s = s.replace(',', '')

    try:
        value = round(float(s), 2)
    except ValueError:
        return None
    return -value if negative else value


def find_amounts(line: str) -> List[Tuple[float, int, int]]:
    """Return every amount on a line as (value, start, end), left to right."""
    found = []
    for m in _AMOUNT.finditer(line):
        value = parse_amount((m.group('neg') or '') + m.group('num'))
        if value is not None:
            found.append((value, m.start(), m.end()))
    return found


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# ─── Item categories ──────────────────────────────────────────────────────────

_CATEGORY_KEYWORDS = {
    'Dairy':         ('milk', 'cheese', 'yogurt', 'yoghurt', 'butter', 'cream'),
    'Bakery':        ('bread', 'bagel', 'muffin', 'cake', 'cookie', 'croissant', 'bun'),
    'Meat':          ('chicken', 'beef', 'pork', 'turkey', 'ham', 'bacon', 'sausage'),
    'Produce':       ('apple', 'banana', 'orange', 'lettuce', 'tomato', 'potato',
                      'onion', 'carrot', 'grape', 'berry', 'avocado'),
    'Beverages':     ('water', 'soda', 'juice', 'coffee', 'tea', 'beer', 'wine',
                      'latte', 'cola'),
    'Snacks':        ('chips', 'candy', 'chocolate', 'nuts', 'crackers', 'popcorn'),
    'Household':     ('detergent', 'soap', 'paper', 'towel', 'tissue', 'cleaner', 'trash'),
    'Personal Care': ('shampoo', 'toothpaste', 'deodorant', 'lotion', 'razor'),
    'Electronics':   ('battery', 'cable', 'charger', 'headphone', 'usb'),
}


def categorize_item(name: str) -> Optional[str]:
    """Best-effort category from keywords in the item name."""
    words = set(re.findall(r'[a-z]+', name.lower()))
    for category, keywords in _CATEGORY_KEYWORDS.items():
        for kw in keywords:
            if kw in words or f"{kw}s" in words or f"{kw}es" in words:
                return category
    return None


# ─── Files ────────────────────────────────────────────────────────────────────

def validate_image_filename(
    filename: Optional[str],
    allowed_extensions: Iterable[str] = ALLOWED_IMAGE_EXTENSIONS,
) -> Tuple[bool, str]:
    """
    Validate an uploaded image's filename

    Returns:
        (is_valid, message)
    """
    if not filename:
        return False, "No filename provided"

    ext = os.path.splitext(filename)[1].lower()
    if ext not in allowed_extensions:
        return False, f"Invalid file type: {ext}. Allowed: {', '.join(allowed_extensions)}"

    return True, "Valid image file"


def ensure_directory(dir_path: str) -> str:
    """
    Ensure directory exists, create if it doesn't

    Returns:
        Absolute path to directory
    """
    path = Path(dir_path)
    path.mkdir(parents=True, exist_ok=True)
    return str(path.absolute())


def setup_logging(log_file: Optional[str] = "logs/receipt_extraction.log", level: str = "INFO"):
    """
    Setup logging configuration

    Args:
        log_file: Path to log file, or None for console only
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=level
    )

    if log_file:
        ensure_directory(os.path.dirname(log_file) or ".")
        logger.add(
            log_file,
            rotation="10 MB",
            retention="30 days",
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"
        )

    logger.info("Logging initialized")
