"""
Base Extractor
==============
Contains ALL shared extraction logic:
  - store        (name near the top + address, phone, website, tax id)
  - date         (ordered patterns, validated, ISO output)
  - totals       (subtotal / tax / total / tip / discount)
  - payment      (method, card type, last 4 digits)

Subclasses override ONLY _items() to handle their specific layout.

Every value is wrapped in an ExtractedField carrying a confidence:

    confidence = pattern_confidence × (1 - w + w × ocr_region_confidence)

where w is ``scoring.ocr_weight``. Without OCR regions the pattern confidence
is used as-is. Missing fields are simply absent; extraction never raises for
them.
"""

import re
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from loguru import logger

from receipt_extraction.config import default_config
from receipt_extraction.models import (
    ExtractedField,
    ExtractedReceipt,
    ExtractedTotals,
    FieldSource,
    ItemCandidate,
    OcrRegion,
    PaymentCandidate,
    SanitizedText,
    StoreCandidate,
)
from receipt_extraction.utils import categorize_item, clamp, find_amounts, parse_amount


# ─── Shared compiled patterns ─────────────────────────────────────────────────

_SEPARATOR = re.compile(r'^[\-\*\=\s\.#_~]+$')
_LETTERS = re.compile(r'[A-Za-z]')

_MONTH_NAMES = (
    r'(?:January|February|March|April|May|June|July|August|September|'
    r'October|November|December|'
    r'Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sept|Sep|Oct|Nov|Dec)'
)

# Most specific first. Each entry: (pattern, strptime formats to try)
_DATE_PATTERNS = [
    # ── Numeric with 4-digit year ─────────────────────────────────────────────
    (re.compile(r'\b(\d{4}[/\-\.]\d{1,2}[/\-\.]\d{1,2})\b'), ('%Y/%m/%d',)),             # 2024-01-15
    (re.compile(r'\b(\d{1,2}[/\-\.]\d{1,2}[/\-\.]\d{4})\b'), ('%m/%d/%Y', '%d/%m/%Y')),  # 01/15/2024
    # ── Written with 4-digit year ─────────────────────────────────────────────
    (re.compile(r'\b(' + _MONTH_NAMES + r'\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4})\b', re.IGNORECASE),
     ('%b %d %Y', '%B %d %Y')),                                                           # Jan 15, 2024
    (re.compile(r'\b(\d{1,2}(?:st|nd|rd|th)?\s+' + _MONTH_NAMES + r'\.?,?\s+\d{4})\b', re.IGNORECASE),
     ('%d %b %Y', '%d %B %Y')),                                                           # 15 January 2024
    # ── Numeric with 2-digit year ─────────────────────────────────────────────
    (re.compile(r'\b(\d{1,2}[/\-]\d{1,2}[/\-]\d{2})\b'), ('%m/%d/%y', '%d/%m/%y')),      # 01/15/24
]

_DATE_LABEL = re.compile(r'\b(?:date|dated|order\s+placed)\b', re.IGNORECASE)

# Totals keywords tolerate the usual OCR confusions (0/O, 4/A, 1/I).
# Checked in this order; a line belongs to the first field that matches.
_TOTALS_KEYWORDS = (
    ("subtotal", re.compile(r'\bSUB[\s\-]?T[O0]T[A4]L\b|\bNET\s+SALES?\b', re.IGNORECASE)),
    ("discount", re.compile(
        r'\bD[I1l]SC(?:[O0]UNT)?S?\b|\bSAVINGS?\b|\bCOUPONS?\b|\bPROMO\b|\bYOU\s+SAVED\b',
        re.IGNORECASE)),
    ("tax", re.compile(r'\b(?:SALES\s+)?T[A4]X\b|\bVAT\b|\bGST\b|\bHST\b|\bPST\b', re.IGNORECASE)),
    ("tip", re.compile(r'\bTIPS?\b|\bGRATUITY\b', re.IGNORECASE)),
    ("total", re.compile(
        r'\b(?:GRAND\s+)?T[O0]T[A4]L\b|\bAMOUNT\s+DUE\b|\bBALANCE\s+DUE\b|\bTOTAL\s+DUE\b',
        re.IGNORECASE)),
)

_TOTALS_EXCLUDE = {
    "tax": re.compile(
        r'\bTAX\s*(?:EXEMPT|FREE|ID|#|NO)\b|\bPRE[\s\-]?TAX\b|\bVAT\s*(?:REG|NO|#)|\bVATABLE\b|'
        r'\b(?:GST|HST|PST)\s*REG|\bINVOICE\b',
        re.IGNORECASE),
    "total": re.compile(
        r'\bTOTAL\s+(?:ITEMS?|QTY|QUANTITY|NUMBER|UNITS?)\b|\bITEMS?\s+TOTAL\b',
        re.IGNORECASE),
}

_ZONE_END_FIELDS = ("subtotal", "tax", "total")

_NON_ITEM = re.compile(
    r'\b(CHANGE|CASH|TENDER(?:ED)?|VISA|MASTER\s*CARD|AMEX|DISCOVER|DEBIT|CREDIT|'
    r'PAYMENT|BALANCE|PAID|REFUND|CARD|AUTH|APPROV(?:ED|AL)|THANK|WELCOME|'
    r'CASHIER|REGISTER|TRANS(?:ACTION)?|INVOICE|RECEIPT|ITEMS?\s+SOLD|'
    r'ITEM\s+COUNT|PAYPAL|VENMO)\b',
    re.IGNORECASE,
)

_LEADING_QTY = re.compile(r'^(\d{1,3})\s*(?:[xX](?=\s)|@)\s*(.+)$')
_TRAILING_QTY_AT = re.compile(r'^(.+?)\s+(\d{1,3})\s*@\s*\$?(\d[\d,]*[.,]\d{2})$')
_TRAILING_QTY_X = re.compile(r'^(.+?)\s+[xX]\s*(\d{1,3})$')
_TAX_FLAG = re.compile(r'^(?:[A-Z]{1,2}|\*)?$')

_ADDRESS = re.compile(
    r'\b\d+\s+[A-Za-z0-9\s,.]+?\b(?:street|st|avenue|ave|road|rd|boulevard|blvd|'
    r'lane|ln|drive|dr|way|place|pl|square|sq|highway|hwy|parkway|pkwy)\b\.?',
    re.IGNORECASE,
)
_CITY_LINE = re.compile(r'^[A-Za-z .\'\-]+,?\s+[A-Z]{2}\s+\d{5}(?:-\d{4})?$')
_PHONE_LABELED = re.compile(r'(?:phone|tel|telephone)[:\s]*(\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4})', re.IGNORECASE)
_PHONE = re.compile(r'(?<!\d)(\(?\d{3}\)?[-.\s]?\d{3}[-.\s]\d{4})(?!\d)')
_WEBSITE = re.compile(r'\b((?:https?://)?(?:www\.)[A-Za-z0-9.\-]+\.[A-Za-z]{2,}|'
                      r'[A-Za-z0-9\-]+\.(?:com|net|org|co|io|shop|store)\b)', re.IGNORECASE)
_TAX_ID = re.compile(r'\b(?:tax\s*id|tin|ein|gst|abn|vat\s*reg(?:istration)?)\s*(?:no\.?|#)?\s*[:#]?\s*'
                     r'([A-Za-z0-9][A-Za-z0-9\-]{4,})', re.IGNORECASE)
_TIME_ONLY = re.compile(r'^\d{1,2}:\d{2}(?::\d{2})?\s*(?:[AP]M?)?$', re.IGNORECASE)
_STORE_NOISE = re.compile(r'\b(?:welcome\s+to|thank\s+you\s+for\s+shopping(?:\s+at)?)\b', re.IGNORECASE)
_STORE_SKIP = re.compile(r'\b(?:receipt|invoice|store\s*#|tel|phone|cashier|register)\b', re.IGNORECASE)

# (method, card_type, pattern) in priority order
_PAYMENT_PATTERNS = (
    ("CREDIT",  "VISA",       re.compile(r'\bVISA\b', re.IGNORECASE)),
    ("CREDIT",  "MASTERCARD", re.compile(r'\bMASTER\s*CARD\b', re.IGNORECASE)),
    ("CREDIT",  "AMEX",       re.compile(r'\bAMEX\b|\bAMERICAN\s+EXPRESS\b', re.IGNORECASE)),
    ("CREDIT",  "DISCOVER",   re.compile(r'\bDISCOVER\b', re.IGNORECASE)),
    ("DEBIT",   None,         re.compile(r'\bDEBIT\b|\bINTERAC\b', re.IGNORECASE)),
    ("CREDIT",  None,         re.compile(r'\bCREDIT\s*(?:CARD)?\b', re.IGNORECASE)),
    ("DIGITAL", None,         re.compile(r'\bPAYPAL\b|\bVENMO\b|\b(?:APPLE|GOOGLE|SAMSUNG)\s*PAY\b',
                                         re.IGNORECASE)),
    ("CASH",    None,         re.compile(r'\bCASH\b', re.IGNORECASE)),
)

_CARD_LAST4 = (
    re.compile(r'[*xX#•]{4,}[\s\-]*(\d{4})\b'),
    re.compile(r'\bCARD\s*(?:NO\.?|#)?\s*:?\s*[*xX]+\s*(\d{4})\b', re.IGNORECASE),
    re.compile(r'\bENDING\s+(?:IN\s+)?(\d{4})\b', re.IGNORECASE),
    re.compile(r'\bACCT?\s*#?\s*:?\s*[*xX]+(\d{4})\b', re.IGNORECASE),
)


def _squash(text: str) -> str:
    return re.sub(r'\s+', '', text).lower()


def parse_date(raw: str, formats: Sequence[str]) -> Optional[date]:
    """Parse a matched date string; None if it is not a real calendar date."""
    s = re.sub(r'(\d)(?:st|nd|rd|th)\b', r'\1', raw, flags=re.IGNORECASE)
    s = s.replace(',', ' ').replace('Sept', 'Sep').replace('sept', 'sep')
    s = re.sub(r'(?<=[A-Za-z])\.', '', s)
    s = re.sub(r'[\-\.](?=\d)', '/', s)
    s = re.sub(r'\s+', ' ', s).strip()
    for fmt in formats:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


class BaseExtractor:
    """
    Abstract base class.  Subclasses implement _items().

    Call extract(sanitized, regions) → returns an ExtractedReceipt.
    """

    source: FieldSource = "generic"
    template_id: str = "generic"

    def __init__(self, config: Optional[Dict] = None):
        config = config or default_config()
        extraction = config['extraction']
        self.store_search_lines = int(extraction['store_search_lines'])
        self.template_confidence = float(extraction['template_confidence'])
        self.generic_confidence = float(extraction['generic_confidence'])
        self.next_line_factor = float(extraction['next_line_factor'])
        self.assumed_quantity_penalty = float(extraction['assumed_quantity_penalty'])
        self.ocr_weight = float(config['scoring']['ocr_weight'])
        self.keyword_patterns = {}
        self.date_patterns = ()

    @property
    def pattern_confidence(self) -> float:
        return self.template_confidence if self.source == "template" else self.generic_confidence

    # ── Public entry point ────────────────────────────────────────────────────

    def extract(self, text: SanitizedText, regions: Sequence[OcrRegion] = ()) -> ExtractedReceipt:
        """
        Extract every field from sanitized receipt text.

        Parameters
        ----------
        text : SanitizedText
        regions : OCR regions whose confidences are blended into the fields
                  taken from the matching lines

        Returns
        -------
        ExtractedReceipt (possibly empty, never None)
        """
        lines = text.lines
        if not lines:
            return ExtractedReceipt(template_id=self.template_id)

        line_conf = self._line_confidences(lines, regions)

        totals, totals_lines = self._totals(lines, line_conf)
        store = self._store(lines, line_conf)
        receipt_date = self._date(lines, line_conf)
        payment = self._payment(lines, line_conf)
        items = self._items(lines, line_conf, totals_lines)
        items.sort(key=lambda f: f.value.line_index)

        result = ExtractedReceipt(
            template_id=self.template_id,
            store=store,
            date=receipt_date,
            items=items,
            totals=totals,
            payment=payment,
        )

        logger.info(
            f"[{self.__class__.__name__}] store={store.value.name if store else None!r} "
            f"date={receipt_date.value if receipt_date else None!r} "
            f"total={totals.total.value if totals.total else None!r} "
            f"items={len(items)}"
        )
        return result

    # ── Confidence helpers ────────────────────────────────────────────────────

    def _line_confidences(self, lines: List[str], regions: Sequence[OcrRegion]) -> List[Optional[float]]:
        """Lowest OCR confidence among the regions overlapping each line."""
        if not regions:
            return [None] * len(lines)

        squashed_regions = [(_squash(r.text), r.confidence) for r in regions if r.text.strip()]
        result: List[Optional[float]] = []
        for line in lines:
            sq = _squash(line)
            matches = [
                conf for region_text, conf in squashed_regions
                if region_text == sq
                or (len(region_text) >= 3 and region_text in sq)
                or (len(sq) >= 3 and sq in region_text)
            ]
            result.append(min(matches) if matches else None)
        return result

    def _confidence(self, line_conf: List[Optional[float]], idx: Optional[int],
                    base: Optional[float] = None, factor: float = 1.0) -> float:
        c = (self.pattern_confidence if base is None else base) * factor
        region = line_conf[idx] if idx is not None and 0 <= idx < len(line_conf) else None
        if region is not None:
            c *= 1 - self.ocr_weight + self.ocr_weight * region
        return round(clamp(c), 4)

    def _field(self, value, line_conf, idx, base=None, factor=1.0, source=None) -> ExtractedField:
        return ExtractedField(
            value=value,
            confidence=self._confidence(line_conf, idx, base, factor),
            source=source or self.source,
        )

    # ── Shared field extractors ───────────────────────────────────────────────

    def _store(self, lines: List[str], line_conf) -> Optional[ExtractedField]:
        """First plausible name line near the top, plus contact details."""
        for idx, line in enumerate(lines[:self.store_search_lines]):
            name = _STORE_NOISE.sub('', line).strip(" -:*")
            if len(_LETTERS.findall(name)) < 2:
                continue
            if _SEPARATOR.match(name) or _TIME_ONLY.match(name) or _STORE_SKIP.search(name):
                continue
            if find_amounts(name) or _PHONE.search(name) or self._match_date(name):
                continue
            factor = 1.0 if idx == 0 else 0.85
            return self._field(self._store_details(lines, name), line_conf, idx, factor=factor)
        return None

    def _store_details(self, lines: List[str], name: str) -> StoreCandidate:
        block = lines[:12]
        address = phone = website = tax_id = None

        for i, line in enumerate(block):
            m = _ADDRESS.search(line)
            if m:
                address = m.group(0).strip()
                if i + 1 < len(block) and _CITY_LINE.match(block[i + 1]):
                    address = f"{address}, {block[i + 1]}"
                break

        for line in block:
            m = _PHONE_LABELED.search(line) or _PHONE.search(line)
            if m:
                phone = m.group(1).strip()
                break

        for line in lines:
            m = _WEBSITE.search(line)
            if m:
                website = m.group(1).lower()
                break

        for line in lines:
            m = _TAX_ID.search(line)
            if m:
                tax_id = m.group(1)
                break

        return StoreCandidate(name=name, address=address, phone=phone, website=website, tax_id=tax_id)

    def _match_date(self, line: str) -> Optional[date]:
        for pat, formats in _DATE_PATTERNS:
            for m in pat.finditer(line):
                before = line[m.start() - 1:m.start()] if m.start() > 0 else ''
                after = line[m.end():m.end() + 1]
                if before.isdigit() or after == '-':
                    continue
                parsed = parse_date(m.group(1), formats)
                if parsed:
                    return parsed
        return None

    def _date(self, lines: List[str], line_conf) -> Optional[ExtractedField]:
        """
        Scan for a date, most specific pattern first.

        Round 1: layout-specific patterns (templates only)
        Round 2: lines labelled "Date"
        Round 3: any line
        """
        for pat in self.date_patterns:
            for idx, line in enumerate(lines):
                m = pat.search(line)
                if m:
                    parsed = parse_date(m.group(1), ('%b %d %Y', '%B %d %Y', '%m/%d/%Y', '%m/%d/%y'))
                    if parsed:
                        return self._field(parsed.isoformat(), line_conf, idx)

        labelled = [i for i, l in enumerate(lines) if _DATE_LABEL.search(l)]
        others = [i for i, l in enumerate(lines) if not _DATE_LABEL.search(l)]
        for group, factor in ((labelled, 1.0), (others, 0.9)):
            for idx in group:
                parsed = self._match_date(lines[idx])
                if parsed:
                    return self._field(parsed.isoformat(), line_conf, idx, factor=factor)
        return None

    def _totals_field_of(self, line: str) -> Optional[Tuple[str, int]]:
        """Which totals field a line labels, and where the keyword ends."""
        for name, pat in self.keyword_patterns.items():
            m = pat.search(line)
            if m:
                return name, m.end()
        for name, pat in _TOTALS_KEYWORDS:
            m = pat.search(line)
            if not m:
                continue
            exclude = _TOTALS_EXCLUDE.get(name)
            if exclude and exclude.search(line):
                continue
            return name, m.end()
        return None

    @staticmethod
    def _amount_only(line: str) -> Optional[float]:
        """The amount on a line that holds nothing else (split-line totals)."""
        amounts = find_amounts(line)
        if len(amounts) != 1:
            return None
        value, start, end = amounts[0]
        rest = (line[:start] + line[end:]).strip(" $€£:-")
        if re.search(r'[A-Za-z]{2,}', rest):
            return None
        return value

    def _totals(self, lines: List[str], line_conf) -> Tuple[ExtractedTotals, Set[int]]:
        """
        Keyword line paired with the nearest amount, same line first then next.

        Only lines that carry an amount are reported as totals lines, so a
        header such as "TAX INVOICE" never ends the item section.
        """
        found: Dict[str, ExtractedField] = {}
        used: Set[int] = set()
        n = len(lines)

        for idx, line in enumerate(lines):
            labelled = self._totals_field_of(line)
            if not labelled:
                continue
            name, kw_end = labelled

            after = [a for a in find_amounts(line) if a[1] >= kw_end]
            amounts = after or find_amounts(line)
            value, value_idx, factor = None, idx, 1.0
            if amounts:
                value = amounts[-1][0]
            elif idx + 1 < n and not self._totals_field_of(lines[idx + 1]):
                value = self._amount_only(lines[idx + 1])
                if value is not None:
                    value_idx, factor = idx + 1, self.next_line_factor

            if value is None:
                continue
            used.update({idx, value_idx})
            if name in found:
                continue
            if name == "discount":
                value = abs(value)
            elif value < 0:
                continue
            found[name] = self._field(round(value, 2), line_conf, value_idx, factor=factor)

        return ExtractedTotals(**found), used

    def _payment(self, lines: List[str], line_conf) -> Optional[ExtractedField]:
        hits: Dict[Tuple[str, Optional[str]], int] = {}
        for method_name, brand, pat in _PAYMENT_PATTERNS:
            for idx, line in enumerate(lines):
                if pat.search(line):
                    hits[(method_name, brand)] = idx
                    break

        card_type = next((brand for _, brand in hits if brand), None)
        methods = [m for m, _ in hits]
        # A debit card may also print its network (VISA DEBIT).
        method = next((m for m in ("DEBIT", "CREDIT", "DIGITAL", "CASH") if m in methods), None)
        method_idx = next((i for (m, _), i in hits.items() if m == method), None)

        last4 = None
        for pat in _CARD_LAST4:
            for line in lines:
                m = pat.search(line)
                if m:
                    last4 = m.group(1)
                    break
            if last4:
                break

        if method is None and last4 is None:
            return None
        if method is None:
            method = "OTHER"
        factor = 1.0 if (card_type or last4 or method == "CASH") else 0.9
        return self._field(
            PaymentCandidate(method=method, card_type=card_type, card_last4=last4),
            line_conf, method_idx, factor=factor,
        )

    # ── Must be overridden ────────────────────────────────────────────────────

    def _items(self, lines: List[str], line_conf, totals_lines: Set[int]) -> List[ExtractedField]:
        """Subclasses implement layout-specific item extraction."""
        raise NotImplementedError(
            f"{self.__class__.__name__} must implement _items()"
        )

    # ── Item helpers ──────────────────────────────────────────────────────────

    def _item_zone(self, lines: List[str], totals_lines: Set[int]) -> range:
        """Items end where the first subtotal / tax / total line starts."""
        for idx in sorted(totals_lines):
            labelled = self._totals_field_of(lines[idx])
            if labelled and labelled[0] in _ZONE_END_FIELDS:
                return range(0, idx)
        return range(0, len(lines))

    @staticmethod
    def _is_item_line(line: str) -> bool:
        return not _NON_ITEM.search(line) and not _SEPARATOR.match(line)

    @staticmethod
    def _clean_name(name: str) -> Optional[str]:
        name = name.strip(" $-:*.#")
        if len(_LETTERS.findall(name)) < 2:
            return None
        return name

    def _generic_item(self, line: str, idx: int) -> Optional[ItemCandidate]:
        """
        "<description> ... <amount>" with optional multiplier:
          "2 x Milk 3.50"   "2@ Milk 3.50"   "Bananas 2 @ 0.59 1.18"   "Soap x3 4.50"
        """
        amounts = find_amounts(line)
        if not amounts:
            return None
        price, start, end = amounts[-1]
        if price < 0 or not _TAX_FLAG.match(line[end:].strip()):
            return None

        desc = line[:start].strip()
        qty, unit, explicit = 1, None, False

        m = _LEADING_QTY.match(desc)
        if m:
            qty, desc, explicit = int(m.group(1)), m.group(2), True
        else:
            m = _TRAILING_QTY_AT.match(desc) or _TRAILING_QTY_X.match(desc)
            if m:
                desc, qty, explicit = m.group(1), int(m.group(2)), True
                if m.re is _TRAILING_QTY_AT:
                    unit = parse_amount(m.group(3))

        name = self._clean_name(desc)
        if not name or qty < 1:
            return None
        return self._build_item(name, price, qty, unit, explicit, idx)

    @staticmethod
    def _build_item(name: str, price: float, qty: int, unit: Optional[float],
                    explicit: bool, idx: int) -> ItemCandidate:
        """Build a standardised item, deriving the unit price when qty > 1."""
        if unit is None and qty > 1:
            unit = round(price / qty, 2)
        return ItemCandidate(
            name=name,
            price=round(price, 2),
            quantity=qty,
            unit_price=unit,
            quantity_explicit=explicit,
            category=categorize_item(name),
            line_index=idx,
        )

    def _item_field(self, item: ItemCandidate, line_conf, source: FieldSource) -> ExtractedField:
        base = self.template_confidence if source == "template" else self.generic_confidence
        factor = 1.0 if item.quantity_explicit else self.assumed_quantity_penalty
        return self._field(item, line_conf, item.line_index, base=base, factor=factor, source=source)
