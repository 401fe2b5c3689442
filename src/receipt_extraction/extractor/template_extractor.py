"""
Template Extractor
==================
Extraction strategy for a detected merchant template.

What the template adds over the generic strategy
------------------------------------------------
- Store name is the template's canonical merchant name.
- Item lines are matched against the template's own layouts first
  (named groups: name, price, qty, unit). Lines none of them match fall
  back to the generic inline parser and keep ``source="generic"``.
- Extra totals keywords ("Order Total", "Item(s) Subtotal") are tried before
  the generic ones.
- Layout-specific date patterns ("Order Date: March 5, 2024") are tried first.

Passes
------
  A  : template item patterns        → source "template"
  B  : generic inline parser         → source "generic"
  C  : name line + price-only line   → source "template"  (templates with
                                       ``two_line_items``)
"""

from typing import Dict, List, Optional, Set

from loguru import logger

from receipt_extraction.extractor.base_extractor import _LEADING_QTY, _TRAILING_QTY_X, BaseExtractor
from receipt_extraction.models import ExtractedField, ItemCandidate
from receipt_extraction.template_detector import Template
from receipt_extraction.utils import find_amounts, parse_amount


class TemplateExtractor(BaseExtractor):

    source = "template"

    def __init__(self, template: Template, config: Optional[Dict] = None):
        super().__init__(config)
        self.template = template
        self.template_id = template.id
        self.keyword_patterns = dict(template.keyword_patterns)
        self.date_patterns = template.date_patterns
        self._anchor_patterns = [a.pattern for a in template.anchors]

    def _store(self, lines: List[str], line_conf) -> Optional[ExtractedField]:
        anchor_idx = next(
            (i for i, line in enumerate(lines) if any(p.search(line) for p in self._anchor_patterns)),
            None,
        )
        details = self._store_details(lines, self.template.store_name)
        return self._field(details, line_conf, anchor_idx)

    def _items(self, lines: List[str], line_conf, totals_lines: Set[int]) -> List[ExtractedField]:
        items = []
        zone = self._item_zone(lines, totals_lines)
        consumed: Set[int] = set()
        for i in zone:
            s = lines[i]
            if i in totals_lines or i in consumed or not self._is_item_line(s):
                continue

            # ── Pass A: template layouts ──────────────────────────────────────
            item = self._template_item(s, i)
            if item:
                items.append(self._item_field(item, line_conf, "template"))
                continue

            # ── Pass B: generic inline ────────────────────────────────────────
            item = self._generic_item(s, i)
            if item:
                logger.debug(f"[TemplateExtractor:{self.template_id}] generic fallback for line {i}: {s!r}")
                items.append(self._item_field(item, line_conf, "generic"))
                continue

            # ── Pass C: two-line layout ───────────────────────────────────────
            if self.template.two_line_items and i + 1 in zone and i + 1 not in totals_lines:
                item = self._two_line_item(s, lines[i + 1], i)
                if item:
                    consumed.add(i + 1)
                    items.append(self._item_field(item, line_conf, "template"))
        return items

    def _template_item(self, line: str, idx: int) -> Optional[ItemCandidate]:
        for pat in self.template.item_patterns:
            m = pat.match(line)
            if not m:
                continue
            groups = m.groupdict()
            name = self._clean_name(groups.get("name") or "")
            price = parse_amount(groups.get("price") or "")
            if not name or price is None or price < 0:
                continue

            explicit = bool(groups.get("qty"))
            qty = int(groups["qty"]) if explicit else 1
            if not explicit:
                lead = _LEADING_QTY.match(name)
                trail = _TRAILING_QTY_X.match(name)
                if lead:
                    qty, name, explicit = int(lead.group(1)), lead.group(2), True
                elif trail:
                    name, qty, explicit = trail.group(1), int(trail.group(2)), True
            if qty < 1:
                continue
            unit = parse_amount(groups["unit"]) if groups.get("unit") else None
            return self._build_item(name, price, qty, unit, explicit, idx)
        return None

    def _two_line_item(self, name_line: str, price_line: str, idx: int) -> Optional[ItemCandidate]:
        """
        "ORGANIC BANANAS"
        "        1.18"
        """
        price = self._amount_only(price_line)
        if price is None or price < 0 or find_amounts(name_line):
            return None
        qty, explicit = 1, False
        lead = _LEADING_QTY.match(name_line)
        if lead:
            qty, name_line, explicit = int(lead.group(1)), lead.group(2), True
        name = self._clean_name(name_line)
        if not name or qty < 1:
            return None
        return self._build_item(name, price, qty, None, explicit, idx)
