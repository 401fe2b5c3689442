"""
Generic Extractor
=================
Used when no merchant template reaches the acceptance threshold.

Only the shared inline layout is trusted:

  "<description> ... <amount>"     optional "2 x" / "2@" / "x3" / "2 @ 0.59" multiplier

Fields come out with ``source="generic"`` and the lower generic pattern
confidence.
"""

from typing import List, Set

from receipt_extraction.extractor.base_extractor import BaseExtractor
from receipt_extraction.models import ExtractedField


class GenericExtractor(BaseExtractor):
    """
    Conservative extractor for unknown layouts.
    """

    def _items(self, lines: List[str], line_conf, totals_lines: Set[int]) -> List[ExtractedField]:
        items = []
        for i in self._item_zone(lines, totals_lines):
            if i in totals_lines or not self._is_item_line(lines[i]):
                continue
            item = self._generic_item(lines[i], i)
            if item:
                items.append(self._item_field(item, line_conf, "generic"))
        return items
