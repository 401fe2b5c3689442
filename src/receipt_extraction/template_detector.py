"""
Template Detector
=================
Chooses which merchant template (and therefore which extraction strategy)
applies to a receipt BEFORE extraction.

Each template carries weighted anchor tokens: phrases that only appear on
that merchant's receipts (chain name, slogan, loyalty program).

  score = Σ weight(anchors found) / Σ weight(all anchors)

The best template is accepted when its score reaches the acceptance
threshold; otherwise the Generic template is returned with score 0.

Tie-break
─────────
  1. higher score
  2. longer longest-matched anchor   ("COSTCO WHOLESALE" beats "COSTCO")
  3. earlier registration

Templates registered out of the box
───────────────────────────────────
  'supermart'   SuperMart grocery        "2 x Milk 3.50" multiplier lines
  'walmart'     Walmart                  "GV MILK 007874235186 3.48 N"
  'target'      Target                   "BANANAS 2 @ 0.59 1.18"
  'costco'      Costco Wholesale         "2 KS WATER 4.99"
  'kroger'      Kroger                   inline with tax flag
  'starbucks'   Starbucks                "1 Grande Latte 4.95"
  'amazon'      Amazon order summaries   "Order Total", "Order Date"

More can be declared in the YAML config under ``templates:``.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Pattern, Tuple, Union

from loguru import logger

from receipt_extraction.exceptions import TemplateRegistryError
from receipt_extraction.models import SanitizedText

GENERIC_TEMPLATE_ID = "generic"
DEFAULT_ACCEPTANCE_THRESHOLD = 0.3


# ─── Template definitions ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class Anchor:
    token: str
    weight: float = 1.0

    @property
    def pattern(self) -> Pattern:
        parts = [re.escape(p) for p in self.token.split()]
        return re.compile(
            r'(?<![A-Z0-9])' + r'\s*'.join(parts) + r'(?![A-Z0-9])',
            re.IGNORECASE,
        )


@dataclass(frozen=True)
class Template:
    """
    A merchant layout.

    ``item_patterns`` use named groups: name, price, and optionally qty and
    unit. ``keyword_patterns`` maps a totals field (subtotal, tax, total,
    tip, discount) to an extra keyword regex tried before the generic one.
    ``date_patterns`` capture the date string in group 1.
    ``two_line_items`` allows an item name on one line with its price alone
    on the next.
    """
    id: str
    store_name: str
    anchors: Tuple[Anchor, ...]
    strategy: str = "template"
    item_patterns: Tuple[Pattern, ...] = ()
    keyword_patterns: Mapping[str, Pattern] = field(default_factory=dict)
    date_patterns: Tuple[Pattern, ...] = ()
    two_line_items: bool = False

    @property
    def total_weight(self) -> float:
        return sum(a.weight for a in self.anchors)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        """Build a template from a config mapping."""
        try:
            anchors = tuple(
                Anchor(str(a["token"]), float(a.get("weight", 1.0)))
                for a in data.get("anchors", [])
            )
            return cls(
                id=str(data["id"]),
                store_name=str(data.get("store_name") or data["id"]),
                anchors=anchors,
                item_patterns=tuple(
                    re.compile(p, re.IGNORECASE) for p in data.get("item_patterns", [])
                ),
                keyword_patterns={
                    k: re.compile(v, re.IGNORECASE)
                    for k, v in (data.get("keyword_patterns") or {}).items()
                },
                date_patterns=tuple(
                    re.compile(p, re.IGNORECASE) for p in data.get("date_patterns", [])
                ),
                two_line_items=bool(data.get("two_line_items", False)),
            )
        except (KeyError, TypeError, ValueError, re.error) as e:
            raise TemplateRegistryError(f"Invalid template definition {data!r}: {e}")


GENERIC_TEMPLATE = Template(
    id=GENERIC_TEMPLATE_ID,
    store_name="",
    anchors=(),
    strategy="generic",
)


# ─── Built-in item layouts ────────────────────────────────────────────────────

def _amt(group: str) -> str:
    return r'\$?(?P<' + group + r'>\d[\d,]*[.,]\d{2})'


_FLAG = r'(?:\s?[A-Z]{1,2})?$'

_QTY_X_NAME_PRICE = re.compile(
    r'^(?P<qty>\d{1,3})\s*(?:[xX](?=\s)|@)\s*(?P<name>.+?)\s+' + _amt('price') + _FLAG
)
_NAME_QTY_AT_UNIT_PRICE = re.compile(
    r'^(?P<name>.+?)\s+(?P<qty>\d{1,3})\s*@\s*' + _amt('unit') + r'\s+' + _amt('price') + _FLAG
)
_NAME_QTY_UNIT_PRICE = re.compile(
    r'^(?P<name>.+?)\s+(?P<qty>\d{1,3})\s+' + _amt('unit') + r'\s+' + _amt('price') + _FLAG
)
_QTY_NAME_PRICE = re.compile(
    r'^(?P<qty>\d{1,2})\s+(?P<name>[A-Za-z].+?)\s+' + _amt('price') + _FLAG
)
_NAME_UPC_PRICE = re.compile(
    r'^(?P<name>.+?)\s+\d{8,13}\s+' + _amt('price') + _FLAG
)
_NAME_PRICE = re.compile(
    r'^(?P<name>.+?)\s+' + _amt('price') + _FLAG
)


def _builtin_templates() -> List[Template]:
    return [
        Template(
            id="supermart",
            store_name="SUPERMART",
            anchors=(Anchor("SUPERMART", 3.0), Anchor("FRESH FOOD FOR LESS", 1.0)),
            item_patterns=(_QTY_X_NAME_PRICE, _NAME_PRICE),
        ),
        Template(
            id="walmart",
            store_name="Walmart",
            anchors=(
                Anchor("WALMART", 3.0),
                Anchor("WAL-MART", 3.0),
                Anchor("SAVE MONEY. LIVE BETTER", 2.0),
            ),
            item_patterns=(_NAME_UPC_PRICE, _NAME_QTY_UNIT_PRICE, _NAME_PRICE),
        ),
        Template(
            id="target",
            store_name="Target",
            anchors=(Anchor("TARGET", 3.0), Anchor("EXPECT MORE. PAY LESS", 2.0)),
            item_patterns=(_NAME_QTY_AT_UNIT_PRICE, _NAME_PRICE),
        ),
        Template(
            id="costco",
            store_name="Costco",
            anchors=(
                Anchor("COSTCO", 3.0),
                Anchor("COSTCO WHOLESALE", 2.0),
                Anchor("WHOLESALE", 1.0),
            ),
            item_patterns=(_QTY_NAME_PRICE, _NAME_PRICE),
        ),
        Template(
            id="kroger",
            store_name="Kroger",
            anchors=(
                Anchor("KROGER", 3.0),
                Anchor("KROGER PLUS", 1.0),
                Anchor("FUEL POINTS", 1.0),
            ),
            item_patterns=(_NAME_QTY_UNIT_PRICE, _NAME_PRICE),
        ),
        Template(
            id="starbucks",
            store_name="Starbucks",
            anchors=(
                Anchor("STARBUCKS", 3.0),
                Anchor("STARBUCKS COFFEE", 1.0),
                Anchor("STARBUCKS REWARDS", 1.0),
            ),
            item_patterns=(_QTY_NAME_PRICE, _NAME_PRICE),
        ),
        Template(
            id="amazon",
            store_name="Amazon",
            anchors=(
                Anchor("AMAZON", 3.0),
                Anchor("AMAZON.COM", 2.0),
                Anchor("ORDER TOTAL", 1.0),
                Anchor("PRIME", 0.5),
            ),
            item_patterns=(_NAME_QTY_UNIT_PRICE, _NAME_PRICE),
            keyword_patterns={
                "subtotal": re.compile(r'ITEM\(S\)\s*SUBTOTAL', re.IGNORECASE),
                "total": re.compile(r'(?:ORDER|GRAND)\s+TOTAL', re.IGNORECASE),
                "tax": re.compile(r'(?:ESTIMATED\s+)?TAX\s+TO\s+BE\s+COLLECTED', re.IGNORECASE),
            },
            date_patterns=(
                re.compile(r'ORDER\s+(?:DATE|PLACED)\s*:?\s*([A-Z]+\.?\s+\d{1,2},?\s+\d{4})',
                           re.IGNORECASE),
            ),
        ),
    ]


# ─── Registry ─────────────────────────────────────────────────────────────────

class TemplateRegistry:
    """
    Immutable, ordered collection of templates. Built once at startup and
    shared read-only by every request.

    The Generic template is always available via ``generic`` / ``get()``
    and is never part of the scored set.
    """

    def __init__(self, templates: Iterable[Template]):
        ordered: List[Template] = []
        by_id: Dict[str, Template] = {GENERIC_TEMPLATE_ID: GENERIC_TEMPLATE}

        for template in templates:
            self._validate(template)
            if template.id in by_id:
                raise TemplateRegistryError(f"Duplicate template id '{template.id}'")
            by_id[template.id] = template
            ordered.append(template)

        self._templates: Tuple[Template, ...] = tuple(ordered)
        self._by_id: Mapping[str, Template] = MappingProxyType(by_id)
        logger.info(
            f"[TemplateRegistry] {len(self._templates)} templates registered: "
            f"{', '.join(t.id for t in self._templates)}"
        )

    @staticmethod
    def _validate(template: Template):
        if not template.id:
            raise TemplateRegistryError("Template id must not be empty")
        if not template.anchors:
            raise TemplateRegistryError(f"Template '{template.id}' has no anchors")
        for anchor in template.anchors:
            if not anchor.token.strip() or anchor.weight <= 0:
                raise TemplateRegistryError(
                    f"Template '{template.id}' has invalid anchor {anchor!r}"
                )

    @property
    def templates(self) -> Tuple[Template, ...]:
        return self._templates

    @property
    def generic(self) -> Template:
        return GENERIC_TEMPLATE

    def get(self, template_id: str) -> Optional[Template]:
        return self._by_id.get(template_id)

    def __iter__(self) -> Iterator[Template]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._by_id


def build_default_registry(config: Optional[Dict[str, Any]] = None) -> TemplateRegistry:
    """Built-in templates followed by any declared in config['templates']."""
    extra = [Template.from_dict(d) for d in ((config or {}).get("templates") or [])]
    return TemplateRegistry(_builtin_templates() + extra)


# ─── Detection ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DetectionResult:
    template: Template
    score: float
    matched_anchors: Tuple[str, ...] = ()

    @property
    def fallback(self) -> bool:
        return self.template.id == GENERIC_TEMPLATE_ID


class TemplateDetector:
    """
    Score every registered template against the receipt text.

    Usage
    -----
    detector = TemplateDetector(build_default_registry())
    result = detector.detect(sanitized)
    # result.template.id: str    e.g. 'supermart'
    # result.score:       float  0-1
    """

    def __init__(self, registry: TemplateRegistry,
                 acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD):
        self.registry = registry
        self.acceptance_threshold = acceptance_threshold
        # Compiled once; the registry never changes.
        self._anchor_patterns = {
            t.id: tuple((a, a.pattern) for a in t.anchors) for t in registry
        }

    def detect(self, text: Union[SanitizedText, str]) -> DetectionResult:
        """
        Returns
        -------
        DetectionResult
            Generic with score 0 when nothing reaches the threshold.
        """
        text_block = text.text if isinstance(text, SanitizedText) else text
        if not text_block:
            return DetectionResult(self.registry.generic, 0.0)

        best = None
        best_key = None
        for order, template in enumerate(self.registry):
            matched = [
                anchor for anchor, pat in self._anchor_patterns[template.id]
                if pat.search(text_block)
            ]
            if not matched:
                continue

            score = sum(a.weight for a in matched) / template.total_weight
            longest = max(len(a.token) for a in matched)
            key = (score, longest, -order)
            logger.debug(
                f"[TemplateDetector] {template.id}: score={score:.2f} "
                f"matched={[a.token for a in matched]}"
            )
            if best_key is None or key > best_key:
                best_key = key
                best = DetectionResult(template, round(score, 4), tuple(a.token for a in matched))

        if best is None or best.score < self.acceptance_threshold:
            if best is not None:
                logger.info(
                    f"[TemplateDetector] Low confidence: best '{best.template.id}' "
                    f"scored {best.score:.2f} < {self.acceptance_threshold:.2f}, using generic"
                )
            else:
                logger.debug("[TemplateDetector] generic (no anchors matched)")
            return DetectionResult(self.registry.generic, 0.0)

        logger.info(
            f"[TemplateDetector] {best.template.id} (score={best.score:.2f}, "
            f"anchors={list(best.matched_anchors)})"
        )
        return best
