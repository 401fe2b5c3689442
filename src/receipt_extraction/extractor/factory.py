"""
Extractor Factory
=================
Routes to the correct extraction strategy based on the detected template.

The strategy table (template id → extractor instance) is built once from
the registry and never changes afterwards, so it can be shared by
concurrent requests.

Usage
-----
    factory   = ExtractorFactory(registry, config)
    extractor = factory.get_extractor("supermart")
    extracted = extractor.extract(sanitized, regions)
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from loguru import logger

from receipt_extraction.extractor.base_extractor import BaseExtractor
from receipt_extraction.extractor.generic_extractor import GenericExtractor
from receipt_extraction.extractor.template_extractor import TemplateExtractor
from receipt_extraction.template_detector import GENERIC_TEMPLATE_ID, TemplateRegistry


class ExtractorFactory:
    """
    Returns the extractor registered for a template id.

    Unknown ids fall back to GenericExtractor (safe, conservative extraction).
    """

    # ── Mapping: template.strategy → extractor class ──────────────────────────
    _CLASSES = {
        "template": TemplateExtractor,
        "generic":  GenericExtractor,
    }

    def __init__(self, registry: TemplateRegistry, config: Optional[Dict] = None):
        generic = GenericExtractor(config)
        table: Dict[str, BaseExtractor] = {GENERIC_TEMPLATE_ID: generic}

        for template in registry:
            if template.strategy not in self._CLASSES:
                logger.warning(
                    f"[ExtractorFactory] Template '{template.id}' names unknown strategy "
                    f"'{template.strategy}', using GenericExtractor"
                )
                table[template.id] = generic
            elif template.strategy == "generic":
                table[template.id] = generic
            else:
                table[template.id] = TemplateExtractor(template, config)
            logger.debug(f"[ExtractorFactory] {template.id} → {table[template.id].__class__.__name__}")

        self._extractors: Mapping[str, BaseExtractor] = MappingProxyType(table)

    def get_extractor(self, template_id: str) -> BaseExtractor:
        """
        Return the extractor for the given template id.

        Parameters
        ----------
        template_id : str
            Any id from the registry, or 'generic'

        Returns
        -------
        BaseExtractor subclass instance
        """
        extractor = self._extractors.get(template_id)
        if extractor is None:
            logger.warning(
                f"[ExtractorFactory] Unknown template '{template_id}', "
                f"falling back to GenericExtractor"
            )
            extractor = self._extractors[GENERIC_TEMPLATE_ID]
        return extractor

    @property
    def supported_templates(self) -> List[str]:
        """List of all template ids with a strategy."""
        return list(self._extractors.keys())
