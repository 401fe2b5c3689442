"""
Extractor package: strategy-based field extractors for receipts.

Each extractor handles the item extraction logic for one layout.
All shared fields (store, date, totals, payment) live in BaseExtractor
and are identical across strategies.

Usage (via factory)
-------------------
from receipt_extraction.extractor import ExtractorFactory
factory = ExtractorFactory(registry, config)
extractor = factory.get_extractor("supermart")
extracted = extractor.extract(sanitized)
"""

from receipt_extraction.extractor.base_extractor import BaseExtractor
from receipt_extraction.extractor.factory import ExtractorFactory
from receipt_extraction.extractor.generic_extractor import GenericExtractor
from receipt_extraction.extractor.template_extractor import TemplateExtractor

__all__ = ["BaseExtractor", "ExtractorFactory", "GenericExtractor", "TemplateExtractor"]
