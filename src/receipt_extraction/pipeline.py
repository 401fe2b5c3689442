"""
Integrated Receipt Extraction Pipeline
Combines OCR, sanitization, template detection, extraction, scoring and
assembly into a unified workflow.

Per-request states (forward only):

  Received → OcrComplete → Sanitized → TemplateSelected → FieldsExtracted
           → Scored → Assembled (Success | PartialFailure)

A failure while waiting for OCR or while sanitizing ends the request with a
fatal response. Every path returns a ReceiptParsingResponse.
"""

import uuid
from enum import Enum
from typing import Dict, Optional, Sequence

from loguru import logger

from receipt_extraction.confidence_scorer import ConfidenceScorer
from receipt_extraction.config import load_config
from receipt_extraction.exceptions import ConfigurationError, OcrServiceError, SanitizationError
from receipt_extraction.extractor import ExtractorFactory
from receipt_extraction.models import OcrRegion, ReceiptParsingResponse
from receipt_extraction.receipt_assembler import ReceiptAssembler
from receipt_extraction.sanitizer import sanitize
from receipt_extraction.template_detector import (
    TemplateDetector,
    TemplateRegistry,
    build_default_registry,
)
from receipt_extraction.vision_adapter import ImageInput, VisionAdapter


class PipelineStage(str, Enum):
    RECEIVED = "Received"
    OCR_COMPLETE = "OcrComplete"
    SANITIZED = "Sanitized"
    TEMPLATE_SELECTED = "TemplateSelected"
    FIELDS_EXTRACTED = "FieldsExtracted"
    SCORED = "Scored"
    ASSEMBLED = "Assembled"


_STAGE_ORDER = {stage: i for i, stage in enumerate(PipelineStage)}


class _RequestTrace:
    """Tracks one request through the stages and logs each transition."""

    def __init__(self):
        self.request_id = uuid.uuid4().hex[:8]
        self.stage = PipelineStage.RECEIVED
        logger.debug(f"[Pipeline:{self.request_id}] {self.stage.value}")

    def advance(self, stage: PipelineStage, detail: str = ""):
        if _STAGE_ORDER[stage] <= _STAGE_ORDER[self.stage]:
            raise RuntimeError(f"Illegal stage transition {self.stage.value} → {stage.value}")
        self.stage = stage
        logger.debug(f"[Pipeline:{self.request_id}] {stage.value} {detail}".rstrip())


class ReceiptPipeline:
    """
    End-to-end receipt extraction pipeline

    Workflow:
    1. OCR the image (Vision Adapter, with retry)
    2. Sanitize the text
    3. Detect the merchant template
    4. Extract fields with the template's strategy
    5. Score confidence and reconcile totals
    6. Assemble the response

    The registry, extractors, scorer and assembler are read-only after
    construction, so one pipeline serves concurrent requests.
    """

    def __init__(
        self,
        config: Optional[Dict] = None,
        registry: Optional[TemplateRegistry] = None,
        vision_adapter: Optional[VisionAdapter] = None,
    ):
        logger.info("Initializing Receipt Extraction Pipeline")
        self.config = config or load_config()
        self.registry = registry or build_default_registry(self.config)
        self.detector = TemplateDetector(
            self.registry, float(self.config['detection']['acceptance_threshold'])
        )
        self.extractors = ExtractorFactory(self.registry, self.config)
        self.scorer = ConfidenceScorer(self.config)
        self.assembler = ReceiptAssembler(self.config)
        self.vision_adapter = vision_adapter
        self.max_text_length = self.config['sanitizer'].get('max_length')
        logger.success("Receipt Extraction Pipeline ready")

    async def process_image(self, image: ImageInput) -> ReceiptParsingResponse:
        """
        Run every stage on one receipt image.

        Args:
            image: Encoded image bytes or a path to an image file

        Returns:
            ReceiptParsingResponse (never raises for OCR failures)
        """
        if self.vision_adapter is None:
            raise ConfigurationError("No OCR provider configured", "Pipeline")

        trace = _RequestTrace()
        try:
            raw = await self.vision_adapter.recognize(image)
        except OcrServiceError as e:
            logger.error(f"[Pipeline:{trace.request_id}] OCR failed: {e}")
            return self.assembler.failure([f"OCR failed: {e.message}"])

        trace.advance(PipelineStage.OCR_COMPLETE, f"({len(raw.regions)} regions)")
        return self._process(raw.text, raw.regions, trace)

    def process_text(self, text, regions: Sequence[OcrRegion] = ()) -> ReceiptParsingResponse:
        """
        Run stages 2-6 on text that was already OCR'd.

        Args:
            text:    OCR text (str, or UTF-8 bytes)
            regions: Optional OCR regions for confidence blending
        """
        trace = _RequestTrace()
        trace.advance(PipelineStage.OCR_COMPLETE, "(text supplied)")
        return self._process(text, regions, trace)

    def _process(self, text, regions: Sequence[OcrRegion], trace: _RequestTrace) -> ReceiptParsingResponse:
        try:
            sanitized = sanitize(text, self.max_text_length)
        except SanitizationError as e:
            logger.error(f"[Pipeline:{trace.request_id}] Sanitization failed: {e}")
            return self.assembler.failure([f"Text could not be processed: {e.message}"])
        trace.advance(PipelineStage.SANITIZED, f"({len(sanitized.lines)} lines)")

        detection = self.detector.detect(sanitized)
        trace.advance(PipelineStage.TEMPLATE_SELECTED, f"({detection.template.id}, {detection.score:.2f})")

        extractor = self.extractors.get_extractor(detection.template.id)
        extracted = extractor.extract(sanitized, regions)
        trace.advance(PipelineStage.FIELDS_EXTRACTED, f"({len(extracted.items)} items)")

        score = self.scorer.score(extracted)
        trace.advance(PipelineStage.SCORED, f"({score.confidence:.2f})")

        response = self.assembler.assemble(extracted, score, sanitized)
        trace.advance(
            PipelineStage.ASSEMBLED,
            "(Success)" if response.success else "(PartialFailure)",
        )
        return response
