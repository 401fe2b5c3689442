"""
OCR Providers
=============
Concrete OCR backends behind the OcrProvider interface.

  'paddle'         PaddleOCR, runs locally       pip install 'receipt-extraction[paddle]'
  'google_vision'  Google Cloud Vision API       pip install 'receipt-extraction[vision]'

Both import their engine lazily so the API can start (and be tested) with
neither installed.
"""

import os
from typing import Any, Dict, List, Optional

from loguru import logger

from receipt_extraction.config import default_config
from receipt_extraction.exceptions import OcrServiceError
from receipt_extraction.models import BoundingBox, OcrRegion, RawOcrResult
from receipt_extraction.vision_adapter import OcrProvider


def _bbox_from_points(points) -> Optional[BoundingBox]:
    """[[x1,y1],[x2,y2],[x3,y3],[x4,y4]] → BoundingBox"""
    if not points:
        return None
    xs = [max(0.0, float(p[0])) for p in points]
    ys = [max(0.0, float(p[1])) for p in points]
    return BoundingBox(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))


def _mean_confidence(regions: List[OcrRegion]) -> Optional[float]:
    if not regions:
        return None
    return round(sum(r.confidence for r in regions) / len(regions), 3)


class PaddleOcrProvider(OcrProvider):
    """
    Receipt OCR powered by PaddleOCR

    The model is loaded once at construction; recognize() decodes the image
    with OpenCV and runs detection + recognition + angle classification.
    """

    name = "paddle"

    def __init__(self, config: Optional[Dict] = None):
        # Fix for Windows OneDNN compatibility issue
        os.environ.setdefault('FLAGS_use_mkldnn', 'False')
        os.environ.setdefault('FLAGS_enable_new_ir', 'False')

        try:
            from paddleocr import PaddleOCR
            import cv2
            import numpy as np
        except ImportError as e:
            logger.error(f"Missing dependency: {e}")
            logger.info("Install with: pip install 'receipt-extraction[paddle]'")
            raise

        self._cv2 = cv2
        self._np = np
        ocr_config = (config or default_config())['ocr']

        init_params = {
            'use_angle_cls': ocr_config.get('use_angle_cls', True),
            'lang': ocr_config.get('lang', 'en'),
            'use_gpu': ocr_config.get('use_gpu', False),
            'det_db_thresh': ocr_config.get('det_db_thresh', 0.15),
            'drop_score': ocr_config.get('drop_score', 0.25),
            'use_space_char': True,
            'show_log': False,
        }
        for key in ('det_db_unclip_ratio', 'det_limit_side_len', 'det_db_box_thresh'):
            if key in ocr_config:
                init_params[key] = ocr_config[key]

        logger.info(f"[PaddleOcrProvider] Initializing PaddleOCR (lang={init_params['lang']}, "
                    f"gpu={init_params['use_gpu']}, det_db_thresh={init_params['det_db_thresh']})")
        self.ocr = PaddleOCR(**init_params)
        self.language = init_params['lang']
        logger.success("[PaddleOcrProvider] PaddleOCR model loaded")

    def recognize(self, image: bytes) -> RawOcrResult:
        img = self._cv2.imdecode(self._np.frombuffer(image, dtype=self._np.uint8), self._cv2.IMREAD_COLOR)
        if img is None:
            raise OcrServiceError("Could not decode image", transient=False, component="PaddleOcrProvider")

        try:
            result = self.ocr.ocr(img, cls=True)
        except MemoryError as e:
            raise OcrServiceError("PaddleOCR ran out of memory", transient=True,
                                  component="PaddleOcrProvider", original_error=e)

        if not result or not result[0]:
            logger.warning("[PaddleOcrProvider] No text detected")
            return RawOcrResult(text="", regions=(), confidence=0.0, language=self.language)

        regions = self._parse_ocr_result(result[0])
        return RawOcrResult(
            text="\n".join(r.text for r in regions),
            regions=tuple(regions),
            confidence=_mean_confidence(regions),
            language=self.language,
        )

    @staticmethod
    def _parse_ocr_result(result: List) -> List[OcrRegion]:
        """Parse PaddleOCR [box, (text, confidence)] lines into regions"""
        regions = []
        for line in result:
            regions.append(OcrRegion(
                text=line[1][0],
                confidence=min(1.0, max(0.0, round(float(line[1][1]), 3))),
                bounding_box=_bbox_from_points(line[0]),
            ))
        return regions


class GoogleVisionProvider(OcrProvider):
    """
    Google Cloud Vision ``document_text_detection``.

    One region per text block. API errors are split into transient
    (unavailable, deadline exceeded, internal) and permanent (everything
    else, including quota exhaustion and bad credentials).
    """

    name = "google_vision"

    # google.rpc.Code values returned inside a successful HTTP response
    _TRANSIENT_CODES = {4, 13, 14}   # DEADLINE_EXCEEDED, INTERNAL, UNAVAILABLE

    def __init__(self, credentials_path: Optional[str] = None, client: Any = None):
        try:
            from google.api_core import exceptions as google_exceptions
            from google.cloud import vision
        except ImportError as e:
            logger.error(f"Missing dependency: {e}")
            logger.info("Install with: pip install 'receipt-extraction[vision]'")
            raise

        self._vision = vision
        self._transient_exceptions = (
            google_exceptions.ServiceUnavailable,
            google_exceptions.DeadlineExceeded,
            google_exceptions.InternalServerError,
            google_exceptions.GatewayTimeout,
        )
        self._api_error = google_exceptions.GoogleAPICallError

        if client is not None:
            self.client = client
        elif credentials_path:
            self.client = vision.ImageAnnotatorClient.from_service_account_file(credentials_path)
        else:
            self.client = vision.ImageAnnotatorClient()
        logger.info("[GoogleVisionProvider] Client initialized")

    def recognize(self, image: bytes) -> RawOcrResult:
        try:
            response = self.client.document_text_detection(image=self._vision.Image(content=image))
        except self._api_error as e:
            raise OcrServiceError(
                f"Google Vision request failed: {e.message}",
                transient=isinstance(e, self._transient_exceptions),
                component="GoogleVisionProvider",
                original_error=e,
            )

        if response.error.message:
            raise OcrServiceError(
                f"Google Vision API error: {response.error.message}",
                transient=response.error.code in self._TRANSIENT_CODES,
                component="GoogleVisionProvider",
            )

        annotation = response.full_text_annotation
        regions = self._parse_blocks(annotation)
        language = None
        if annotation.pages and annotation.pages[0].property.detected_languages:
            language = annotation.pages[0].property.detected_languages[0].language_code

        return RawOcrResult(
            text=annotation.text or "",
            regions=tuple(regions),
            confidence=_mean_confidence(regions),
            language=language,
        )

    @staticmethod
    def _parse_blocks(annotation) -> List[OcrRegion]:
        regions = []
        for page in annotation.pages:
            for block in page.blocks:
                words = [
                    "".join(symbol.text for symbol in word.symbols)
                    for paragraph in block.paragraphs
                    for word in paragraph.words
                ]
                text = " ".join(w for w in words if w)
                if not text:
                    continue
                points = [(v.x, v.y) for v in block.bounding_box.vertices]
                regions.append(OcrRegion(
                    text=text,
                    confidence=min(1.0, max(0.0, float(block.confidence))),
                    bounding_box=_bbox_from_points(points),
                ))
        return regions


def create_provider(config: Optional[Dict] = None) -> OcrProvider:
    """Instantiate the provider named by ``ocr.provider``."""
    ocr_config = (config or default_config())['ocr']
    provider = ocr_config.get('provider', 'paddle')
    if provider == 'paddle':
        return PaddleOcrProvider(config)
    if provider == 'google_vision':
        return GoogleVisionProvider(ocr_config.get('credentials_path'))
    raise ValueError(f"Unknown OCR provider '{provider}'. Use 'paddle' or 'google_vision'")
