"""
Vision Adapter
==============
Calls the configured OCR provider for one receipt image and returns its raw
text and regions.

This is the only stage that waits on anything: the provider runs in a worker
thread so the event loop keeps serving other requests.

Retry policy
------------
  transient failure  (timeout, connection error, OcrServiceError(transient=True))
      → retried up to ``max_attempts`` with delay
        min(base_delay × 2^(attempt-1), max_delay)
  permanent failure  (bad image, quota, credentials)
      → raised on the first attempt

Calls to the provider are serialized: engines such as PaddleOCR are not
thread-safe, and a timed-out call keeps running in its thread. An attempt
that was abandoned while queued behind such a call never reaches the
provider. Time spent queued counts toward the timeout.

Cancelling the awaiting task abandons the call; nothing is persisted.
"""

import asyncio
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Union

from loguru import logger

from receipt_extraction.exceptions import OcrServiceError
from receipt_extraction.models import RawOcrResult

ImageInput = Union[bytes, bytearray, str, Path]

_TRANSIENT_ERRORS = (ConnectionError, TimeoutError, asyncio.TimeoutError)


class OcrProvider(ABC):
    """A concrete OCR backend. ``recognize`` is blocking."""

    name = "ocr"

    @abstractmethod
    def recognize(self, image: bytes) -> RawOcrResult:
        """Run OCR on encoded image bytes (JPEG, PNG ...)."""


class VisionAdapter:
    """
    Usage
    -----
    adapter = VisionAdapter(PaddleOcrProvider(config), max_attempts=3)
    raw = await adapter.recognize(image_bytes)
    """

    def __init__(
        self,
        provider: OcrProvider,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 4.0,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.provider = provider
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._sleep = sleep
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, provider: OcrProvider, config: Dict) -> "VisionAdapter":
        retry = config['retry']
        return cls(
            provider,
            max_attempts=int(retry['max_attempts']),
            base_delay=float(retry['base_delay_seconds']),
            max_delay=float(retry['max_delay_seconds']),
            timeout=config['ocr'].get('timeout_seconds'),
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def recognize(self, image: ImageInput) -> RawOcrResult:
        """
        Recognise text in an image.

        Args:
            image: Encoded image bytes or a path to an image file

        Returns:
            RawOcrResult from the provider

        Raises:
            OcrServiceError: permanent failure, or transient failures
                             outlasting the retry budget
        """
        payload = self._load(image)
        provider_name = self.provider.name

        for attempt in range(1, self.max_attempts + 1):
            abandoned = threading.Event()
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(self._call, payload, abandoned),
                    timeout=self.timeout,
                )
                logger.info(
                    f"[VisionAdapter] {provider_name}: {len(result.regions)} regions, "
                    f"{len(result.text)} chars (attempt {attempt})"
                )
                return result
            except OcrServiceError as e:
                error = e
            except _TRANSIENT_ERRORS as e:
                error = OcrServiceError(
                    f"OCR provider '{provider_name}' did not respond: {type(e).__name__}",
                    transient=True,
                    original_error=e,
                )
            except Exception as e:
                error = OcrServiceError(
                    f"OCR provider '{provider_name}' failed", transient=False, original_error=e
                )
            finally:
                abandoned.set()

            if not error.transient:
                logger.error(f"[VisionAdapter] Permanent failure: {error}")
                raise error
            if attempt == self.max_attempts:
                logger.error(f"[VisionAdapter] Giving up after {attempt} attempts: {error}")
                raise error

            delay = self.backoff_delay(attempt)
            logger.warning(
                f"[VisionAdapter] Attempt {attempt}/{self.max_attempts} failed ({error.message}), "
                f"retrying in {delay:.2f}s"
            )
            await self._sleep(delay)

        raise AssertionError("unreachable")

    def _call(self, payload: bytes, abandoned: threading.Event) -> RawOcrResult:
        with self._lock:
            if abandoned.is_set():
                raise TimeoutError("attempt abandoned before the provider was free")
            return self.provider.recognize(payload)

    @staticmethod
    def _load(image: ImageInput) -> bytes:
        if isinstance(image, (bytes, bytearray)):
            payload = bytes(image)
        else:
            path = Path(image)
            try:
                payload = path.read_bytes()
            except OSError as e:
                raise OcrServiceError(f"Image not readable: {path}", transient=False, original_error=e)
        if not payload:
            raise OcrServiceError("Empty image payload", transient=False)
        return payload
