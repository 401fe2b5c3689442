"""
Shared fixtures for receipt extraction tests
"""

import sys
from pathlib import Path

import pytest

# Add project root (main.py) and src to path
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(ROOT / "src"))

from receipt_extraction.config import default_config
from receipt_extraction.pipeline import ReceiptPipeline
from receipt_extraction.vision_adapter import OcrProvider


SCENARIO_A = "SUPERMART\n2 x Milk 3.50\nBread 2.00\nSUBTOTAL 9.00\nTAX 0.72\nTOTAL 9.72"


class ScriptedProvider(OcrProvider):
    """Returns (or raises) the queued outcomes in order, one per call."""

    name = "scripted"

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def recognize(self, image):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    """Stands in for asyncio.sleep and records the requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def config():
    """Built-in configuration, console logging only"""
    cfg = default_config()
    cfg['logging']['file'] = None
    return cfg


@pytest.fixture
def pipeline(config):
    """Text-only pipeline with the built-in templates"""
    return ReceiptPipeline(config)


@pytest.fixture
def scenario_a():
    return SCENARIO_A


@pytest.fixture
def make_provider():
    """Factory for providers that replay a fixed list of outcomes"""
    return ScriptedProvider


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
