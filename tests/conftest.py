from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from fstar_bridge.bridge import Bridge
from fstar_bridge.config import BridgeConfig
from tests.fakes import FakeProcessFactory, RecordingSink


@pytest.fixture
def config() -> BridgeConfig:
    return BridgeConfig(terminate_timeout=0.5)


@pytest.fixture
def process_factory() -> FakeProcessFactory:
    return FakeProcessFactory()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def bridge(config: BridgeConfig, sink: RecordingSink, process_factory: FakeProcessFactory):
    instance = Bridge(config, sink, process_factory=process_factory)
    yield instance
    instance.shutdown()
