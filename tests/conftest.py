"""
Shared pytest fixtures.

``batch`` is a small two-sample batch with the calibration already set;
``session`` opens it through in-memory stores. The YAML files under
``fixtures/demo_batch`` hold a three-sample night shift (one dust-failed
sample, one field blank) plus a matching draft and config.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from fibrecount.calibration import MicroscopeConstants
from fibrecount.models import Batch, Calibration, Sample
from fibrecount.session import AnalysisSession
from fibrecount.stores import InMemoryBatchStore, InMemoryDraftStore

DEMO_DIR = Path(__file__).parent / "fixtures" / "demo_batch"


@pytest.fixture
def demo_dir() -> Path:
    return DEMO_DIR


@pytest.fixture
def calibration() -> Calibration:
    return Calibration(microscope="PCM-1", test_slide="HSE-7", test_slide_line_count="5")


@pytest.fixture
def samples() -> tuple[Sample, ...]:
    return (
        Sample(
            id="s1",
            label="AM1",
            cowl_number="C1",
            start_time="09:00",
            end_time="09:30",
            average_flow_rate=2.0,
            filter_size="25mm",
        ),
        Sample(
            id="s2",
            label="AM2",
            cowl_number="C2",
            start_time="23:00",
            end_time="01:00",
            average_flow_rate=2.0,
            filter_size="25mm",
        ),
    )


@pytest.fixture
def batch(samples, calibration) -> Batch:
    return Batch(id="B1", samples=samples, calibration=calibration)


@pytest.fixture
def batch_store(batch) -> InMemoryBatchStore:
    return InMemoryBatchStore({batch.id: batch})


@pytest.fixture
def draft_store() -> InMemoryDraftStore:
    return InMemoryDraftStore()


@pytest.fixture
def session(batch, batch_store, draft_store) -> AnalysisSession:
    return AnalysisSession.load(batch.id, batch_store, draft_store, MicroscopeConstants())
