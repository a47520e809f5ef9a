import shutil
from pathlib import Path

import pytest

from fibrecount.models import COMPLETE, Calibration, Draft
from fibrecount.stores import (
    InMemoryBatchStore,
    InMemoryDraftStore,
    StoreError,
    YamlBatchStore,
    YamlDraftStore,
)


# ---------- in memory ------------------------------------------------
def test_in_memory_batch_store(batch):
    store = InMemoryBatchStore({batch.id: batch})
    updated = store.update_batch(batch.id, {"analyst": "Jo", "status": COMPLETE})
    assert updated.analyst == "Jo"
    assert store.get_batch(batch.id).is_finalised
    assert batch.analyst == ""          # the passed-in record is unchanged


def test_unknown_batch_and_bad_patch(batch):
    store = InMemoryBatchStore({batch.id: batch})
    with pytest.raises(StoreError):
        store.get_batch("missing")
    with pytest.raises(StoreError, match="samples"):
        store.update_batch(batch.id, {"samples": ()})


def test_in_memory_draft_store():
    store = InMemoryDraftStore()
    assert store.get_draft("k") is None
    store.set_draft("k", Draft(batch_id="B1"))
    assert store.get_draft("k").batch_id == "B1"
    store.delete_draft("k")
    store.delete_draft("k")             # deleting twice is fine
    assert store.get_draft("k") is None


# ---------- YAML folders ---------------------------------------------
def test_yaml_batch_store(demo_dir: Path, tmp_path: Path):
    shutil.copy(demo_dir / "SHIFT-1.yml", tmp_path)
    store = YamlBatchStore(tmp_path)

    cal = Calibration("PCM-9", "HSE-1", "3")
    store.update_batch("SHIFT-1", {"calibration": cal})
    assert YamlBatchStore(tmp_path).get_batch("SHIFT-1").calibration == cal


def test_yaml_batch_store_missing(tmp_path: Path):
    with pytest.raises(StoreError):
        YamlBatchStore(tmp_path).get_batch("SHIFT-404")


def test_yaml_draft_store(tmp_path: Path):
    store = YamlDraftStore(tmp_path / "drafts")
    assert store.get_draft("analysis_progress") is None

    store.set_draft("analysis_progress", Draft(batch_id="B1", analyst="Jo"))
    assert store.path("analysis_progress").exists()
    assert store.get_draft("analysis_progress").analyst == "Jo"

    store.delete_draft("analysis_progress")
    assert store.get_draft("analysis_progress") is None


def test_corrupt_draft_is_treated_as_absent(tmp_path: Path):
    store = YamlDraftStore(tmp_path)
    store.path("k").write_text("just a string\n")
    assert store.get_draft("k") is None
