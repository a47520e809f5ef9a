import datetime as dt
import logging

import pytest

from fibrecount.models import COMPLETE, EMPTY, Batch, Calibration, Draft, Sample
from fibrecount.options import eligible_analysts
from fibrecount.session import (
    AnalysisSession,
    FinaliseError,
    LoadError,
    ReadOnlyError,
    SaveError,
    SessionError,
)
from fibrecount.stores import InMemoryBatchStore, InMemoryDraftStore, StoreError

KEY = "analysis_progress"


class BrokenBatchStore(InMemoryBatchStore):
    def update_batch(self, batch_id, patch):
        raise StoreError("server unavailable")


class BrokenDraftStore(InMemoryDraftStore):
    def set_draft(self, key, draft):
        raise StoreError("quota exceeded")


def _count(session, sample_id, fibres, fields):
    """Enter *fields* cells row-major, the first *fibres* of them holding one fibre."""
    for i in range(fields):
        session.edit_cell(sample_id, i // 20, i % 20, "1" if i < fibres else "0")


def _ready(session):
    for s in session.samples:
        session.set_quality(s.id, edges_distribution="pass", background_dust="low")
        session.fill_zeros(s.id)


# ---------- loading --------------------------------------------------
def test_load_failure(draft_store):
    with pytest.raises(LoadError):
        AnalysisSession.load("missing", InMemoryBatchStore(), draft_store)


def test_fresh_session_has_no_changes(session):
    assert not session.has_unsaved_changes
    assert set(session.working.analyses) == {"s1", "s2"}


def test_draft_for_other_batch_is_ignored(batch, batch_store, draft_store):
    draft_store.set_draft(KEY, Draft(batch_id="OTHER", analyses={"s1": {"comment": "x"}}))
    session = AnalysisSession.load(batch.id, batch_store, draft_store)
    assert session.analysis("s1").comment == ""
    assert not session.has_unsaved_changes


def test_edits_survive_a_reload(batch, batch_store, draft_store, session):
    session.set_quality("s1", edges_distribution="pass", background_dust="low")
    session.edit_cell("s1", 0, 0, "3")

    resumed = AnalysisSession.load(batch.id, batch_store, draft_store)
    assert resumed.grid.get("s1")[0][0] == "3"
    assert resumed.analysis("s1").fibres_counted == 3.0
    assert resumed.has_unsaved_changes


# ---------- editing --------------------------------------------------
def test_accepted_edit_writes_draft(session, draft_store):
    res = session.edit_cell("s1", 0, 0, "3")
    assert res.accepted and res.focus == (0, 1)
    assert draft_store.get_draft(KEY).analyses["s1"]["fibre_counts"][0][0] == "3"
    assert session.has_unsaved_changes


def test_rejected_edit_writes_nothing(session, draft_store):
    res = session.edit_cell("s1", 0, 0, "x")
    assert not res.accepted
    assert draft_store.get_draft(KEY) is None


def test_space_key_through_session(session):
    res = session.press_key("s1", 0, 15, " ")
    assert res.focus == (1, 5)
    assert session.analysis("s1").fields_counted == 10


def test_grid_locked_until_calibration_set(samples, draft_store):
    store = InMemoryBatchStore({"B1": Batch(id="B1", samples=samples)})
    session = AnalysisSession.load("B1", store, draft_store)

    assert not session.edit_cell("s1", 0, 0, "1").accepted
    session.set_calibration(microscope="PCM-1", test_slide="HSE-7", test_slide_line_count=5)
    assert session.working.calibration.test_slide_line_count == "5"
    assert session.edit_cell("s1", 0, 0, "1").accepted


def test_uncountable_sample_refuses_grid_input(session):
    session.set_quality("s1", edges_distribution="fail", background_dust="low")
    assert not session.is_editable("s1")
    assert not session.press_key("s1", 0, 0, "2").accepted
    with pytest.raises(SessionError):
        session.fill_zeros("s1")


def test_bad_quality_value(session):
    with pytest.raises(ValueError):
        session.set_quality("s1", background_dust="dirty")


def test_clear_flow(session, draft_store):
    session.fill_zeros("s1")
    session.request_clear("s1")
    assert session.analysis("s1").fields_counted == 100
    session.cancel_clear()
    assert session.confirm_clear() is None

    session.request_clear("s1")
    session.confirm_clear()
    assert session.analysis("s1").fields_counted == 0
    assert draft_store.get_draft(KEY).analyses["s1"]["fields_counted"] == 0


def test_count_entry_needs_quality_flags(session):
    with pytest.raises(SessionError):
        session.open_counts("s1")


def test_cancelled_count_entry_restores_grid(session):
    session.set_quality("s1", edges_distribution="pass", background_dust="low")
    session.edit_cell("s1", 0, 0, "1")

    session.open_counts("s1")
    session.edit_cell("s1", 0, 1, "4")
    session.press_key("s1", 1, 0, " ")
    session.cancel_counts("s1")

    assert session.grid.get("s1")[0][:2] == ("1", EMPTY)
    assert session.analysis("s1").fibres_counted == 1.0
    assert session.analysis("s1").fields_counted == 1


def test_closed_count_entry_keeps_edits(session):
    session.set_quality("s1", edges_distribution="pass", background_dust="low")
    session.open_counts("s1")
    session.edit_cell("s1", 0, 0, "2")
    session.close_counts("s1")
    session.cancel_counts("s1")         # nothing left to restore
    assert session.grid.get("s1")[0][0] == "2"


def test_draft_write_failure_does_not_stop_editing(batch, batch_store, caplog):
    session = AnalysisSession.load(batch.id, batch_store, BrokenDraftStore())
    with caplog.at_level(logging.WARNING):
        res = session.edit_cell("s1", 0, 0, "1")
    assert res.accepted
    assert "quota exceeded" in caplog.text


# ---------- derived values -------------------------------------------
def test_concentration_for_sample(session):
    session.set_quality("s1", edges_distribution="pass", background_dust="low")
    _count(session, "s1", fibres=8, fields=50)

    info = session.microscope_constant("s1")
    assert info.constant == 50000
    result = session.concentration("s1")
    assert result.calculated == 0.1667
    assert result.reported == "0.167"


def test_field_blank_warning(calibration, draft_store):
    blank = Sample(id="fb", label="FB-1", is_field_blank=True)
    store = InMemoryBatchStore({"B1": Batch(id="B1", samples=(blank,), calibration=calibration)})
    session = AnalysisSession.load("B1", store, draft_store)
    session.set_quality("fb", edges_distribution="pass", background_dust="low")

    session.edit_cell("fb", 0, 0, "2")
    assert session.field_blank_warnings() == []
    session.edit_cell("fb", 0, 1, "/")
    assert session.field_blank_warnings() == ["FB-1"]


# ---------- save / finalise ------------------------------------------
def test_save_persists_and_drops_draft(session, batch_store, draft_store):
    session.set_quality("s1", edges_distribution="pass", background_dust="low")
    session.fill_zeros("s1")
    session.save()

    stored = batch_store.get_batch("B1")
    assert stored.analyses["s1"].fields_counted == 100
    assert stored.analyses["s1"].reported_concentration == "0.083"
    assert stored.status != COMPLETE
    assert draft_store.get_draft(KEY) is None
    assert not session.has_unsaved_changes


def test_failed_save_keeps_draft(batch, draft_store):
    session = AnalysisSession.load(batch.id, BrokenBatchStore({batch.id: batch}), draft_store)
    session.edit_cell("s1", 0, 0, "1")
    before = draft_store.get_draft(KEY)

    with pytest.raises(SaveError):
        session.save()
    assert draft_store.get_draft(KEY) == before
    assert session.has_unsaved_changes


def test_finalise_requires_complete_batch(session, batch_store):
    session.set_analyst("Jo Bloggs")
    with pytest.raises(FinaliseError, match="incomplete"):
        session.finalise()
    assert not batch_store.get_batch("B1").is_finalised


def test_finalise_requires_analyst(session):
    _ready(session)
    assert session.completeness.is_complete
    with pytest.raises(FinaliseError, match="Analyst"):
        session.finalise()


def test_finalise(session, batch_store, draft_store):
    _ready(session)
    session.set_analyst("Jo Bloggs")
    session.finalise(today=dt.date(2026, 10, 19))

    stored = batch_store.get_batch("B1")
    assert stored.status == COMPLETE
    assert stored.analysis_date == "2026-10-19"
    assert stored.analyst == "Jo Bloggs"
    assert draft_store.get_draft(KEY) is None
    assert session.read_only

    with pytest.raises(ReadOnlyError):
        session.set_comment("s1", "late note")
    assert not session.edit_cell("s1", 0, 0, "1").accepted


def test_failed_finalise_leaves_batch_in_progress(batch, draft_store):
    store = BrokenBatchStore({batch.id: batch})
    session = AnalysisSession.load(batch.id, store, draft_store)
    _ready(session)
    session.set_analyst("Jo Bloggs")

    with pytest.raises(SaveError):
        session.finalise()
    assert not store.get_batch(batch.id).is_finalised
    assert not session.read_only
    assert draft_store.get_draft(KEY) is not None


def test_discard_draft(session, draft_store):
    session.set_comment("s1", "resume later")
    assert draft_store.get_draft(KEY) is not None
    session.discard_draft()
    assert draft_store.get_draft(KEY) is None


def test_finalised_batch_is_read_only(samples, draft_store):
    done = Batch(id="B9", samples=samples, calibration=Calibration("a", "b", "1"), status=COMPLETE)
    session = AnalysisSession.load("B9", InMemoryBatchStore({"B9": done}), draft_store)
    with pytest.raises(ReadOnlyError):
        session.set_analyst("Someone")
    with pytest.raises(ReadOnlyError):
        session.save()


def test_clear_refused_once_sample_failed(session):
    session.fill_zeros("s1")
    session.request_clear("s1")
    session.set_quality("s1", background_dust="fail")

    with pytest.raises(SessionError):
        session.confirm_clear()
    assert session.grid.pending_clear is None
    assert session.analysis("s1").fields_counted == 100


def test_analyst_must_be_eligible(batch, batch_store, draft_store):
    users = [
        {"first_name": "Jo", "last_name": "Bloggs", "is_active": True,
         "lab_approvals": {"fibre_counting": True}},
        {"first_name": "Old", "last_name": "Hand", "is_active": False,
         "lab_approvals": {"fibre_counting": True}},
    ]
    session = AnalysisSession.load(
        batch.id, batch_store, draft_store, analysts=eligible_analysts(users)
    )
    with pytest.raises(ValueError):
        session.set_analyst("Old Hand")
    session.set_analyst("Jo Bloggs")
    assert session.working.analyst == "Jo Bloggs"
    assert draft_store.get_draft(KEY).analyst == "Jo Bloggs"
