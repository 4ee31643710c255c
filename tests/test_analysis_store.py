import pytest

from swing_scoring.models.analysis import SwingAnalysisRecord
from swing_scoring.schemas.analysis import AnalysisFailed
from swing_scoring.services.analysis_store import append_coach_note, get_latest_analysis, save_outcome
from swing_scoring.services.scoring_engine import ScoringEngine


def test_save_completed_analysis(db_session, swing_inputs, engine_config):
    """Test a completed outcome is stored with its headline numbers."""
    outcome = ScoringEngine(engine_config).score(swing_inputs)
    record = save_outcome(db_session, outcome)

    assert record.id > 0
    assert record.status == "completed"
    assert record.video_id == "video-123"
    assert record.score == outcome.analysis.scores.momentum_transfer.score
    assert record.payload["scores"]["groundFlow"]["score"] == outcome.analysis.scores.ground_flow.score
    assert record.payload["scores"]["anchor"]["label"] == "Ground → Hips"
    assert record.coach_notes == []


def test_save_failed_analysis(db_session):
    """Test failures are persisted with their error kind, not a score."""
    outcome = AnalysisFailed(video_id="video-9", error_kind="insufficient_data", message="no wrists")
    record = save_outcome(db_session, outcome)

    assert record.status == "failed"
    assert record.error_kind == "insufficient_data"
    assert record.error_message == "no wrists"
    assert record.score is None


def test_append_coach_note(db_session):
    """Test notes are appended without touching the analysis."""
    record = save_outcome(db_session, AnalysisFailed(video_id="v", error_kind="phase_detection", message="m"))
    append_coach_note(db_session, record.id, "Re-film from the open side")
    updated = append_coach_note(db_session, record.id, "Check lighting")

    assert updated.coach_notes == ["Re-film from the open side", "Check lighting"]
    assert updated.error_kind == "phase_detection"


def test_append_note_missing_record(db_session):
    """Test appending to an unknown record fails."""
    with pytest.raises(LookupError):
        append_coach_note(db_session, 999, "note")


def test_get_latest_analysis(db_session):
    """Test the most recent record for a video is returned."""
    save_outcome(db_session, AnalysisFailed(video_id="clip", error_kind="phase_detection", message="first"))
    save_outcome(db_session, AnalysisFailed(video_id="clip", error_kind="insufficient_data", message="second"))

    latest = get_latest_analysis(db_session, "clip")
    assert latest.error_message == "second"
    assert get_latest_analysis(db_session, "unknown") is None
    assert db_session.query(SwingAnalysisRecord).count() == 2
