"""
Persistence for scoring outcomes. Completed and failed analyses are both
stored; coach notes are the only thing appended after creation.
"""

from typing import Optional, Union
import structlog
from sqlalchemy.orm import Session

from swing_scoring.models.analysis import SwingAnalysisRecord
from swing_scoring.schemas.analysis import AnalysisCompleted, AnalysisFailed

logger = structlog.get_logger()


def save_outcome(db: Session, outcome: Union[AnalysisCompleted, AnalysisFailed]) -> SwingAnalysisRecord:
    if isinstance(outcome, AnalysisCompleted):
        analysis = outcome.analysis
        mts = analysis.scores.momentum_transfer
        record = SwingAnalysisRecord(
            video_id=analysis.video_id,
            status=outcome.status,
            score=mts.score,
            goaty_band=mts.goaty_band,
            goaty_label=mts.goaty_label,
            confidence=mts.confidence,
            payload=analysis.model_dump(mode="json", by_alias=True),
            coach_notes=[],
        )
    else:
        record = SwingAnalysisRecord(
            video_id=outcome.video_id,
            status=outcome.status,
            error_kind=outcome.error_kind,
            error_message=outcome.message,
            coach_notes=[],
        )

    db.add(record)
    db.commit()
    db.refresh(record)

    logger.info("Analysis stored", record_id=record.id, video_id=record.video_id, status=record.status)
    return record


def append_coach_note(db: Session, record_id: int, note: str) -> SwingAnalysisRecord:
    record = db.query(SwingAnalysisRecord).filter(SwingAnalysisRecord.id == record_id).first()
    if record is None:
        raise LookupError(f"Analysis {record_id} not found")

    # Reassign so SQLAlchemy sees the JSON column change
    record.coach_notes = list(record.coach_notes or []) + [note]
    db.commit()
    db.refresh(record)

    logger.info("Coach note appended", record_id=record_id, notes=len(record.coach_notes))
    return record


def get_latest_analysis(db: Session, video_id: str) -> Optional[SwingAnalysisRecord]:
    return (
        db.query(SwingAnalysisRecord)
        .filter(SwingAnalysisRecord.video_id == video_id)
        .order_by(SwingAnalysisRecord.created_at.desc(), SwingAnalysisRecord.id.desc())
        .first()
    )
