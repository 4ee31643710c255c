from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, Text
from sqlalchemy.sql import func
from swing_scoring.database import Base


class SwingAnalysisRecord(Base):
    __tablename__ = "swing_analyses"

    id = Column(Integer, primary_key=True, index=True)
    video_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False)  # "completed" or "failed"
    error_kind = Column(String, nullable=True)  # ScoringError.kind
    error_message = Column(Text, nullable=True)
    score = Column(Integer, nullable=True)
    goaty_band = Column(Integer, nullable=True)
    goaty_label = Column(String, nullable=True)
    confidence = Column(Float, nullable=True)
    payload = Column(JSON, nullable=True)  # Full analysis, camelCase keys
    coach_notes = Column(JSON, nullable=True)  # List of appended notes
    created_at = Column(DateTime(timezone=True), server_default=func.now())
