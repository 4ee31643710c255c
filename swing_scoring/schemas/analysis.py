from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Annotated, Dict, List, Literal, Optional, Union

from swing_scoring.schemas.joints import AthleteInfo

LeakName = Literal["groundFlow", "powerFlow", "barrelFlow", "none"]
LegacyLeakName = Literal["anchor", "engine", "whip", "none"]
Severity = Literal["none", "mild", "moderate", "severe"]


class _OutputModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True


class MomentumTransferScore(_OutputModel):
    score: int = Field(ge=0, le=100)
    goaty_band: int = Field(ge=-3, le=3)
    goaty_label: str
    confidence: float = Field(ge=0.0, le=1.0)


class SubScore(_OutputModel):
    score: int = Field(ge=0, le=100)
    label: str
    leak_severity: Severity


class FlowScores(_OutputModel):
    momentum_transfer: MomentumTransferScore
    ground_flow: SubScore
    power_flow: SubScore
    barrel_flow: SubScore
    # Legacy names, same scores under the older labels
    anchor: SubScore
    engine: SubScore
    whip: SubScore


class SegmentGaps(_OutputModel):
    pelvis_to_torso: float = Field(ge=0.0)
    torso_to_hands: float = Field(ge=0.0)
    hands_to_bat: float = Field(ge=0.0)


class TimingData(_OutputModel):
    ab_ratio: float
    load_duration_ms: float
    swing_duration_ms: float
    sequence_order: List[Literal["pelvis", "torso", "hands", "bat"]]
    segment_gaps_ms: SegmentGaps


class FlagsData(_OutputModel):
    main_leak: LeakName
    secondary_leak: LeakName
    sequence_broken: bool
    main_leak_legacy: LegacyLeakName
    secondary_leak_legacy: LegacyLeakName


class CoachSummary(_OutputModel):
    overall: str
    leak: str
    next_step: str


class CategoryBreakdown(_OutputModel):
    score: float
    leak_severity: Severity
    partials: Dict[str, float]
    unavailable: List[str]


class FeatureBreakdown(_OutputModel):
    name: str
    category: str
    value: Optional[float]
    available: bool
    reason: Optional[str] = None
    unit: str = ""
    window: List[int]


class SegmentPeakBreakdown(_OutputModel):
    segment: str
    frame: int
    time_ms: float
    peak_speed: float
    measured: bool


class PhaseBreakdown(_OutputModel):
    load_start_frame: int
    load_end_frame: int
    impact_frame: int
    finish_frame: int
    certainty: float
    method: str


class AnalysisBreakdown(_OutputModel):
    phases: PhaseBreakdown
    features: List[FeatureBreakdown]
    segment_peaks: List[SegmentPeakBreakdown]
    categories: Dict[str, CategoryBreakdown]
    momentum: Dict[str, float]
    inversions: int
    composite_raw: float
    composite_final: float
    caps_applied: List[str]
    penalties_applied: List[str]
    joint_confidence: float
    phase_certainty: float
    feature_availability: float
    data_quality: Literal["high", "medium", "low"]


class MomentumTransferAnalysis(_OutputModel):
    video_id: Optional[str] = None
    athlete: AthleteInfo
    scores: FlowScores
    timing: TimingData
    flags: FlagsData
    coach_summary: CoachSummary
    breakdown: AnalysisBreakdown


class AnalysisCompleted(_OutputModel):
    status: Literal["completed"] = "completed"
    analysis: MomentumTransferAnalysis


class AnalysisFailed(_OutputModel):
    status: Literal["failed"] = "failed"
    video_id: Optional[str] = None
    error_kind: str
    message: str


ScoringOutcome = Annotated[Union[AnalysisCompleted, AnalysisFailed], Field(discriminator="status")]
