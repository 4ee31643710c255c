from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from typing import Any, Dict, List, Literal, Optional


class Joint(BaseModel):
    name: str
    x: float
    y: float
    z: Optional[float] = None
    # Pose extractors report either "confidence" or "visibility"; an unreported
    # confidence counts as untrusted
    confidence: float = Field(
        0.0, ge=0.0, le=1.0,
        validation_alias=AliasChoices("confidence", "visibility", "score"),
    )

    @field_validator("confidence", mode="before")
    @classmethod
    def _missing_confidence(cls, value):
        return 0.0 if value is None else value


class JointFrame(BaseModel):
    timestamp: Optional[float] = None  # seconds
    frame_index: Optional[int] = Field(
        None, validation_alias=AliasChoices("frame_index", "frameIndex", "frame")
    )
    joints: List[Joint] = Field(
        default_factory=list, validation_alias=AliasChoices("joints", "keypoints")
    )

    def joint_map(self) -> Dict[str, Joint]:
        """Joints keyed by name; the first occurrence of a name wins."""
        mapped: Dict[str, Joint] = {}
        for joint in self.joints:
            mapped.setdefault(joint.name, joint)
        return mapped


class AthleteInfo(BaseModel):
    name: Optional[str] = None
    level: Optional[Literal["MLB", "College", "HS", "Youth"]] = None
    age: Optional[int] = None
    bats: Literal["R", "L", "S"] = "R"
    throws: Optional[Literal["R", "L", "S"]] = None

    @property
    def lead_side(self) -> str:
        """Side facing the pitcher. Switch hitters are treated as right-handed."""
        return "right" if self.bats == "L" else "left"


class ScoringInputs(BaseModel):
    athlete: AthleteInfo = Field(default_factory=AthleteInfo)
    frames: List[JointFrame]
    video_id: Optional[str] = Field(None, validation_alias=AliasChoices("video_id", "videoId"))
    # Partial EngineConfig overrides for this call only
    config: Optional[Dict[str, Any]] = None

    # User-marked landmarks, as source frame indices
    manual_load_start_frame: Optional[int] = Field(
        None, validation_alias=AliasChoices("manual_load_start_frame", "manualLoadStartFrame")
    )
    manual_load_end_frame: Optional[int] = Field(
        None, validation_alias=AliasChoices("manual_load_end_frame", "manualLoadEndFrame")
    )
    manual_impact_frame: Optional[int] = Field(
        None, validation_alias=AliasChoices("manual_impact_frame", "manualImpactFrame")
    )
    manual_finish_frame: Optional[int] = Field(
        None, validation_alias=AliasChoices("manual_finish_frame", "manualFinishFrame")
    )

    def manual_landmarks(self) -> Dict[str, int]:
        landmarks = {
            "load_start_frame": self.manual_load_start_frame,
            "load_end_frame": self.manual_load_end_frame,
            "impact_frame": self.manual_impact_frame,
            "finish_frame": self.manual_finish_frame,
        }
        return {k: v for k, v in landmarks.items() if v is not None}

    @model_validator(mode="after")
    def _manual_landmarks_ordered(self):
        marked = list(self.manual_landmarks().values())
        if marked != sorted(marked):
            raise ValueError("Manual landmark frames must be non-decreasing: load start, load end, impact, finish")
        return self
