"""
Feature Extractor

Computes the kinematic quantities each flow category is scored on. Every
feature declares the joints and phase window it needs; when those are
missing the feature comes back unavailable with a reason instead of a value.

Lengths come in already expressed in torso lengths by the normalizer, angles
are degrees; no unit conversion happens here.
"""

import numpy as np
from typing import Callable, Dict, List, Optional, Tuple
import structlog
from dataclasses import dataclass, field

from swing_scoring.config import EngineConfig, SEGMENTS
from swing_scoring.errors import ConfigurationError
from swing_scoring.services.joint_normalizer import NormalizedFrames
from swing_scoring.services.kinematics import (
    angular_speed, center, joint_angle_deg, line_angle_deg, linear_speed,
    perpendicular_distance, smooth, wrap_deg,
)
from swing_scoring.services.phase_detector import SwingPhases

logger = structlog.get_logger()


@dataclass(frozen=True)
class SegmentPeak:
    segment: str
    frame: int
    time: float  # seconds
    peak_speed: float  # deg/s
    measured: bool = True  # False when the bat is proxied by the lead forearm


@dataclass(frozen=True)
class FeatureValue:
    name: str
    category: str
    value: Optional[float]
    available: bool
    reason: Optional[str] = None
    unit: str = ""
    window: Tuple[int, int] = (0, 0)


@dataclass
class ExtractedFeatures:
    values: Dict[str, FeatureValue]
    peaks: Dict[str, SegmentPeak]
    segment_speeds: Dict[str, np.ndarray] = field(default_factory=dict)
    pelvis_jerk: float = 0.0  # torso lengths / s^2

    def in_category(self, category: str) -> List[FeatureValue]:
        return [f for f in self.values.values() if f.category == category]

    @property
    def availability(self) -> float:
        """Share of configured features that could be computed"""
        if not self.values:
            return 0.0
        return sum(1 for f in self.values.values() if f.available) / len(self.values)


class _Unavailable(Exception):
    """Internal signal: a feature's inputs are missing"""


class FeatureExtractor:
    """Pure function of (normalized frames, phases, lead side) -> ExtractedFeatures"""

    def __init__(self, config: EngineConfig):
        self.config = config
        self._extractors: Dict[str, Callable] = {
            "pelvis_drift": self._pelvis_drift,
            "head_stillness": self._head_stillness,
            "front_leg_brace_ms": self._front_leg_brace,
            "hip_shoulder_separation_deg": self._hip_shoulder_separation,
            "pelvis_torso_gap_ms": self._pelvis_torso_gap,
            "spine_tilt_change_deg": self._spine_tilt_change,
            "ab_ratio": self._ab_ratio,
            "hand_path_depth": self._hand_path_depth,
            "bat_lag_deg": self._bat_lag,
            "barrel_acceleration": self._barrel_acceleration,
        }
        unknown = [
            name
            for weights in config.feature_weights.values()
            for name in weights
            if name not in self._extractors
        ]
        if unknown:
            raise ConfigurationError(f"No extractor for configured features: {unknown}")
        logger.info("FeatureExtractor initialized", features=len(self._extractors))

    def extract(self, frames: NormalizedFrames, phases: SwingPhases, lead_side: str) -> ExtractedFeatures:
        speeds, measured_bat = self.segment_speeds(frames, lead_side)
        peaks = self._segment_peaks(frames, phases, speeds, measured_bat)
        context = _Context(frames, phases, lead_side, speeds, peaks, measured_bat)

        values: Dict[str, FeatureValue] = {}
        for category, weights in self.config.feature_weights.items():
            for name in weights:
                threshold = self.config.thresholds[name]
                try:
                    value, window = self._extractors[name](context)
                    values[name] = FeatureValue(
                        name=name,
                        category=category,
                        value=float(value),
                        available=True,
                        unit=threshold.unit,
                        window=window,
                    )
                except _Unavailable as e:
                    values[name] = FeatureValue(
                        name=name,
                        category=category,
                        value=None,
                        available=False,
                        reason=str(e),
                        unit=threshold.unit,
                    )
                    logger.info("Feature unavailable", feature=name, reason=str(e))

        return ExtractedFeatures(
            values=values,
            peaks=peaks,
            segment_speeds=speeds,
            pelvis_jerk=self.pelvis_jerk(frames, phases),
        )

    def segment_speeds(self, frames: NormalizedFrames, lead_side: str) -> Tuple[Dict[str, np.ndarray], bool]:
        """Angular speed series (deg/s) for pelvis, torso, hands and bat"""
        t = frames.timestamps
        p = frames.positions
        window = self.config.phase_detection.smoothing_window
        elbow, wrist = p[f"{lead_side}_elbow"], p[f"{lead_side}_wrist"]

        speeds = {
            "pelvis": smooth(angular_speed(line_angle_deg(p["left_hip"], p["right_hip"]), t), window),
            "torso": smooth(angular_speed(line_angle_deg(p["left_shoulder"], p["right_shoulder"]), t), window),
            "hands": smooth(angular_speed(line_angle_deg(elbow, wrist), t), window),
        }
        measured_bat = frames.has("bat_head")
        if measured_bat:
            speeds["bat"] = smooth(angular_speed(line_angle_deg(wrist, p["bat_head"]), t), window)
        else:
            logger.info("Bat marker missing, bat segment proxied by lead forearm")
            speeds["bat"] = speeds["hands"].copy()
        return speeds, measured_bat

    def pelvis_jerk(self, frames: NormalizedFrames, phases: SwingPhases) -> float:
        """Mean absolute rate of change of pelvis-centre speed, load start to finish"""
        t = frames.timestamps
        pelvis = center(frames.positions["left_hip"], frames.positions["right_hip"])
        speed = smooth(linear_speed(pelvis, t), self.config.phase_detection.smoothing_window)
        change = np.abs(np.gradient(speed, t))
        return float(np.mean(change[phases.load_start_frame:phases.finish_frame + 1]))

    def _segment_peaks(self, frames, phases, speeds, measured_bat) -> Dict[str, SegmentPeak]:
        start, end = phases.load_start_frame, phases.finish_frame
        peaks = {}
        for segment in SEGMENTS:
            series = speeds[segment]
            frame = start + int(np.argmax(series[start:end + 1]))
            peaks[segment] = SegmentPeak(
                segment=segment,
                frame=frame,
                time=float(frames.timestamps[frame]),
                peak_speed=float(series[frame]),
                measured=measured_bat if segment == "bat" else True,
            )
        return peaks

    # ===== GROUND FLOW =====

    def _pelvis_drift(self, ctx):
        start, end = ctx.phases.load_start_frame, ctx.phases.load_end_frame
        pelvis_x = ctx.pelvis[start:end + 1, 0]
        drift = np.max(np.abs(pelvis_x - pelvis_x[0]))
        return float(drift), (start, end)

    def _head_stillness(self, ctx):
        start, end = ctx.phases.load_start_frame, ctx.phases.impact_frame
        nose = ctx.frames.positions["nose"]
        moved = np.linalg.norm(nose[end] - nose[start])
        return float(moved), (start, end)

    def _front_leg_brace(self, ctx):
        side = ctx.lead_side
        ctx.require(f"{side}_knee", f"{side}_ankle")
        p = ctx.frames.positions
        start, end = ctx.phases.load_end_frame, ctx.phases.finish_frame
        knee_angle = joint_angle_deg(p[f"{side}_hip"], p[f"{side}_knee"], p[f"{side}_ankle"])
        braced = start + int(np.argmax(knee_angle[start:end + 1]))
        impact = ctx.phases.impact_frame
        # Positive when the front leg locks out before contact
        return ctx.frames.time_ms(impact) - ctx.frames.time_ms(braced), (start, end)

    # ===== POWER FLOW =====

    def _hip_shoulder_separation(self, ctx):
        p = ctx.frames.positions
        start, end = ctx.phases.load_start_frame, ctx.phases.impact_frame
        hips = line_angle_deg(p["left_hip"], p["right_hip"])
        shoulders = line_angle_deg(p["left_shoulder"], p["right_shoulder"])
        separation = np.abs(wrap_deg(hips[start:end + 1] - shoulders[start:end + 1]))
        return float(np.max(separation)), (start, end)

    def _pelvis_torso_gap(self, ctx):
        pelvis, torso = ctx.peaks["pelvis"], ctx.peaks["torso"]
        gap = abs(torso.time - pelvis.time) * 1000.0
        return gap, (min(pelvis.frame, torso.frame), max(pelvis.frame, torso.frame))

    def _spine_tilt_change(self, ctx):
        p = ctx.frames.positions
        start, end = ctx.phases.load_end_frame, ctx.phases.impact_frame
        spine = center(p["left_shoulder"], p["right_shoulder"]) - ctx.pelvis
        # Lean from vertical, independent of the y-axis direction
        tilt = np.degrees(np.arctan2(spine[:, 0], np.abs(spine[:, 1])))
        return abs(float(tilt[end] - tilt[start])), (start, end)

    def _ab_ratio(self, ctx):
        ph = ctx.phases
        load = ctx.frames.time_ms(ph.load_end_frame) - ctx.frames.time_ms(ph.load_start_frame)
        swing = ctx.frames.time_ms(ph.impact_frame) - ctx.frames.time_ms(ph.load_end_frame)
        if swing <= 0:
            raise _Unavailable("swing duration is zero")
        return load / swing, (ph.load_start_frame, ph.impact_frame)

    # ===== BARREL FLOW =====

    def _hand_path_depth(self, ctx):
        start, end = ctx.phases.load_end_frame, ctx.phases.finish_frame
        if end <= start:
            raise _Unavailable("no frames between load end and finish")
        hand = ctx.frames.positions[f"{ctx.lead_side}_wrist"]
        depth = perpendicular_distance(hand[start:end + 1], hand[start], hand[end])
        return float(np.max(depth)), (start, end)

    def _bat_lag(self, ctx):
        ctx.require("bat_head")
        p = ctx.frames.positions
        side = ctx.lead_side
        frame = ctx.phases.load_end_frame
        forearm = line_angle_deg(p[f"{side}_elbow"], p[f"{side}_wrist"])
        bat = line_angle_deg(p[f"{side}_wrist"], p["bat_head"])
        return abs(float(wrap_deg(bat[frame] - forearm[frame]))), (frame, frame)

    def _barrel_acceleration(self, ctx):
        ctx.require("bat_head")
        t = ctx.frames.timestamps
        impact = ctx.phases.impact_frame
        window_start_time = t[impact] - self.config.barrel_window_ms / 1000.0
        start = int(np.searchsorted(t, window_start_time, side="left"))
        if impact - start < 1:
            raise _Unavailable("barrel window holds fewer than two frames")
        acceleration = np.gradient(ctx.speeds["bat"], t)
        return float(np.max(acceleration[start:impact + 1])), (start, impact)


@dataclass
class _Context:
    frames: NormalizedFrames
    phases: SwingPhases
    lead_side: str
    speeds: Dict[str, np.ndarray]
    peaks: Dict[str, SegmentPeak]
    measured_bat: bool

    @property
    def pelvis(self) -> np.ndarray:
        return center(self.frames.positions["left_hip"], self.frames.positions["right_hip"])

    def require(self, *joints: str) -> None:
        missing = [j for j in joints if not self.frames.has(j)]
        if missing:
            raise _Unavailable(f"missing joints: {', '.join(missing)}")
