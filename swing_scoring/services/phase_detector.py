"""
Swing Phase Detector

Locates the four swing landmarks from velocity heuristics on the pelvis and
lead-hand (or bat-head) markers:

* load start   - pelvis starts drifting laterally away from its address position
* load end     - quietest combined-body moment before the rapid acceleration
* impact       - peak hand (or bat) speed
* finish       - hand speed falls back below a trailing fraction of its peak

The detector only looks at NormalizedFrames, so it can be tuned or replaced
without touching the scoring stages.
"""

import numpy as np
from typing import Dict, List, Optional, Tuple
import structlog
from dataclasses import dataclass
from enum import Enum

from swing_scoring.config import PhaseDetectionConfig
from swing_scoring.errors import InvariantViolation, PhaseDetectionError
from swing_scoring.services.joint_normalizer import NormalizedFrames
from swing_scoring.services.kinematics import (
    center, linear_speed, local_maxima, local_minima, smooth,
)

logger = structlog.get_logger()

TIE_BREAK_CERTAINTY = 0.9
# Marker speed range below this (torso lengths per second) is a motionless clip
FLAT_SIGNAL_RANGE = 1e-6


class DetectionMethod(str, Enum):
    AUTO = "auto"
    RELAXED = "relaxed"
    MANUAL = "manual"
    MIXED = "manual+auto"


@dataclass(frozen=True)
class SwingPhases:
    """Landmark positions into the normalized frame sequence"""
    load_start_frame: int
    load_end_frame: int
    impact_frame: int
    finish_frame: int
    certainty: float = 1.0
    method: str = DetectionMethod.AUTO.value

    def __post_init__(self):
        order = (self.load_start_frame, self.load_end_frame, self.impact_frame, self.finish_frame)
        if list(order) != sorted(order) or self.load_start_frame < 0:
            raise InvariantViolation(
                "Swing phases out of order",
                {"phases": order, "method": self.method},
            )
        if not 0.0 <= self.certainty <= 1.0:
            raise InvariantViolation("Phase certainty outside [0, 1]", {"certainty": self.certainty})

    def as_dict(self) -> Dict[str, int]:
        return {
            "load_start_frame": self.load_start_frame,
            "load_end_frame": self.load_end_frame,
            "impact_frame": self.impact_frame,
            "finish_frame": self.finish_frame,
        }


@dataclass
class _Signals:
    hand_speed: np.ndarray
    marker_speed: np.ndarray
    combined_speed: np.ndarray
    pelvis_x: np.ndarray


class PhaseDetector:
    """Detects load start, load end, impact and finish"""

    def __init__(self, config: PhaseDetectionConfig):
        self.config = config
        logger.info(
            "PhaseDetector initialized",
            impact_marker=config.impact_marker,
            max_refinement_passes=config.max_refinement_passes,
        )

    def detect(self, frames: NormalizedFrames, lead_side: str, relaxed: bool = False) -> SwingPhases:
        cfg = self.config
        n = frames.n_frames
        wrist = f"{lead_side}_wrist"

        max_low_confidence = (
            cfg.relaxed_low_confidence_fraction if relaxed else cfg.max_low_confidence_fraction
        )
        prominence = cfg.min_peak_prominence * (cfg.relaxed_prominence_factor if relaxed else 1.0)

        low_confidence_fraction = float(frames.interpolated[wrist].mean())
        if low_confidence_fraction > max_low_confidence:
            raise PhaseDetectionError(
                "Too many low-confidence lead-hand frames to locate impact",
                {"low_confidence_fraction": round(low_confidence_fraction, 3), "relaxed": relaxed},
            )

        signals = self._build_signals(frames, lead_side)
        midpoint = (frames.timestamps[0] + frames.timestamps[-1]) / 2.0

        search_start = 0
        for attempt in range(cfg.max_refinement_passes):
            landmarks, tie_used = self._locate(signals, frames.timestamps, midpoint, search_start, prominence)
            load_start, load_end, impact, finish = landmarks

            if load_end < impact:
                certainty = 1.0 - low_confidence_fraction
                if tie_used:
                    certainty *= TIE_BREAK_CERTAINTY
                if relaxed:
                    certainty *= cfg.relaxed_certainty_factor
                phases = SwingPhases(
                    load_start_frame=load_start,
                    load_end_frame=load_end,
                    impact_frame=impact,
                    finish_frame=finish,
                    certainty=float(np.clip(certainty, 0.0, 1.0)),
                    method=(DetectionMethod.RELAXED if relaxed else DetectionMethod.AUTO).value,
                )
                logger.info(
                    "Swing phases detected",
                    load_start=load_start,
                    load_end=load_end,
                    impact=impact,
                    finish=finish,
                    certainty=round(phases.certainty, 3),
                    passes=attempt + 1,
                    relaxed=relaxed,
                )
                return phases

            # Peak precedes any load: treat it as a spike and search after it
            logger.info("Refining phase search window", attempt=attempt + 1, rejected_impact=impact)
            search_start = impact + 1
            if search_start >= n - 1:
                break

        raise PhaseDetectionError(
            "Could not order swing landmarks within the refinement limit",
            {"passes": cfg.max_refinement_passes, "relaxed": relaxed},
        )

    def apply_manual(
        self,
        frames: NormalizedFrames,
        manual: Dict[str, int],
        detected: Optional[SwingPhases] = None,
    ) -> SwingPhases:
        """
        Override landmarks with user-marked source frames. Without a detected
        result all four landmarks must be supplied.
        """
        marked = {key: frames.position_of(value) for key, value in manual.items()}
        if detected is None:
            return SwingPhases(certainty=1.0, method=DetectionMethod.MANUAL.value, **marked)

        merged = detected.as_dict()
        merged.update(marked)
        order = [merged[k] for k in ("load_start_frame", "load_end_frame", "impact_frame", "finish_frame")]
        if order != sorted(order):
            raise PhaseDetectionError(
                "Manual landmarks conflict with detected phases",
                {"manual": manual, "detected": detected.as_dict()},
            )
        return SwingPhases(certainty=detected.certainty, method=DetectionMethod.MIXED.value, **merged)

    def _build_signals(self, frames: NormalizedFrames, lead_side: str) -> _Signals:
        t = frames.timestamps
        window = self.config.smoothing_window

        hand_speed = smooth(linear_speed(frames.positions[f"{lead_side}_wrist"], t), window)
        pelvis = center(frames.positions["left_hip"], frames.positions["right_hip"])
        shoulders = center(frames.positions["left_shoulder"], frames.positions["right_shoulder"])
        pelvis_speed = linear_speed(pelvis, t)
        shoulder_speed = linear_speed(shoulders, t)

        combined = smooth((pelvis_speed + shoulder_speed + hand_speed) / 3.0, window)

        marker_speed = hand_speed
        if self.config.impact_marker == "bat":
            if frames.has("bat_head"):
                marker_speed = smooth(linear_speed(frames.positions["bat_head"], t), window)
            else:
                logger.warning("Bat marker unavailable, using lead hand for impact")

        # Lateral drift; positions are already in torso lengths
        pelvis_x = pelvis[:, 0] - pelvis[0, 0]

        return _Signals(
            hand_speed=hand_speed,
            marker_speed=marker_speed,
            combined_speed=combined,
            pelvis_x=pelvis_x,
        )

    def _locate(
        self,
        signals: _Signals,
        timestamps: np.ndarray,
        midpoint: float,
        search_start: int,
        prominence: float,
    ) -> Tuple[Tuple[int, int, int, int], bool]:
        cfg = self.config
        n = len(timestamps)

        # Load start
        drifting = np.nonzero(np.abs(signals.pelvis_x[search_start:]) > cfg.load_displacement_threshold)[0]
        load_start = int(search_start + drifting[0]) if len(drifting) else search_start

        # Impact
        marker = signals.marker_speed
        if float(np.ptp(marker)) < FLAT_SIGNAL_RANGE:
            raise PhaseDetectionError(
                "Impact marker never moves; no swing to locate",
                {"speed_range": float(np.ptp(marker))},
            )
        candidates = local_maxima(marker, load_start, n - 1)
        if not candidates:
            candidates = [load_start + int(np.argmax(marker[load_start:]))]
        impact, impact_tie = self._pick_extremum(marker, candidates, timestamps, midpoint, maximum=True)

        peak = float(marker[impact])
        if impact == 0 or impact == n - 1:
            raise PhaseDetectionError(
                "Speed peak on the clip boundary; swing appears truncated",
                {"impact": impact, "frames": n},
            )
        median_speed = float(np.median(marker))
        if peak <= 0 or peak < prominence * median_speed:
            raise PhaseDetectionError(
                "Speed peak not distinguishable from baseline motion",
                {"peak": round(peak, 4), "median": round(median_speed, 4)},
            )
        if peak < cfg.min_peak_speed:
            raise PhaseDetectionError(
                "Speed peak too slow to be a swing",
                {"peak": round(peak, 4), "min_peak_speed": cfg.min_peak_speed},
            )

        # Load end: quietest moment before the launch
        combined = signals.combined_speed
        launch_level = cfg.launch_speed_fraction * combined[impact]
        rising = np.nonzero(combined[load_start:impact + 1] >= launch_level)[0]
        onset = load_start + int(rising[0]) if len(rising) else impact

        minima = local_minima(combined, load_start, onset)
        if minima:
            load_end, load_tie = self._pick_extremum(combined, minima, timestamps, midpoint, maximum=False)
        else:
            load_end = load_start + int(np.argmin(combined[load_start:onset + 1]))
            load_tie = False
        load_end = max(load_end, load_start)

        # Finish
        hand = signals.hand_speed
        hand_peak = float(np.max(hand[load_start:]))
        trailing = np.nonzero(hand[impact + 1:] < cfg.finish_speed_fraction * hand_peak)[0]
        finish = impact + 1 + int(trailing[0]) if len(trailing) else n - 1

        return (load_start, load_end, impact, finish), impact_tie or load_tie

    def _pick_extremum(
        self,
        values: np.ndarray,
        candidates: List[int],
        timestamps: np.ndarray,
        midpoint: float,
        maximum: bool,
    ) -> Tuple[int, bool]:
        """
        Best candidate; candidates within the tie tolerance of the best are
        resolved toward the clip's temporal midpoint.
        """
        scores = values[candidates]
        best = float(np.max(scores) if maximum else np.min(scores))
        tolerance = self.config.tie_tolerance * float(np.ptp(values))
        tied = [c for c in candidates if abs(values[c] - best) <= tolerance]
        if len(tied) <= 1:
            return candidates[int(np.argmax(scores) if maximum else np.argmin(scores))], False
        chosen = min(tied, key=lambda c: (abs(timestamps[c] - midpoint), c))
        return chosen, True
