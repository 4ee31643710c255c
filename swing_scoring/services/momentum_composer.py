"""
Momentum Transfer Composer

Scores how well energy is handed from pelvis to torso to hands to bat:
firing order and gaps between segment peaks, speed gained at each hand-off,
pelvis smoothness and A-B-C tempo. That score is folded together with the
flow categories into the composite. Calibration caps keep good positions
without good sequencing out of the elite bands.
"""

import numpy as np
from typing import Dict, List, Optional
import structlog
from dataclasses import dataclass, field

from swing_scoring.config import EngineConfig, FLOW_CATEGORIES, GAP_THRESHOLD_KEYS
from swing_scoring.errors import InvariantViolation
from swing_scoring.services.category_scorer import CategoryResult, score_value
from swing_scoring.services.feature_extractor import SegmentPeak
from swing_scoring.services.joint_normalizer import NormalizedFrames
from swing_scoring.services.phase_detector import SwingPhases

logger = structlog.get_logger()

MAX_INVERSIONS = 6  # fully reversed 4-segment order

GAP_PAIRS = {
    "pelvis_torso_gap": ("pelvis", "torso"),
    "torso_hands_gap": ("torso", "hands"),
    "hands_bat_gap": ("hands", "bat"),
}


@dataclass
class Timing:
    ab_ratio: float
    load_duration_ms: float
    swing_duration_ms: float
    sequence_order: List[str]
    segment_gaps_ms: Dict[str, float]  # keyed like GAP_PAIRS
    inversions: int
    sequence_broken: bool


@dataclass
class MomentumResult:
    score: float
    sequence_quality: float
    velocity_buildup: float
    order_score: float
    gap_scores: Dict[str, float]
    speed_gain: float
    deceleration: float
    smoothness: float
    tempo: float

    def components(self) -> Dict[str, float]:
        out = {
            "score": self.score,
            "sequence_quality": self.sequence_quality,
            "velocity_buildup": self.velocity_buildup,
            "order_score": self.order_score,
            "speed_gain": self.speed_gain,
            "deceleration": self.deceleration,
            "smoothness": self.smoothness,
            "tempo": self.tempo,
        }
        out.update({f"{name}_score": value for name, value in self.gap_scores.items()})
        return out


@dataclass
class CompositeResult:
    raw: float
    final: float
    caps_applied: List[str] = field(default_factory=list)
    penalties_applied: List[str] = field(default_factory=list)


def count_inversions(order: List[str], canonical: List[str]) -> int:
    """Adjacent swaps separating ``order`` from ``canonical``"""
    ranks = [canonical.index(segment) for segment in order]
    return sum(
        1
        for i in range(len(ranks))
        for j in range(i + 1, len(ranks))
        if ranks[i] > ranks[j]
    )


class MomentumComposer:
    def __init__(self, config: EngineConfig):
        self.config = config
        self.canonical = list(config.sequence.canonical_order)
        logger.info("MomentumComposer initialized", canonical_order=self.canonical)

    def build_timing(
        self,
        frames: NormalizedFrames,
        phases: SwingPhases,
        peaks: Dict[str, SegmentPeak],
    ) -> Timing:
        load_ms = frames.time_ms(phases.load_end_frame) - frames.time_ms(phases.load_start_frame)
        swing_ms = frames.time_ms(phases.impact_frame) - frames.time_ms(phases.load_end_frame)
        ab_ratio = load_ms / swing_ms if swing_ms > 0 else 0.0

        # Stable: simultaneous peaks keep canonical order
        order = sorted(self.canonical, key=lambda s: (peaks[s].time, self.canonical.index(s)))
        gaps = {
            name: abs(peaks[later].time - peaks[earlier].time) * 1000.0
            for name, (earlier, later) in GAP_PAIRS.items()
        }
        inversions = count_inversions(order, self.canonical)

        return Timing(
            ab_ratio=ab_ratio,
            load_duration_ms=load_ms,
            swing_duration_ms=swing_ms,
            sequence_order=order,
            segment_gaps_ms=gaps,
            inversions=inversions,
            sequence_broken=inversions > self.config.sequence.max_sequence_swaps,
        )

    def momentum(
        self,
        timing: Timing,
        peaks: Dict[str, SegmentPeak],
        segment_speeds: Dict[str, np.ndarray],
        pelvis_jerk: float,
    ) -> MomentumResult:
        cfg = self.config
        weights = cfg.sequence.weights

        order_score = 100.0 * (1.0 - timing.inversions / MAX_INVERSIONS)
        gap_scores = {
            name: score_value(timing.segment_gaps_ms[name], cfg.thresholds[GAP_THRESHOLD_KEYS[name]])
            for name in GAP_PAIRS
        }
        sequence_quality = weights["sequence_order"] * order_score + sum(
            weights[name] * gap_scores[name] for name in GAP_PAIRS
        )

        speed_gain = self._speed_gain(peaks)
        deceleration = self._deceleration(peaks, segment_speeds)
        buildup_weights = cfg.buildup.weights
        velocity_buildup = (
            buildup_weights["speed_gain"] * speed_gain
            + buildup_weights["deceleration"] * deceleration
        )

        smoothness = score_value(pelvis_jerk, cfg.thresholds["pelvis_jerk"])
        tempo = self._tempo(timing)

        mw = cfg.momentum_weights
        score = (
            mw["timing"] * sequence_quality
            + mw["magnitude"] * velocity_buildup
            + mw["smoothness"] * smoothness
            + mw["tempo"] * tempo
        )

        result = MomentumResult(
            score=score,
            sequence_quality=sequence_quality,
            velocity_buildup=velocity_buildup,
            order_score=order_score,
            gap_scores=gap_scores,
            speed_gain=speed_gain,
            deceleration=deceleration,
            smoothness=smoothness,
            tempo=tempo,
        )
        for name, value in result.components().items():
            if not 0.0 <= value <= 100.0 + 1e-9:
                raise InvariantViolation("Momentum component out of bounds", {"component": name, "value": value})

        logger.info(
            "Momentum transfer scored",
            score=round(score, 2),
            sequence_order=timing.sequence_order,
            inversions=timing.inversions,
        )
        return result

    def _speed_gain(self, peaks: Dict[str, SegmentPeak]) -> float:
        threshold = self.config.thresholds["speed_gain"]
        scores = []
        for proximal, distal in GAP_PAIRS.values():
            if not peaks[distal].measured:
                continue
            base = peaks[proximal].peak_speed
            ratio = peaks[distal].peak_speed / base if base > 0 else 0.0
            scores.append(score_value(ratio, threshold))
        return float(np.mean(scores)) if scores else 0.0

    def _deceleration(self, peaks: Dict[str, SegmentPeak], speeds: Dict[str, np.ndarray]) -> float:
        """Proximal segments should brake as the next one takes over"""
        cfg = self.config.buildup
        quality = 100.0
        for proximal, distal in (("pelvis", "torso"), ("torso", "hands")):
            handoff = peaks[distal].frame
            if peaks[distal].time < peaks[proximal].time:
                quality -= cfg.wrong_order_penalty
            elif speeds[proximal][handoff] > cfg.decel_ratio * peaks[proximal].peak_speed:
                quality -= cfg.missing_decel_penalty
        return max(0.0, quality)

    def _tempo(self, timing: Timing) -> float:
        """A-B-C tempo: load duration, swing duration and their ratio, equally weighted"""
        thresholds = self.config.thresholds
        return float(np.mean([
            score_value(timing.load_duration_ms, thresholds["load_duration_ms"]),
            score_value(timing.swing_duration_ms, thresholds["swing_duration_ms"]),
            score_value(timing.ab_ratio, thresholds["ab_ratio"]),
        ]))

    def composite(
        self,
        momentum_score: float,
        categories: Dict[str, CategoryResult],
        timing: Timing,
        confidence: float,
    ) -> CompositeResult:
        cfg = self.config
        weights = cfg.composite_weights
        raw = weights["momentum_transfer"] * momentum_score + sum(
            weights[category] * categories[category].score for category in FLOW_CATEGORIES
        )
        final = raw
        caps: List[str] = []
        penalties: List[str] = []

        ceiling = self._cap_ceiling(momentum_score, timing)
        if ceiling is not None and final > ceiling:
            final = ceiling
            caps.append(f"capped at {ceiling:g}: {cfg.caps.reason}")
            logger.info(
                "Composite capped",
                raw=round(raw, 2),
                ceiling=ceiling,
                momentum=round(momentum_score, 2),
                inversions=timing.inversions,
            )

        penalty = cfg.low_confidence
        if penalty.enabled:
            if confidence < penalty.low_threshold:
                final -= penalty.low_penalty
                penalties.append(f"low confidence -{penalty.low_penalty:g}")
            elif confidence < penalty.medium_threshold:
                final -= penalty.medium_penalty
                penalties.append(f"medium confidence -{penalty.medium_penalty:g}")

        final = min(100.0, max(0.0, final))
        return CompositeResult(raw=raw, final=final, caps_applied=caps, penalties_applied=penalties)

    def _cap_ceiling(self, momentum_score: float, timing: Timing) -> Optional[float]:
        caps = self.config.caps
        if not caps.enabled:
            return None
        severe = (
            momentum_score < caps.severe.momentum_floor
            or timing.inversions >= self.config.sequence.severe_sequence_swaps
        )
        if severe:
            return caps.severe.ceiling
        if momentum_score < caps.moderate.momentum_floor or timing.sequence_broken:
            return caps.moderate.ceiling
        return None
