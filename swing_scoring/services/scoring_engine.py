"""
Momentum Transfer Scoring Engine

Entry point of the scoring pipeline:

    normalize -> detect phases -> extract features -> score categories
    -> compose momentum transfer -> map band and leaks -> analysis

The engine holds only its validated configuration and the stage objects
built from it, so one instance can score many swings.
"""

import numpy as np
from typing import Any, Dict, Optional, Union
import structlog
from dataclasses import dataclass

from swing_scoring.config import (
    EngineConfig, Settings, get_engine_config, settings, validate_engine_config, with_overrides,
)
from swing_scoring.errors import InsufficientDataError, InvariantViolation, PhaseDetectionError
from swing_scoring.schemas.analysis import (
    AnalysisBreakdown, AnalysisCompleted, AnalysisFailed, CategoryBreakdown, FeatureBreakdown,
    FlagsData, FlowScores, MomentumTransferAnalysis, MomentumTransferScore, PhaseBreakdown,
    SegmentGaps, SegmentPeakBreakdown, SubScore, TimingData,
)
from swing_scoring.schemas.joints import ScoringInputs
from swing_scoring.services.band_mapper import (
    FLOW_LABELS, LEGACY_LABELS, data_quality, get_goaty_band_label, identify_leaks, leak_name,
    legacy_leak_name, score_to_goaty_band,
)
from swing_scoring.services.category_scorer import CategoryResult, CategoryScorer
from swing_scoring.services.coaching import build_coach_summary
from swing_scoring.services.feature_extractor import FeatureExtractor
from swing_scoring.services.joint_normalizer import JointNormalizer
from swing_scoring.services.momentum_composer import MomentumComposer
from swing_scoring.services.phase_detector import PhaseDetector, SwingPhases

logger = structlog.get_logger()


@dataclass
class _Stages:
    config: EngineConfig
    normalizer: JointNormalizer
    detector: PhaseDetector
    extractor: FeatureExtractor
    scorer: CategoryScorer
    composer: MomentumComposer

    @classmethod
    def build(cls, config: EngineConfig, default_fps: float) -> "_Stages":
        return cls(
            config=config,
            normalizer=JointNormalizer(config.normalizer, default_fps),
            detector=PhaseDetector(config.phase_detection),
            extractor=FeatureExtractor(config),
            scorer=CategoryScorer(config),
            composer=MomentumComposer(config),
        )


def _round_score(value: float) -> int:
    return int(round(min(100.0, max(0.0, value))))


def _sub_score(result: CategoryResult, labels: Dict[str, str]) -> SubScore:
    return SubScore(
        score=_round_score(result.score),
        label=labels[result.category],
        leak_severity=result.leak_severity,
    )


class ScoringEngine:
    """Scores swings against one validated configuration"""

    def __init__(self, config: Optional[EngineConfig] = None, app_settings: Optional[Settings] = None):
        self.settings = app_settings or settings
        # Fail fast on a malformed table
        self.config = validate_engine_config(config) if config is not None else get_engine_config()
        self._stages = _Stages.build(self.config, self.settings.default_fps)
        logger.info("ScoringEngine initialized")

    def analyze(self, inputs: ScoringInputs) -> MomentumTransferAnalysis:
        """Score one swing. Raises a ScoringError subclass on failure."""
        config = with_overrides(self.config, inputs.config)
        stages = self._stages if config is self.config else _Stages.build(config, self.settings.default_fps)

        try:
            return self._run(inputs, stages)
        except InvariantViolation as e:
            logger.error(
                "Scoring invariant violated",
                error=e.message,
                context=e.context,
                video_id=inputs.video_id,
                frames=len(inputs.frames),
                athlete=inputs.athlete.model_dump(),
                manual_landmarks=inputs.manual_landmarks(),
                config_overrides=inputs.config,
            )
            raise

    def score(self, inputs: ScoringInputs) -> Union[AnalysisCompleted, AnalysisFailed]:
        """Score one swing, reporting data failures as an AnalysisFailed outcome."""
        try:
            analysis = self.analyze(inputs)
        except (InsufficientDataError, PhaseDetectionError) as e:
            logger.warning(
                "Swing analysis failed",
                video_id=inputs.video_id,
                error_kind=e.kind,
                error=e.message,
                context=e.context,
            )
            return AnalysisFailed(video_id=inputs.video_id, error_kind=e.kind, message=e.message)
        return AnalysisCompleted(analysis=analysis)

    def _detect_phases(self, stages: _Stages, frames, lead_side: str, manual: Dict[str, int]) -> SwingPhases:
        detector = stages.detector
        if len(manual) == 4:
            logger.info("Using manual swing landmarks", **manual)
            return detector.apply_manual(frames, manual)

        try:
            detected = detector.detect(frames, lead_side)
        except PhaseDetectionError as e:
            if not stages.config.phase_detection.retry_relaxed:
                raise
            logger.warning("Phase detection failed, retrying with relaxed thresholds", error=e.message)
            detected = detector.detect(frames, lead_side, relaxed=True)

        if manual:
            return detector.apply_manual(frames, manual, detected)
        return detected

    def _run(self, inputs: ScoringInputs, stages: _Stages) -> MomentumTransferAnalysis:
        config = stages.config
        lead_side = inputs.athlete.lead_side

        frames = stages.normalizer.normalize_frames(inputs.frames)
        phases = self._detect_phases(stages, frames, lead_side, inputs.manual_landmarks())
        features = stages.extractor.extract(frames, phases, lead_side)
        categories = stages.scorer.score(features)

        timing = stages.composer.build_timing(frames, phases, features.peaks)
        momentum = stages.composer.momentum(
            timing, features.peaks, features.segment_speeds, features.pelvis_jerk,
        )

        confidence = float(np.clip(frames.confidence * phases.certainty * features.availability, 0.0, 1.0))
        composite = stages.composer.composite(momentum.score, categories, timing, confidence)

        score = _round_score(composite.final)
        band = score_to_goaty_band(score, config.goaty_bands)
        label = get_goaty_band_label(band, config.goaty_bands)

        main, secondary = identify_leaks({c: r.score for c, r in categories.items()}, config.leaks)
        flags = FlagsData(
            main_leak=leak_name(main),
            secondary_leak=leak_name(secondary),
            sequence_broken=timing.sequence_broken,
            main_leak_legacy=legacy_leak_name(main),
            secondary_leak_legacy=legacy_leak_name(secondary),
        )

        analysis = MomentumTransferAnalysis(
            video_id=inputs.video_id,
            athlete=inputs.athlete,
            scores=FlowScores(
                momentum_transfer=MomentumTransferScore(
                    score=score, goaty_band=band, goaty_label=label, confidence=confidence,
                ),
                ground_flow=_sub_score(categories["ground_flow"], FLOW_LABELS),
                power_flow=_sub_score(categories["power_flow"], FLOW_LABELS),
                barrel_flow=_sub_score(categories["barrel_flow"], FLOW_LABELS),
                anchor=_sub_score(categories["ground_flow"], LEGACY_LABELS),
                engine=_sub_score(categories["power_flow"], LEGACY_LABELS),
                whip=_sub_score(categories["barrel_flow"], LEGACY_LABELS),
            ),
            timing=TimingData(
                ab_ratio=timing.ab_ratio,
                load_duration_ms=timing.load_duration_ms,
                swing_duration_ms=timing.swing_duration_ms,
                sequence_order=timing.sequence_order,
                segment_gaps_ms=SegmentGaps(
                    pelvis_to_torso=timing.segment_gaps_ms["pelvis_torso_gap"],
                    torso_to_hands=timing.segment_gaps_ms["torso_hands_gap"],
                    hands_to_bat=timing.segment_gaps_ms["hands_bat_gap"],
                ),
            ),
            flags=flags,
            coach_summary=build_coach_summary(score, main, timing.sequence_broken),
            breakdown=AnalysisBreakdown(
                phases=PhaseBreakdown(certainty=phases.certainty, method=phases.method, **phases.as_dict()),
                features=[
                    FeatureBreakdown(
                        name=f.name,
                        category=f.category,
                        value=f.value,
                        available=f.available,
                        reason=f.reason,
                        unit=f.unit,
                        window=list(f.window),
                    )
                    for f in features.values.values()
                ],
                segment_peaks=[
                    SegmentPeakBreakdown(
                        segment=p.segment,
                        frame=p.frame,
                        time_ms=p.time * 1000.0,
                        peak_speed=p.peak_speed,
                        measured=p.measured,
                    )
                    for p in features.peaks.values()
                ],
                categories={
                    c: CategoryBreakdown(
                        score=r.score,
                        leak_severity=r.leak_severity,
                        partials=r.partials,
                        unavailable=r.unavailable,
                    )
                    for c, r in categories.items()
                },
                momentum=momentum.components(),
                inversions=timing.inversions,
                composite_raw=composite.raw,
                composite_final=composite.final,
                caps_applied=composite.caps_applied,
                penalties_applied=composite.penalties_applied,
                joint_confidence=frames.confidence,
                phase_certainty=phases.certainty,
                feature_availability=features.availability,
                data_quality=data_quality(confidence),
            ),
        )

        logger.info(
            "Swing scored",
            video_id=inputs.video_id,
            score=score,
            goaty_band=band,
            main_leak=flags.main_leak,
            sequence_broken=flags.sequence_broken,
            confidence=round(confidence, 3),
        )
        return analysis


def score_swing(
    inputs: Union[ScoringInputs, Dict[str, Any]],
    config: Optional[EngineConfig] = None,
) -> Union[AnalysisCompleted, AnalysisFailed]:
    """Convenience wrapper: score one swing with a fresh engine."""
    if isinstance(inputs, dict):
        inputs = ScoringInputs.model_validate(inputs)
    return ScoringEngine(config).score(inputs)
