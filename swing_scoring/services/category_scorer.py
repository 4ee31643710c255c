"""
Category Scorer

Maps extracted features to 0-100 partial scores through their configured
curve, then averages them into Ground, Power and Barrel flow scores.
"""

from typing import Callable, Dict, List, Tuple
import structlog
from dataclasses import dataclass, field

from swing_scoring.config import EngineConfig, FLOW_CATEGORIES, SeverityBreakpoint, Threshold
from swing_scoring.errors import InsufficientDataError, InvariantViolation
from swing_scoring.services.feature_extractor import ExtractedFeatures

logger = structlog.get_logger()


def score_tolerance_band(value: float, threshold: Threshold) -> float:
    """100 inside ideal, 100-75 across the soft margin, then 50 decaying to 0."""
    ideal_lo, ideal_hi = threshold.ideal
    soft_lo, soft_hi = threshold.soft

    if ideal_lo <= value <= ideal_hi:
        return 100.0

    if value < ideal_lo:
        margin, distance = ideal_lo - soft_lo, ideal_lo - value
    else:
        margin, distance = soft_hi - ideal_hi, value - ideal_hi

    if distance <= margin and margin > 0:
        return 100.0 - 25.0 * distance / margin

    falloff = threshold.falloff or (soft_hi - soft_lo)
    return max(0.0, 50.0 * (1.0 - (distance - margin) / falloff))


def _score_directional(gain: Callable[[float], float], threshold: Threshold) -> float:
    # gain: how far the value sits past each point in the "better" direction
    optimal, acceptable, poor = threshold.optimal, threshold.acceptable, threshold.poor
    if gain(optimal) >= 0:
        return 100.0
    if gain(acceptable) >= 0:
        return 75.0 + 25.0 * gain(acceptable) / abs(optimal - acceptable)
    if gain(poor) >= 0:
        return 50.0 + 25.0 * gain(poor) / abs(acceptable - poor)
    falloff = threshold.falloff or abs(poor - acceptable) * 2.0
    return max(0.0, 50.0 * (1.0 + gain(poor) / falloff))


def score_less_is_better(value: float, threshold: Threshold) -> float:
    return _score_directional(lambda point: point - value, threshold)


def score_more_is_better(value: float, threshold: Threshold) -> float:
    return _score_directional(lambda point: value - point, threshold)


CURVES = {
    "tolerance_band": score_tolerance_band,
    "less_is_better": score_less_is_better,
    "more_is_better": score_more_is_better,
}


def score_value(value: float, threshold: Threshold) -> float:
    """Partial score in [0, 100] for one value on its configured curve"""
    score = CURVES[threshold.curve](value, threshold)
    return min(100.0, max(0.0, score))


def leak_severity(score: float, breakpoints: Tuple[SeverityBreakpoint, ...]) -> str:
    for breakpoint in breakpoints:
        if score >= breakpoint.min_score:
            return breakpoint.severity
    return breakpoints[-1].severity


@dataclass
class CategoryResult:
    category: str
    score: float
    leak_severity: str
    partials: Dict[str, float] = field(default_factory=dict)
    unavailable: List[str] = field(default_factory=list)


class CategoryScorer:
    """Weighted average of available feature scores per flow category"""

    def __init__(self, config: EngineConfig):
        self.config = config
        logger.info("CategoryScorer initialized", categories=list(config.feature_weights))

    def score(self, features: ExtractedFeatures) -> Dict[str, CategoryResult]:
        return {category: self.score_category(category, features) for category in FLOW_CATEGORIES}

    def score_category(self, category: str, features: ExtractedFeatures) -> CategoryResult:
        weights = self.config.feature_weights[category]
        partials: Dict[str, float] = {}
        unavailable: List[str] = []

        for name in weights:
            feature = features.values.get(name)
            if feature is None or not feature.available:
                unavailable.append(name)
                continue
            partials[name] = score_value(feature.value, self.config.thresholds[name])

        if not partials:
            raise InsufficientDataError(
                f"No computable features for {category}",
                {"category": category, "unavailable": unavailable},
            )

        # Renormalise over what was measured
        total_weight = sum(weights[name] for name in partials)
        if total_weight <= 0:
            raise InsufficientDataError(f"Only zero-weight features available for {category}", {"category": category})
        score = sum(weights[name] * partials[name] for name in partials) / total_weight
        if not 0.0 <= score <= 100.0 + 1e-9:
            raise InvariantViolation("Category score out of bounds", {"category": category, "score": score})
        score = min(100.0, score)

        if unavailable:
            logger.info("Category scored with missing features", category=category, unavailable=unavailable)

        return CategoryResult(
            category=category,
            score=score,
            leak_severity=leak_severity(score, self.config.leaks.severity_breakpoints),
            partials=partials,
            unavailable=unavailable,
        )
