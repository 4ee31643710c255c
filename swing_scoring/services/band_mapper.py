"""
GOATY band / label mapping and leak flags.
"""

from typing import Dict, Optional, Sequence, Tuple

from swing_scoring.config import DEFAULT_GOATY_BANDS, GoatyBand, LeakConfig


# Internal category -> output names
LEAK_NAMES = {
    "ground_flow": "groundFlow",
    "power_flow": "powerFlow",
    "barrel_flow": "barrelFlow",
}
LEGACY_NAMES = {
    "ground_flow": "anchor",
    "power_flow": "engine",
    "barrel_flow": "whip",
}
NO_LEAK = "none"

# Display labels for the flow sub-scores, current and legacy
FLOW_LABELS = {
    "ground_flow": "Ground Flow",
    "power_flow": "Power Flow",
    "barrel_flow": "Barrel Flow",
}
LEGACY_LABELS = {
    "ground_flow": "Ground → Hips",
    "power_flow": "Hips → Torso",
    "barrel_flow": "Torso → Barrel",
}

HIGH_QUALITY_CONFIDENCE = 0.8
MEDIUM_QUALITY_CONFIDENCE = 0.6


def score_to_goaty_band(score: float, bands: Sequence[GoatyBand] = DEFAULT_GOATY_BANDS) -> int:
    """Band for a score; bands are ordered by descending threshold."""
    for band in bands:
        if score >= band.min_score:
            return band.band
    return bands[-1].band


def get_goaty_band_label(band: int, bands: Sequence[GoatyBand] = DEFAULT_GOATY_BANDS) -> str:
    for entry in bands:
        if entry.band == band:
            return entry.label
    raise ValueError(f"Unknown GOATY band: {band}")


def identify_leaks(scores: Dict[str, float], leaks: LeakConfig) -> Tuple[Optional[str], Optional[str]]:
    """
    Main and secondary leak categories.

    Deficiency is the distance below each category's target. The main leak is
    the largest positive deficiency; the secondary is the next one, kept only
    when it sits within ``secondary_gap_threshold`` of the main leak.
    """
    deficient = []
    for category, score in scores.items():
        deficiency = leaks.targets[category] - score
        if deficiency > 0:
            deficient.append((deficiency, category))

    if not deficient:
        return None, None

    # Largest deficiency first; ties resolve in category order
    order = list(LEAK_NAMES)
    deficient.sort(key=lambda item: (-item[0], order.index(item[1])))
    main_deficiency, main = deficient[0]

    secondary = None
    if len(deficient) > 1:
        next_deficiency, candidate = deficient[1]
        if main_deficiency - next_deficiency <= leaks.secondary_gap_threshold:
            secondary = candidate

    return main, secondary


def leak_name(category: Optional[str]) -> str:
    return LEAK_NAMES[category] if category else NO_LEAK


def legacy_leak_name(category: Optional[str]) -> str:
    return LEGACY_NAMES[category] if category else NO_LEAK


def data_quality(confidence: float) -> str:
    """Coarse label for an analysis confidence"""
    if confidence > HIGH_QUALITY_CONFIDENCE:
        return "high"
    if confidence > MEDIUM_QUALITY_CONFIDENCE:
        return "medium"
    return "low"
