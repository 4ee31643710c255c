"""
Configuration for the momentum-transfer scoring engine.

Two layers live here:

* ``Settings`` - process settings read from the environment / ``.env``
  (database url, log level, default fps, normalizer thresholds).
* ``EngineConfig`` - the immutable tuning tables (weights, thresholds,
  caps, bands). It is built once, validated once, and passed explicitly
  into the engine. Per-request overrides produce a new validated object.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Dict, Literal, Optional, Tuple

import structlog
from pydantic import AfterValidator, BaseModel, ValidationError
from pydantic_settings import BaseSettings

from swing_scoring.errors import ConfigurationError

logger = structlog.get_logger()

WEIGHT_TOLERANCE = 1e-6

FLOW_CATEGORIES = ("ground_flow", "power_flow", "barrel_flow")
SEGMENTS = ("pelvis", "torso", "hands", "bat")


class Settings(BaseSettings):
    database_url: str = "sqlite:///./swing_scoring.db"
    log_level: str = "INFO"

    # Frames without a timestamp are timed at this rate
    default_fps: float = 60.0

    # Normalizer thresholds
    min_confidence: float = 0.5
    min_coverage: float = 0.7

    # Optional JSON file with EngineConfig overrides
    engine_config_path: Optional[str] = None

    class Config:
        env_file = ".env"


settings = Settings()


# =============================================================================
# Engine tables
# =============================================================================

class FrozenTable(dict):
    """Read-only dict holding a validated weight or threshold table"""

    def _read_only(self, *args, **kwargs):
        raise TypeError(f"{type(self).__name__} is read-only")

    __setitem__ = __delitem__ = __ior__ = _read_only
    clear = pop = popitem = setdefault = update = _read_only


FloatTable = Annotated[Dict[str, float], AfterValidator(FrozenTable)]


class _FrozenModel(BaseModel):
    class Config:
        frozen = True
        extra = "forbid"
        # Defaults go through the validators too, so shared tables get frozen
        validate_default = True


class Threshold(_FrozenModel):
    """
    Scoring curve for one measured quantity.

    tolerance_band: ``ideal`` [lo, hi] scores 100, the ``soft`` margin
    scores 100-75, beyond it 50 decaying to 0 over ``falloff``.
    less_is_better / more_is_better: ``optimal`` scores 100 (saturation),
    ``acceptable`` 75, ``poor`` 50, then 0 after ``falloff``.
    """
    curve: Literal["tolerance_band", "less_is_better", "more_is_better"]
    ideal: Optional[Tuple[float, float]] = None
    soft: Optional[Tuple[float, float]] = None
    optimal: Optional[float] = None
    acceptable: Optional[float] = None
    poor: Optional[float] = None
    falloff: Optional[float] = None
    unit: str = ""


class NormalizerConfig(_FrozenModel):
    min_confidence: float = 0.5
    min_coverage: float = 0.7
    min_frames: int = 10
    required_joints: Tuple[str, ...] = (
        "nose",
        "left_shoulder", "right_shoulder",
        "left_elbow", "right_elbow",
        "left_wrist", "right_wrist",
        "left_hip", "right_hip",
    )
    optional_joints: Tuple[str, ...] = (
        "left_knee", "right_knee",
        "left_ankle", "right_ankle",
        "bat_head",
    )


class PhaseDetectionConfig(_FrozenModel):
    # Load start: pelvis lateral displacement, in torso lengths
    load_displacement_threshold: float = 0.015
    # Swing start: onset of rapid acceleration, fraction of combined speed at impact
    launch_speed_fraction: float = 0.25
    # Finish: hand speed falls below this fraction of its peak
    finish_speed_fraction: float = 0.2
    # Extrema within this fraction of the signal range are ties
    tie_tolerance: float = 0.02
    smoothing_window: int = 3
    # Hand-speed peak must be this many times the median speed
    min_peak_prominence: float = 2.0
    # Impact marker must reach this speed, in torso lengths per second
    min_peak_speed: float = 0.5
    max_low_confidence_fraction: float = 0.25
    max_refinement_passes: int = 3
    impact_marker: Literal["hands", "bat"] = "hands"

    # One relaxed retry after a PhaseDetectionError
    retry_relaxed: bool = True
    relaxed_prominence_factor: float = 0.5
    relaxed_low_confidence_fraction: float = 0.4
    relaxed_certainty_factor: float = 0.75


class SequenceConfig(_FrozenModel):
    canonical_order: Tuple[str, ...] = SEGMENTS
    weights: FloatTable = {
        "sequence_order": 0.50,
        "pelvis_torso_gap": 0.20,
        "torso_hands_gap": 0.20,
        "hands_bat_gap": 0.10,
    }
    # More adjacent swaps than this flags the sequence as broken
    max_sequence_swaps: int = 1
    severe_sequence_swaps: int = 3


class BuildupConfig(_FrozenModel):
    weights: FloatTable = {
        "speed_gain": 0.60,
        "deceleration": 0.40,
    }
    # Proximal segment must drop below this share of its peak by the next peak
    decel_ratio: float = 0.7
    missing_decel_penalty: float = 15.0
    wrong_order_penalty: float = 20.0


class CapTier(_FrozenModel):
    ceiling: float
    momentum_floor: float


class CapsConfig(_FrozenModel):
    enabled: bool = True
    moderate: CapTier = CapTier(ceiling=70.0, momentum_floor=50.0)
    severe: CapTier = CapTier(ceiling=60.0, momentum_floor=40.0)
    reason: str = "Poor momentum transfer cannot be compensated by position alone"


class LowConfidencePenalty(_FrozenModel):
    enabled: bool = True
    medium_threshold: float = 0.6
    medium_penalty: float = 5.0
    low_threshold: float = 0.4
    low_penalty: float = 10.0


class SeverityBreakpoint(_FrozenModel):
    min_score: float
    severity: Literal["none", "mild", "moderate", "severe"]


class LeakConfig(_FrozenModel):
    targets: FloatTable = {
        "ground_flow": 80.0,
        "power_flow": 80.0,
        "barrel_flow": 80.0,
    }
    secondary_gap_threshold: float = 20.0
    severity_breakpoints: Tuple[SeverityBreakpoint, ...] = (
        SeverityBreakpoint(min_score=85.0, severity="none"),
        SeverityBreakpoint(min_score=70.0, severity="mild"),
        SeverityBreakpoint(min_score=50.0, severity="moderate"),
        SeverityBreakpoint(min_score=0.0, severity="severe"),
    )


class GoatyBand(_FrozenModel):
    min_score: float
    band: int
    label: str


DEFAULT_GOATY_BANDS = (
    GoatyBand(min_score=92, band=3, label="Elite"),
    GoatyBand(min_score=85, band=2, label="Advanced"),
    GoatyBand(min_score=75, band=1, label="Above Average"),
    GoatyBand(min_score=60, band=0, label="Average"),
    GoatyBand(min_score=50, band=-1, label="Below Average"),
    GoatyBand(min_score=40, band=-2, label="Poor"),
    GoatyBand(min_score=0, band=-3, label="Needs Work"),
)

DEFAULT_THRESHOLDS = {
    # ===== GROUND FLOW =====
    "pelvis_drift": Threshold(
        curve="less_is_better", optimal=0.25, acceptable=0.45, poor=0.70,
        unit="torso_lengths",
    ),
    "head_stillness": Threshold(
        curve="less_is_better", optimal=0.10, acceptable=0.20, poor=0.35,
        unit="torso_lengths",
    ),
    "front_leg_brace_ms": Threshold(
        curve="tolerance_band", ideal=(0.0, 100.0), soft=(-50.0, 180.0),
        unit="ms",
    ),
    # ===== POWER FLOW =====
    "hip_shoulder_separation_deg": Threshold(
        curve="tolerance_band", ideal=(35.0, 60.0), soft=(20.0, 75.0),
        unit="deg",
    ),
    "pelvis_torso_gap_ms": Threshold(
        curve="less_is_better", optimal=60.0, acceptable=150.0, poor=300.0,
        unit="ms",
    ),
    "spine_tilt_change_deg": Threshold(
        curve="less_is_better", optimal=10.0, acceptable=18.0, poor=30.0,
        unit="deg",
    ),
    "ab_ratio": Threshold(
        curve="tolerance_band", ideal=(1.1, 1.6), soft=(0.9, 2.2),
        unit="ratio",
    ),
    # ===== BARREL FLOW =====
    "hand_path_depth": Threshold(
        curve="tolerance_band", ideal=(0.10, 0.35), soft=(0.05, 0.50),
        unit="torso_lengths",
    ),
    "bat_lag_deg": Threshold(
        curve="tolerance_band", ideal=(70.0, 110.0), soft=(50.0, 130.0),
        unit="deg",
    ),
    "barrel_acceleration": Threshold(
        curve="more_is_better", optimal=20000.0, acceptable=10000.0, poor=4000.0,
        unit="deg/s^2",
    ),
    # ===== SEQUENCE (momentum transfer) =====
    "torso_hands_gap_ms": Threshold(
        curve="less_is_better", optimal=60.0, acceptable=150.0, poor=300.0,
        unit="ms",
    ),
    "hands_bat_gap_ms": Threshold(
        curve="less_is_better", optimal=60.0, acceptable=150.0, poor=300.0,
        unit="ms",
    ),
    # Distal / proximal peak angular speed
    "speed_gain": Threshold(
        curve="more_is_better", optimal=1.4, acceptable=1.15, poor=0.9,
        unit="ratio",
    ),
    # ===== SMOOTHNESS / TEMPO (momentum transfer) =====
    # Mean rate of change of pelvis-centre speed, load start -> finish
    "pelvis_jerk": Threshold(
        curve="less_is_better", optimal=4.0, acceptable=8.0, poor=16.0,
        unit="torso_lengths/s^2",
    ),
    "load_duration_ms": Threshold(
        curve="tolerance_band", ideal=(180.0, 280.0), soft=(150.0, 320.0),
        unit="ms",
    ),
    "swing_duration_ms": Threshold(
        curve="tolerance_band", ideal=(140.0, 180.0), soft=(120.0, 200.0),
        unit="ms",
    ),
}

DEFAULT_FEATURE_WEIGHTS = {
    "ground_flow": {
        "pelvis_drift": 0.35,
        "head_stillness": 0.35,
        "front_leg_brace_ms": 0.30,
    },
    "power_flow": {
        "hip_shoulder_separation_deg": 0.35,
        "pelvis_torso_gap_ms": 0.25,
        "spine_tilt_change_deg": 0.20,
        "ab_ratio": 0.20,
    },
    "barrel_flow": {
        "hand_path_depth": 0.40,
        "bat_lag_deg": 0.30,
        "barrel_acceleration": 0.30,
    },
}

# Momentum transfer 60%, sub-scores 40% (Ground 15, Power 15, Barrel 10)
DEFAULT_COMPOSITE_WEIGHTS = {
    "momentum_transfer": 0.60,
    "ground_flow": 0.15,
    "power_flow": 0.15,
    "barrel_flow": 0.10,
}

# Momentum transfer components
DEFAULT_MOMENTUM_WEIGHTS = {
    "timing": 0.55,
    "magnitude": 0.30,
    "smoothness": 0.10,
    "tempo": 0.05,
}

GAP_THRESHOLD_KEYS = {
    "pelvis_torso_gap": "pelvis_torso_gap_ms",
    "torso_hands_gap": "torso_hands_gap_ms",
    "hands_bat_gap": "hands_bat_gap_ms",
}

# Thresholds the momentum composer scores directly
MOMENTUM_THRESHOLD_KEYS = ("speed_gain", "pelvis_jerk", "load_duration_ms", "swing_duration_ms", "ab_ratio")


class EngineConfig(_FrozenModel):
    normalizer: NormalizerConfig = NormalizerConfig()
    phase_detection: PhaseDetectionConfig = PhaseDetectionConfig()
    thresholds: Annotated[Dict[str, Threshold], AfterValidator(FrozenTable)] = DEFAULT_THRESHOLDS
    feature_weights: Annotated[Dict[str, FloatTable], AfterValidator(FrozenTable)] = DEFAULT_FEATURE_WEIGHTS
    sequence: SequenceConfig = SequenceConfig()
    buildup: BuildupConfig = BuildupConfig()
    momentum_weights: FloatTable = DEFAULT_MOMENTUM_WEIGHTS
    composite_weights: FloatTable = DEFAULT_COMPOSITE_WEIGHTS
    caps: CapsConfig = CapsConfig()
    low_confidence: LowConfidencePenalty = LowConfidencePenalty()
    leaks: LeakConfig = LeakConfig()
    goaty_bands: Tuple[GoatyBand, ...] = DEFAULT_GOATY_BANDS
    barrel_window_ms: float = 150.0

    def feature_category(self, feature: str) -> Optional[str]:
        """Return the flow category a feature is weighted in."""
        for category, weights in self.feature_weights.items():
            if feature in weights:
                return category
        return None


# =============================================================================
# Validation
# =============================================================================

def _check_weights(name: str, weights: Dict[str, float], expected_keys=None) -> None:
    if expected_keys is not None and set(weights) != set(expected_keys):
        raise ConfigurationError(
            f"{name} must define exactly {sorted(expected_keys)}, got {sorted(weights)}",
            {"table": name},
        )
    if not weights:
        raise ConfigurationError(f"{name} is empty", {"table": name})
    if any(w < 0 for w in weights.values()):
        raise ConfigurationError(f"{name} has a negative weight", {"table": name})
    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise ConfigurationError(
            f"{name} weights sum to {total:.6f}, expected 1.0",
            {"table": name, "sum": total},
        )


def _check_threshold(name: str, threshold: Threshold) -> None:
    if threshold.curve == "tolerance_band":
        if threshold.ideal is None or threshold.soft is None:
            raise ConfigurationError(f"Threshold {name} needs ideal and soft ranges")
        ideal_lo, ideal_hi = threshold.ideal
        soft_lo, soft_hi = threshold.soft
        if not (soft_lo <= ideal_lo <= ideal_hi <= soft_hi) or soft_lo == soft_hi:
            raise ConfigurationError(
                f"Threshold {name} ranges are not nested: ideal={threshold.ideal} soft={threshold.soft}"
            )
    else:
        points = (threshold.optimal, threshold.acceptable, threshold.poor)
        if any(p is None for p in points):
            raise ConfigurationError(f"Threshold {name} needs optimal, acceptable and poor")
        optimal, acceptable, poor = points
        if threshold.curve == "less_is_better":
            ordered = optimal < acceptable < poor
        else:
            ordered = optimal > acceptable > poor
        if not ordered:
            raise ConfigurationError(
                f"Threshold {name} points are not monotonic for {threshold.curve}: {points}"
            )
    if threshold.falloff is not None and threshold.falloff <= 0:
        raise ConfigurationError(f"Threshold {name} falloff must be positive")


def validate_engine_config(config: EngineConfig) -> EngineConfig:
    """
    Check every table invariant. Raises ConfigurationError on the first
    problem; never renormalises.
    """
    _check_weights("composite_weights", config.composite_weights,
                   ("momentum_transfer",) + FLOW_CATEGORIES)
    _check_weights("momentum_weights", config.momentum_weights, ("timing", "magnitude", "smoothness", "tempo"))
    _check_weights("sequence.weights", config.sequence.weights,
                   ("sequence_order",) + tuple(GAP_THRESHOLD_KEYS))
    _check_weights("buildup.weights", config.buildup.weights, ("speed_gain", "deceleration"))

    if set(config.feature_weights) != set(FLOW_CATEGORIES):
        raise ConfigurationError(
            f"feature_weights must define {list(FLOW_CATEGORIES)}, got {sorted(config.feature_weights)}"
        )
    seen = set()
    for category, weights in config.feature_weights.items():
        _check_weights(f"feature_weights.{category}", weights)
        for feature in weights:
            if feature in seen:
                raise ConfigurationError(f"Feature {feature} is weighted in more than one category")
            seen.add(feature)
            if feature not in config.thresholds:
                raise ConfigurationError(
                    f"Feature {feature} has a weight but no threshold",
                    {"category": category},
                )

    for required in list(GAP_THRESHOLD_KEYS.values()) + list(MOMENTUM_THRESHOLD_KEYS):
        if required not in config.thresholds:
            raise ConfigurationError(f"Missing required threshold {required}")
    for name, threshold in config.thresholds.items():
        _check_threshold(name, threshold)

    if tuple(sorted(config.sequence.canonical_order)) != tuple(sorted(SEGMENTS)):
        raise ConfigurationError("sequence.canonical_order must be a permutation of the four segments")
    if config.sequence.severe_sequence_swaps < config.sequence.max_sequence_swaps:
        raise ConfigurationError("severe_sequence_swaps must not be below max_sequence_swaps")

    caps = config.caps
    if not (0 <= caps.severe.ceiling <= caps.moderate.ceiling <= 100):
        raise ConfigurationError("Cap ceilings must satisfy 0 <= severe <= moderate <= 100")
    if caps.severe.momentum_floor > caps.moderate.momentum_floor:
        raise ConfigurationError("Severe cap floor must not exceed the moderate cap floor")

    breakpoints = config.leaks.severity_breakpoints
    mins = [b.min_score for b in breakpoints]
    if not breakpoints or mins != sorted(mins, reverse=True) or len(set(mins)) != len(mins):
        raise ConfigurationError("Leak severity breakpoints must be strictly descending")
    if mins[-1] != 0:
        raise ConfigurationError("Last leak severity breakpoint must start at 0")
    if set(config.leaks.targets) != set(FLOW_CATEGORIES):
        raise ConfigurationError("Leak targets must cover every flow category")

    bands = config.goaty_bands
    band_mins = [b.min_score for b in bands]
    band_values = [b.band for b in bands]
    if not bands or band_mins != sorted(band_mins, reverse=True) or len(set(band_mins)) != len(band_mins):
        raise ConfigurationError("GOATY band thresholds must be strictly descending")
    if band_values != sorted(band_values, reverse=True) or len(set(band_values)) != len(band_values):
        raise ConfigurationError("GOATY bands must be strictly descending with the thresholds")
    if band_mins[-1] != 0:
        raise ConfigurationError("Lowest GOATY band must start at 0 so every score maps")

    norm = config.normalizer
    if not (0 <= norm.min_confidence <= 1) or not (0 < norm.min_coverage <= 1):
        raise ConfigurationError("Normalizer confidence/coverage must lie in [0, 1]")
    if norm.min_frames < 5:
        raise ConfigurationError("normalizer.min_frames must be at least 5")

    phase = config.phase_detection
    if phase.max_refinement_passes < 1:
        raise ConfigurationError("phase_detection.max_refinement_passes must be at least 1")
    if phase.smoothing_window < 1:
        raise ConfigurationError("phase_detection.smoothing_window must be at least 1")
    if phase.min_peak_speed < 0:
        raise ConfigurationError("phase_detection.min_peak_speed must not be negative")

    return config


# =============================================================================
# Loading
# =============================================================================

# Weight tables are replaced whole by an override, never merged key by key
WHOLE_TABLES = (
    ("composite_weights",),
    ("momentum_weights",),
    ("sequence", "weights"),
    ("buildup", "weights"),
    ("feature_weights", "*"),
)


def _is_whole_table(path: Tuple[str, ...]) -> bool:
    return any(
        len(pattern) == len(path) and all(p in ("*", key) for p, key in zip(pattern, path))
        for pattern in WHOLE_TABLES
    )


def deep_merge(
    base: Dict[str, Any],
    overrides: Dict[str, Any],
    _path: Tuple[str, ...] = (),
) -> Dict[str, Any]:
    """
    Recursively merge ``overrides`` into a copy of ``base``. Tables listed in
    ``WHOLE_TABLES`` are swapped in as given so an override can drop a key.
    """
    merged = dict(base)
    for key, value in overrides.items():
        path = _path + (key,)
        if isinstance(value, dict) and isinstance(merged.get(key), dict) and not _is_whole_table(path):
            merged[key] = deep_merge(merged[key], value, path)
        else:
            merged[key] = value
    return merged


def build_engine_config(data: Dict[str, Any]) -> EngineConfig:
    """Parse and validate a full config mapping."""
    try:
        config = EngineConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Malformed engine configuration: {e}") from e
    return validate_engine_config(config)


def with_overrides(config: EngineConfig, overrides: Optional[Dict[str, Any]]) -> EngineConfig:
    """Return a new validated config with partial overrides applied."""
    if not overrides:
        return config
    return build_engine_config(deep_merge(config.model_dump(), overrides))


def load_engine_config(
    app_settings: Optional[Settings] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> EngineConfig:
    """
    Build the engine configuration from defaults, settings, an optional
    JSON override file, and explicit overrides (applied in that order).
    """
    app_settings = app_settings or settings
    data = EngineConfig().model_dump()
    data = deep_merge(data, {
        "normalizer": {
            "min_confidence": app_settings.min_confidence,
            "min_coverage": app_settings.min_coverage,
        }
    })

    if app_settings.engine_config_path:
        path = Path(app_settings.engine_config_path)
        try:
            file_overrides = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read engine config file {path}: {e}") from e
        if not isinstance(file_overrides, dict):
            raise ConfigurationError(f"Engine config file {path} must contain a JSON object")
        data = deep_merge(data, file_overrides)
        logger.info("Loaded engine config overrides", path=str(path))

    if overrides:
        data = deep_merge(data, overrides)

    return build_engine_config(data)


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    """Process-wide configuration, loaded once."""
    return load_engine_config()
