import json

import pytest

from swing_scoring.config import (
    EngineConfig, Settings, load_engine_config, validate_engine_config, with_overrides,
)
from swing_scoring.errors import ConfigurationError
from swing_scoring.services.scoring_engine import ScoringEngine


def test_default_config_is_valid(engine_config):
    """Test the shipped tables satisfy every invariant."""
    assert validate_engine_config(engine_config) is engine_config
    for weights in engine_config.feature_weights.values():
        assert sum(weights.values()) == pytest.approx(1.0, abs=1e-6)
    assert sum(engine_config.composite_weights.values()) == pytest.approx(1.0, abs=1e-6)


def test_composite_weights_must_sum_to_one():
    """Test a composite table off by more than the tolerance is rejected."""
    with pytest.raises(ConfigurationError):
        load_engine_config(Settings(), {"composite_weights": {"momentum_transfer": 0.7}})


def test_category_weights_must_sum_to_one():
    """Test category weights are never renormalised silently."""
    with pytest.raises(ConfigurationError):
        load_engine_config(Settings(), {"feature_weights": {"ground_flow": {"pelvis_drift": 0.5}}})


def test_engine_refuses_to_start_with_bad_weights():
    """Test the engine validates its configuration on construction."""
    bad = EngineConfig(momentum_weights={"timing": 0.5, "magnitude": 0.4})
    with pytest.raises(ConfigurationError):
        ScoringEngine(bad)


def test_feature_without_threshold_rejected():
    """Test every weighted feature needs a scoring curve."""
    thresholds = dict(EngineConfig().thresholds)
    del thresholds["head_stillness"]
    with pytest.raises(ConfigurationError):
        validate_engine_config(EngineConfig(thresholds=thresholds))


def test_non_monotonic_bands_rejected():
    """Test the GOATY band table must descend with its thresholds."""
    bands = [
        {"min_score": 90, "band": 1, "label": "A"},
        {"min_score": 80, "band": 2, "label": "B"},
        {"min_score": 0, "band": 0, "label": "C"},
    ]
    with pytest.raises(ConfigurationError):
        load_engine_config(Settings(), {"goaty_bands": bands})


def test_unordered_threshold_rejected():
    """Test less-is-better points must increase from optimal to poor."""
    with pytest.raises(ConfigurationError):
        load_engine_config(Settings(), {"thresholds": {"pelvis_drift": {"optimal": 0.9}}})


def test_unknown_key_rejected():
    """Test typos in overrides fail instead of being ignored."""
    with pytest.raises(ConfigurationError):
        load_engine_config(Settings(), {"phase_detection": {"tie_tolerence": 0.1}})


def test_overrides_return_new_config(engine_config):
    """Test overrides build a new object and leave the base config untouched."""
    updated = with_overrides(engine_config, {"leaks": {"secondary_gap_threshold": 5}})
    assert updated is not engine_config
    assert updated.leaks.secondary_gap_threshold == 5
    assert engine_config.leaks.secondary_gap_threshold == 20
    assert with_overrides(engine_config, None) is engine_config


def test_config_is_frozen(engine_config):
    """Test configuration objects cannot be mutated."""
    with pytest.raises(Exception):
        engine_config.barrel_window_ms = 10


def test_settings_feed_normalizer_thresholds():
    """Test normalizer thresholds come from settings."""
    config = load_engine_config(Settings(min_confidence=0.3, min_coverage=0.8))
    assert config.normalizer.min_confidence == 0.3
    assert config.normalizer.min_coverage == 0.8


def test_config_file_overrides(tmp_path):
    """Test a JSON override file is merged onto the defaults."""
    path = tmp_path / "engine.json"
    path.write_text(json.dumps({"caps": {"moderate": {"ceiling": 65}}}))
    config = load_engine_config(Settings(engine_config_path=str(path)))
    assert config.caps.moderate.ceiling == 65
    assert config.caps.moderate.momentum_floor == 50


def test_missing_config_file(tmp_path):
    """Test an unreadable override file is a configuration error."""
    with pytest.raises(ConfigurationError):
        load_engine_config(Settings(engine_config_path=str(tmp_path / "missing.json")))


def test_override_replaces_weight_table(engine_config):
    """Test a weight table in an override replaces the default one whole."""
    updated = with_overrides(
        engine_config,
        {"feature_weights": {"ground_flow": {"pelvis_drift": 0.5, "head_stillness": 0.5}}},
    )
    assert dict(updated.feature_weights["ground_flow"]) == {"pelvis_drift": 0.5, "head_stillness": 0.5}
    assert updated.feature_weights["power_flow"] == engine_config.feature_weights["power_flow"]

    retimed = with_overrides(
        engine_config,
        {"momentum_weights": {"timing": 0.65, "magnitude": 0.35, "smoothness": 0.0, "tempo": 0.0}},
    )
    assert retimed.momentum_weights["smoothness"] == 0.0


def test_replaced_table_scores_without_dropped_feature(swing_inputs):
    """Test an engine scores with a category table that drops a feature."""
    inputs = swing_inputs.model_copy(update={
        "config": {"feature_weights": {"ground_flow": {"pelvis_drift": 0.5, "head_stillness": 0.5}}},
    })
    analysis = ScoringEngine(EngineConfig()).analyze(inputs)
    names = {feature.name for feature in analysis.breakdown.features}
    assert "front_leg_brace_ms" not in names
    assert "pelvis_drift" in names


def test_weight_tables_are_read_only(engine_config):
    """Test validated tables cannot be edited in place."""
    with pytest.raises(TypeError):
        engine_config.feature_weights["ground_flow"]["pelvis_drift"] = 5.0
    with pytest.raises(TypeError):
        engine_config.composite_weights["momentum_transfer"] = 1.0
    with pytest.raises(TypeError):
        engine_config.thresholds.pop("pelvis_drift")
    with pytest.raises(TypeError):
        engine_config.sequence.weights.update({"sequence_order": 1.0})
    assert engine_config.feature_weights["ground_flow"]["pelvis_drift"] == 0.35
