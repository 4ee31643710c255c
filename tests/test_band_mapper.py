import numpy as np

from swing_scoring.config import LeakConfig
from swing_scoring.services.band_mapper import (
    data_quality, get_goaty_band_label, identify_leaks, leak_name, legacy_leak_name, score_to_goaty_band,
)


def test_band_breakpoints():
    """Test the documented score breakpoints."""
    assert score_to_goaty_band(100) == 3
    assert score_to_goaty_band(92) == 3
    assert score_to_goaty_band(91.9) == 2
    assert score_to_goaty_band(85) == 2
    assert score_to_goaty_band(75) == 1
    assert score_to_goaty_band(60) == 0
    assert score_to_goaty_band(50) == -1
    assert score_to_goaty_band(40) == -2
    assert score_to_goaty_band(39.9) == -3
    assert score_to_goaty_band(0) == -3


def test_band_monotonic_and_total():
    """Test every score maps to a band and bands never decrease."""
    bands = [score_to_goaty_band(s) for s in np.linspace(0, 100, 2001)]
    assert all(-3 <= b <= 3 for b in bands)
    assert all(a <= b for a, b in zip(bands, bands[1:]))


def test_band_labels():
    """Test the fixed seven-entry label table."""
    labels = [get_goaty_band_label(b) for b in range(3, -4, -1)]
    assert labels == [
        "Elite", "Advanced", "Above Average", "Average", "Below Average", "Poor", "Needs Work",
    ]


def test_leak_selection_skips_distant_secondary():
    """Test a lone large deficiency yields no secondary leak."""
    main, secondary = identify_leaks(
        {"ground_flow": 90, "power_flow": 40, "barrel_flow": 85}, LeakConfig()
    )
    assert leak_name(main) == "powerFlow"
    assert leak_name(secondary) == "none"
    assert legacy_leak_name(main) == "engine"


def test_leak_selection_with_secondary():
    """Test a close second deficiency is reported as secondary."""
    main, secondary = identify_leaks(
        {"ground_flow": 60, "power_flow": 55, "barrel_flow": 90}, LeakConfig()
    )
    assert leak_name(main) == "powerFlow"
    assert leak_name(secondary) == "groundFlow"
    assert legacy_leak_name(secondary) == "anchor"


def test_no_leak_when_all_on_target():
    """Test both leaks are none when every category meets its target."""
    main, secondary = identify_leaks(
        {"ground_flow": 95, "power_flow": 88, "barrel_flow": 80}, LeakConfig()
    )
    assert main is None and secondary is None
    assert leak_name(main) == "none"
    assert legacy_leak_name(secondary) == "none"


def test_data_quality_labels():
    """Test confidence maps to high above 0.8, medium above 0.6, else low."""
    assert data_quality(0.95) == "high"
    assert data_quality(0.8) == "medium"
    assert data_quality(0.61) == "medium"
    assert data_quality(0.6) == "low"
    assert data_quality(0.0) == "low"
