import numpy as np
import pytest

from swing_scoring.config import EngineConfig
from swing_scoring.errors import InvariantViolation, PhaseDetectionError
from swing_scoring.schemas.joints import JointFrame
from swing_scoring.services.joint_normalizer import JointNormalizer, NormalizedFrames
from swing_scoring.services.phase_detector import PhaseDetector, SwingPhases, _Signals


def _normalize(raw_frames):
    config = EngineConfig()
    return JointNormalizer(config.normalizer, default_fps=30.0).normalize_frames(
        [JointFrame.model_validate(f) for f in raw_frames]
    )


@pytest.fixture
def detector():
    return PhaseDetector(EngineConfig().phase_detection)


def test_detects_canonical_swing(detector, swing_frames):
    """Test the four landmarks on the synthetic swing."""
    phases = detector.detect(_normalize(swing_frames), "left")
    assert phases.load_start_frame <= 3
    assert 34 <= phases.load_end_frame <= 36
    assert phases.impact_frame == 52
    assert 54 <= phases.finish_frame <= 60
    assert phases.certainty == pytest.approx(1.0)
    assert phases.method == "auto"


def test_phases_ordered(detector, swing_frames):
    """Test detected phases always satisfy the ordering invariant."""
    phases = detector.detect(_normalize(swing_frames), "left")
    order = [phases.load_start_frame, phases.load_end_frame, phases.impact_frame, phases.finish_frame]
    assert order == sorted(order)


def test_out_of_order_phases_rejected():
    """Test constructing disordered phases is an invariant violation."""
    with pytest.raises(InvariantViolation):
        SwingPhases(load_start_frame=10, load_end_frame=5, impact_frame=20, finish_frame=30)


def test_static_clip_fails(detector, swing_factory):
    """Test no motion means no locatable impact."""
    with pytest.raises(PhaseDetectionError):
        detector.detect(_normalize(swing_factory(static=True)), "left")


def test_noisy_hand_fails_then_relaxed_succeeds(detector, swing_factory):
    """Test too many interpolated hand frames fail strict detection only."""
    frames = _normalize(swing_factory(low_confidence_wrist_frames=26))
    with pytest.raises(PhaseDetectionError) as exc:
        detector.detect(frames, "left")
    assert exc.value.recoverable

    phases = detector.detect(frames, "left", relaxed=True)
    assert phases.method == "relaxed"
    assert phases.impact_frame == 52
    assert phases.certainty < 0.75


def test_tie_break_prefers_clip_midpoint(detector):
    """Test equal extrema resolve to the one nearest the temporal midpoint."""
    values = np.zeros(60)
    values[10] = 5.0
    values[40] = 5.0
    timestamps = np.arange(60) / 30.0
    midpoint = (timestamps[0] + timestamps[-1]) / 2.0
    chosen, tied = detector._pick_extremum(values, [10, 40], timestamps, midpoint, maximum=True)
    assert chosen == 40
    assert tied


def test_manual_landmarks_override(detector, swing_frames):
    """Test user-marked frames replace detection."""
    frames = _normalize(swing_frames)
    manual = {"load_start_frame": 5, "load_end_frame": 30, "impact_frame": 50, "finish_frame": 60}
    phases = detector.apply_manual(frames, manual)
    assert phases.as_dict() == manual
    assert phases.method == "manual"
    assert phases.certainty == 1.0


def test_partial_manual_landmarks_merge(detector, swing_frames):
    """Test a single marked frame replaces only that landmark."""
    frames = _normalize(swing_frames)
    detected = detector.detect(frames, "left")
    phases = detector.apply_manual(frames, {"impact_frame": 50}, detected)
    assert phases.impact_frame == 50
    assert phases.load_end_frame == detected.load_end_frame
    assert phases.method == "manual+auto"


def test_conflicting_manual_landmark_fails(detector, swing_frames):
    """Test a marked frame that breaks the ordering is rejected."""
    frames = _normalize(swing_frames)
    detected = detector.detect(frames, "left")
    with pytest.raises(PhaseDetectionError):
        detector.apply_manual(frames, {"impact_frame": 10}, detected)


def _bare_frames(n=60, fps=30.0):
    """Frame container for detector tests that supply their own speed signals."""
    return NormalizedFrames(
        timestamps=np.arange(n) / fps,
        frame_indices=np.arange(n),
        fps=fps,
        positions={},
        interpolated={"left_wrist": np.zeros(n, dtype=bool)},
        joint_confidence={},
        confidence=1.0,
        torso_length=1.0,
    )


def _signals(marker, drift_from=10):
    marker = np.asarray(marker, dtype=float)
    pelvis_x = np.zeros(len(marker))
    pelvis_x[drift_from:] = 0.05
    return _Signals(hand_speed=marker, marker_speed=marker, combined_speed=marker, pelvis_x=pelvis_x)


def _spike_then_swing(n=60):
    """Baseline 0.5 with a dip at 30, a spike at 10 and the real swing peaking at 40."""
    speed = np.full(n, 0.5)
    speed[10] = 10.0
    speed[30] = 0.2
    speed[38:43] = [3.0, 6.0, 8.0, 6.0, 3.0]
    return speed


def test_refinement_skips_early_spike(detector, monkeypatch):
    """Test a speed spike at load start is rejected and the search resumes after it."""
    monkeypatch.setattr(detector, "_build_signals", lambda frames, side: _signals(_spike_then_swing()))
    phases = detector.detect(_bare_frames(), "left")
    assert phases.load_start_frame == 11
    assert phases.load_end_frame == 30
    assert phases.impact_frame == 40
    assert phases.finish_frame == 43


def test_refinement_limit_is_enforced(monkeypatch):
    """Test detection gives up once the refinement passes are used up."""
    detector = PhaseDetector(EngineConfig().phase_detection.model_copy(update={"max_refinement_passes": 1}))
    monkeypatch.setattr(detector, "_build_signals", lambda frames, side: _signals(_spike_then_swing()))
    with pytest.raises(PhaseDetectionError) as exc:
        detector.detect(_bare_frames(), "left")
    assert exc.value.context["passes"] == 1


def test_peak_on_last_frame_fails(detector, monkeypatch):
    """Test a speed still rising at the end of the clip is a truncated swing."""
    rising = np.linspace(0.1, 8.0, 60)
    monkeypatch.setattr(detector, "_build_signals", lambda frames, side: _signals(rising, drift_from=5))
    with pytest.raises(PhaseDetectionError, match="boundary"):
        detector.detect(_bare_frames(), "left")


def test_slow_peak_below_speed_floor_fails(detector, monkeypatch):
    """Test a prominent but slow hand peak is not taken for a swing."""
    slow = _spike_then_swing() * 0.01
    monkeypatch.setattr(detector, "_build_signals", lambda frames, side: _signals(slow))
    with pytest.raises(PhaseDetectionError, match="too slow"):
        detector.detect(_bare_frames(), "left")
