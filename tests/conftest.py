import math

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from swing_scoring.config import EngineConfig
from swing_scoring.database import Base
from swing_scoring.models import analysis  # noqa: F401  registers the table
from swing_scoring.schemas.joints import ScoringInputs

# Create test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    # Create tables
    Base.metadata.create_all(bind=engine)

    # Create session
    session = TestingSessionLocal()

    yield session

    # Clean up
    session.close()
    Base.metadata.drop_all(bind=engine)


def _sigmoid(u):
    return 1.0 / (1.0 + math.exp(-u))


def _polar(origin, radius, degrees):
    rad = math.radians(degrees)
    return origin[0] + radius * math.cos(rad), origin[1] + radius * math.sin(rad)


def make_swing_frames(
    n_frames=90,
    fps=30.0,
    confidence=0.95,
    include_bat=True,
    include_knees=False,
    static=False,
    low_confidence_wrist_frames=0,
):
    """
    Synthetic right-handed swing in normalized screen space.

    Pelvis drifts back and peaks in rotation at frame 35, the shoulders at
    40, the lead forearm at 48 and the bat at 50; the lead hand's linear
    speed peaks at frame 52 (impact).
    """
    frames = []
    drift = 0.08
    for i in range(n_frames):
        k = 0 if static else i

        hip_center = (0.5 - drift + drift * ((k - 35) / 35.0) ** 2, 0.6)
        if static:
            hip_center = (0.5, 0.6)
        hip_angle = 80.0 * _sigmoid((k - 35) / 2.5)
        left_hip = _polar(hip_center, -0.1, hip_angle)
        right_hip = _polar(hip_center, 0.1, hip_angle)

        shoulder_center = (0.5, 0.35)
        shoulder_angle = 80.0 * _sigmoid((k - 40) / 1.6)
        left_shoulder = _polar(shoulder_center, -0.12, shoulder_angle)
        right_shoulder = _polar(shoulder_center, 0.12, shoulder_angle)

        hand_phase = _sigmoid((k - 52) / 1.5)
        lead_wrist = (0.45 + 0.3 * hand_phase, 0.5 + 0.05 * math.sin(math.pi * hand_phase))
        trail_wrist = (lead_wrist[0] + 0.03, lead_wrist[1])
        forearm_angle = -90.0 + 80.0 * _sigmoid((k - 48) / 1.15)
        lead_elbow = _polar(lead_wrist, -0.12, forearm_angle)
        trail_elbow = _polar(trail_wrist, -0.12, forearm_angle)

        joints = {
            "nose": (0.5, 0.25),
            "left_shoulder": left_shoulder,
            "right_shoulder": right_shoulder,
            "left_elbow": lead_elbow,
            "right_elbow": trail_elbow,
            "left_wrist": lead_wrist,
            "right_wrist": trail_wrist,
            "left_hip": left_hip,
            "right_hip": right_hip,
        }
        if include_bat:
            joints["bat_head"] = _polar(lead_wrist, 0.3, 120.0 * _sigmoid((k - 50) / 1.0))
        if include_knees:
            joints["left_knee"] = (0.45, 0.8)
            joints["right_knee"] = (0.55, 0.8)
            joints["left_ankle"] = (0.45, 1.0)
            joints["right_ankle"] = (0.55, 1.0)

        frames.append({
            "timestamp": i / fps,
            "frameIndex": i,
            "joints": [
                {
                    "name": name,
                    "x": xy[0],
                    "y": xy[1],
                    "confidence": 0.1 if name == "left_wrist" and i < low_confidence_wrist_frames else confidence,
                }
                for name, xy in joints.items()
            ],
        })
    return frames


@pytest.fixture
def swing_factory():
    return make_swing_frames


@pytest.fixture
def swing_frames():
    return make_swing_frames()


@pytest.fixture
def swing_inputs(swing_frames):
    return ScoringInputs.model_validate({
        "athlete": {"name": "Test Hitter", "level": "College", "bats": "R", "throws": "R"},
        "frames": swing_frames,
        "videoId": "video-123",
    })


@pytest.fixture
def engine_config():
    return EngineConfig()
