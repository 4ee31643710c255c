"""
Joint Data Normalizer

Turns raw pose frames into per-joint position arrays the rest of the engine
can differentiate. Frames are ordered by time and de-duplicated; low-confidence
samples are filled by linear interpolation and positions are rescaled to
torso lengths. A required joint that never holds confidence for
a long enough run fails the analysis instead of being guessed.
"""

import numpy as np
from typing import List, Dict, Optional
import structlog
from dataclasses import dataclass, field

from swing_scoring.config import NormalizerConfig, settings
from swing_scoring.errors import InsufficientDataError
from swing_scoring.schemas.joints import JointFrame
from swing_scoring.services.kinematics import center, longest_true_run

logger = structlog.get_logger()

DUPLICATE_TIME_EPSILON = 1e-9


@dataclass
class NormalizedFrames:
    """Cleaned joint data for one swing"""
    timestamps: np.ndarray  # seconds, strictly increasing
    frame_indices: np.ndarray  # source frame index for each position
    fps: float
    positions: Dict[str, np.ndarray]  # joint -> (n, 2), in torso lengths
    interpolated: Dict[str, np.ndarray]  # joint -> bool mask of filled samples
    joint_confidence: Dict[str, float]
    confidence: float  # overall, from required joints
    torso_length: float  # body scale, in source coordinate units
    dropped_joints: List[str] = field(default_factory=list)

    @property
    def n_frames(self) -> int:
        return len(self.timestamps)

    def has(self, joint: str) -> bool:
        return joint in self.positions

    def time_ms(self, index: int) -> float:
        return float(self.timestamps[index] * 1000.0)

    def position_of(self, source_frame: int) -> int:
        """Normalized position of the source frame index nearest to ``source_frame``"""
        return int(np.argmin(np.abs(self.frame_indices - source_frame)))


class JointNormalizer:
    """Validates joint coverage and builds NormalizedFrames"""

    def __init__(self, config: NormalizerConfig, default_fps: Optional[float] = None):
        self.config = config
        self.default_fps = default_fps or settings.default_fps
        logger.info(
            "JointNormalizer initialized",
            min_confidence=config.min_confidence,
            min_coverage=config.min_coverage,
        )

    def normalize_frames(self, frames: List[JointFrame]) -> NormalizedFrames:
        if not frames:
            raise InsufficientDataError("No joint frames supplied")

        ordered = self._order_frames(frames)
        n = len(ordered)
        if n < self.config.min_frames:
            raise InsufficientDataError(
                f"Only {n} usable frames, need at least {self.config.min_frames}",
                {"frames": n},
            )

        timestamps = np.array([ts for ts, _, _ in ordered], dtype=float)
        frame_indices = np.array([idx for _, idx, _ in ordered], dtype=int)
        joint_maps = [frame.joint_map() for _, _, frame in ordered]

        positions: Dict[str, np.ndarray] = {}
        interpolated: Dict[str, np.ndarray] = {}
        joint_confidence: Dict[str, float] = {}
        dropped: List[str] = []

        for name in self.config.required_joints + self.config.optional_joints:
            required = name in self.config.required_joints
            track = self._clean_joint(name, joint_maps, timestamps, required)
            if track is None:
                dropped.append(name)
                continue
            positions[name], interpolated[name], joint_confidence[name] = track

        hip_center = center(positions["left_hip"], positions["right_hip"])
        shoulder_center = center(positions["left_shoulder"], positions["right_shoulder"])
        torso_length = float(np.median(np.linalg.norm(shoulder_center - hip_center, axis=1)))
        if torso_length <= 1e-9:
            raise InsufficientDataError("Torso length is zero; shoulders and hips coincide")

        # Express every position in torso lengths so downstream lengths and
        # speeds are independent of camera distance
        positions = {name: xy / torso_length for name, xy in positions.items()}

        intervals = np.diff(timestamps)
        fps = float(1.0 / np.median(intervals))

        overall = float(np.clip(
            np.mean([joint_confidence[name] for name in self.config.required_joints]), 0.0, 1.0
        ))

        logger.info(
            "Joint data normalized",
            frames=n,
            fps=round(fps, 2),
            confidence=round(overall, 3),
            dropped_joints=dropped,
        )

        return NormalizedFrames(
            timestamps=timestamps,
            frame_indices=frame_indices,
            fps=fps,
            positions=positions,
            interpolated=interpolated,
            joint_confidence=joint_confidence,
            confidence=overall,
            torso_length=torso_length,
            dropped_joints=dropped,
        )

    def _order_frames(self, frames: List[JointFrame]):
        """Time each frame, stable-sort by time and drop duplicate timestamps"""
        timed = []
        for position, frame in enumerate(frames):
            source_index = frame.frame_index if frame.frame_index is not None else position
            if frame.timestamp is not None:
                ts = float(frame.timestamp)
            else:
                ts = source_index / self.default_fps
            if not np.isfinite(ts):
                logger.warning("Skipping frame with non-finite timestamp", frame=source_index)
                continue
            timed.append((ts, source_index, frame))

        timed.sort(key=lambda item: item[0])

        ordered = []
        duplicates = 0
        for item in timed:
            if ordered and abs(item[0] - ordered[-1][0]) <= DUPLICATE_TIME_EPSILON:
                duplicates += 1
                continue
            ordered.append(item)

        if duplicates:
            logger.warning("Dropped frames with duplicate timestamps", duplicates=duplicates)
        return ordered

    def _clean_joint(self, name, joint_maps, timestamps, required):
        n = len(joint_maps)
        xy = np.zeros((n, 2))
        conf = np.zeros(n)
        present = np.zeros(n, dtype=bool)

        for i, joints in enumerate(joint_maps):
            joint = joints.get(name)
            if joint is None:
                continue
            if not (np.isfinite(joint.x) and np.isfinite(joint.y)):
                continue
            xy[i] = (joint.x, joint.y)
            conf[i] = joint.confidence
            present[i] = True

        usable = present & (conf > self.config.min_confidence)
        coverage = longest_true_run(usable) / n

        if coverage < self.config.min_coverage:
            if required:
                raise InsufficientDataError(
                    f"Required joint {name} has no usable run covering "
                    f"{self.config.min_coverage:.0%} of frames",
                    {"joint": name, "coverage": round(coverage, 3)},
                )
            logger.info("Optional joint dropped", joint=name, coverage=round(coverage, 3))
            return None

        filled = ~usable
        if filled.any():
            known_t = timestamps[usable]
            xy[:, 0] = np.interp(timestamps, known_t, xy[usable, 0])
            xy[:, 1] = np.interp(timestamps, known_t, xy[usable, 1])

        return xy, filled, float(conf.mean())
