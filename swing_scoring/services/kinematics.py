"""
Geometry and time-derivative helpers shared by the phase detector and the
feature extractor. All series are numpy arrays indexed by normalized frame
position; derivatives are taken against the real timestamps, so uneven
sampling needs no resampling.
"""

import numpy as np
from typing import List


def center(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Midpoint of two (n, 2) position series"""
    return (a + b) / 2.0


def linear_speed(positions: np.ndarray, timestamps: np.ndarray) -> np.ndarray:
    """Speed magnitude in coordinate units per second"""
    velocity = np.gradient(positions, timestamps, axis=0)
    return np.linalg.norm(velocity, axis=1)


def line_angle_deg(start: np.ndarray, end: np.ndarray) -> np.ndarray:
    """Orientation of the start -> end line, unwrapped so it is continuous across frames"""
    delta = end - start
    return np.degrees(np.unwrap(np.arctan2(delta[:, 1], delta[:, 0])))


def angular_speed(angles_deg: np.ndarray, timestamps: np.ndarray) -> np.ndarray:
    """Absolute angular speed in deg/s"""
    return np.abs(np.gradient(angles_deg, timestamps))


def wrap_deg(angles):
    """Wrap degrees into [-180, 180)"""
    return (np.asarray(angles) + 180.0) % 360.0 - 180.0


def joint_angle_deg(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    """Interior angle at b formed by a-b-c, per frame"""
    ba = a - b
    bc = c - b
    norms = np.linalg.norm(ba, axis=1) * np.linalg.norm(bc, axis=1)
    cosine = np.sum(ba * bc, axis=1) / np.where(norms > 0, norms, 1.0)
    return np.degrees(np.arccos(np.clip(cosine, -1.0, 1.0)))


def smooth(values: np.ndarray, window: int) -> np.ndarray:
    """Centered moving average; edges average over the samples available."""
    values = np.asarray(values, dtype=float)
    if window <= 1 or len(values) < window:
        return values.copy()
    kernel = np.ones(window)
    sums = np.convolve(values, kernel, mode="same")
    counts = np.convolve(np.ones_like(values), kernel, mode="same")
    return sums / counts


def local_minima(values: np.ndarray, start: int, end: int) -> List[int]:
    """Interior local minima (plateaus included) within [start, end]"""
    found = []
    lo = max(start, 1)
    hi = min(end, len(values) - 2)
    for i in range(lo, hi + 1):
        if values[i] <= values[i - 1] and values[i] <= values[i + 1]:
            found.append(i)
    return found


def local_maxima(values: np.ndarray, start: int, end: int) -> List[int]:
    """Interior local maxima (plateaus included) within [start, end]"""
    return local_minima(-np.asarray(values), start, end)


def perpendicular_distance(points: np.ndarray, line_start: np.ndarray, line_end: np.ndarray) -> np.ndarray:
    """Distance of each point from the line through line_start and line_end"""
    direction = line_end - line_start
    length = np.linalg.norm(direction)
    offsets = points - line_start
    if length < 1e-12:
        return np.linalg.norm(offsets, axis=1)
    cross = offsets[:, 0] * direction[1] - offsets[:, 1] * direction[0]
    return np.abs(cross) / length


def longest_true_run(mask: np.ndarray) -> int:
    """Length of the longest run of consecutive True values"""
    best = 0
    current = 0
    for flag in mask:
        current = current + 1 if flag else 0
        best = max(best, current)
    return best
