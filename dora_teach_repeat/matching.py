"""
Cloud matching used to measure the drift against an anchor point.

The repeat core only needs something with a `match(readings, reference)`
method. `IcpCloudMatcher` is a plain point-to-point ICP that is good enough
for clouds already expressed in the anchor frame.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    success: bool
    transform: np.ndarray = field(default_factory=lambda: np.eye(4))


class CloudMatcher:
    """Interface of the registration service."""

    def match(self, readings: np.ndarray, reference: np.ndarray) -> MatchResult:
        raise NotImplementedError


def best_fit_transform(source: np.ndarray, target: np.ndarray) -> np.ndarray:
    """Least squares rigid transform mapping `source` onto `target` (Kabsch)."""
    source_centroid = source.mean(axis=0)
    target_centroid = target.mean(axis=0)
    h = (source - source_centroid).T @ (target - target_centroid)
    u, _, vt = np.linalg.svd(h)
    rotation = vt.T @ u.T
    if np.linalg.det(rotation) < 0:
        vt[-1, :] *= -1
        rotation = vt.T @ u.T

    transform = np.eye(4)
    transform[:3, :3] = rotation
    transform[:3, 3] = target_centroid - rotation @ source_centroid
    return transform


class IcpCloudMatcher(CloudMatcher):
    def __init__(self, max_iterations=30, max_correspondence_distance=1.0,
                 min_inlier_ratio=0.3, tolerance=1e-6):
        self.max_iterations = max_iterations
        self.max_correspondence_distance = max_correspondence_distance
        self.min_inlier_ratio = min_inlier_ratio
        self.tolerance = tolerance

    @classmethod
    def from_config(cls, config) -> "IcpCloudMatcher":
        return cls(
            max_iterations=config.ICP_MAX_ITERATIONS,
            max_correspondence_distance=config.ICP_MAX_CORRESPONDENCE,
            min_inlier_ratio=config.ICP_MIN_INLIER_RATIO,
        )

    def match(self, readings: np.ndarray, reference: np.ndarray) -> MatchResult:
        readings = np.asarray(readings, dtype=np.float64).reshape(-1, 3)
        reference = np.asarray(reference, dtype=np.float64).reshape(-1, 3)
        if len(readings) < 3 or len(reference) < 3:
            logger.warning(f"Not enough points to match: {len(readings)} readings, {len(reference)} reference")
            return MatchResult(success=False)

        tree = cKDTree(reference)
        transform = np.eye(4)
        current = readings
        previous_error = np.inf
        inlier_ratio = 0.0

        for _ in range(self.max_iterations):
            distances, indices = tree.query(current)
            inliers = distances <= self.max_correspondence_distance
            inlier_ratio = inliers.mean()
            if inliers.sum() < 3:
                break

            step = best_fit_transform(current[inliers], reference[indices[inliers]])
            current = current @ step[:3, :3].T + step[:3, 3]
            transform = step @ transform

            mean_error = distances[inliers].mean()
            if abs(previous_error - mean_error) < self.tolerance:
                break
            previous_error = mean_error

        if inlier_ratio < self.min_inlier_ratio:
            logger.warning(f"ICP did not converge, inlier ratio {inlier_ratio:.2f}")
            return MatchResult(success=False, transform=transform)
        return MatchResult(success=True, transform=transform)
