"""
Pose, twist and rigid transform helpers.

Transforms are homogeneous 4x4 numpy matrices, quaternions are scipy's
scalar-last (x, y, z, w) order.
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

Vector3 = Tuple[float, float, float]
Quaternion = Tuple[float, float, float, float]

IDENTITY_QUATERNION: Quaternion = (0.0, 0.0, 0.0, 1.0)

# Weight of the heading difference (rad) against the position distance (m).
YAW_DISTANCE_WEIGHT = 0.1


@dataclass(frozen=True)
class Twist:
    linear: Vector3 = (0.0, 0.0, 0.0)
    angular: Vector3 = (0.0, 0.0, 0.0)

    @classmethod
    def planar(cls, linear_x: float, angular_z: float) -> "Twist":
        return cls(linear=(linear_x, 0.0, 0.0), angular=(0.0, 0.0, angular_z))

    def is_idle(self) -> bool:
        return not any(self.linear) and not any(self.angular)


@dataclass(frozen=True)
class Pose:
    position: Vector3 = (0.0, 0.0, 0.0)
    orientation: Quaternion = IDENTITY_QUATERNION

    @classmethod
    def from_values(cls, values: Sequence[float]) -> "Pose":
        """Build a pose from `x y z qx qy qz qw`."""
        if len(values) != 7:
            raise ValueError(f"A pose needs 7 values (x y z qx qy qz qw), got {len(values)}")
        x, y, z, qx, qy, qz, qw = (float(v) for v in values)
        return cls(position=(x, y, z), orientation=(qx, qy, qz, qw))

    @classmethod
    def planar(cls, x: float, y: float, yaw: float = 0.0) -> "Pose":
        quat = Rotation.from_euler("z", yaw).as_quat()
        return cls(position=(x, y, 0.0), orientation=tuple(float(q) for q in quat))

    @property
    def yaw(self) -> float:
        return float(Rotation.from_quat(self.orientation).as_euler("ZYX")[0])


@dataclass(frozen=True)
class TrajectoryError:
    """Control error of the robot with respect to the taught path.

    x is the longitudinal error, y the lateral error and theta the heading
    error, all expressed in the anchor point frame.
    """

    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0


def pose_to_matrix(pose: Pose) -> np.ndarray:
    matrix = np.eye(4)
    matrix[:3, :3] = Rotation.from_quat(pose.orientation).as_matrix()
    matrix[:3, 3] = pose.position
    return matrix


def invert_transform(matrix: np.ndarray) -> np.ndarray:
    rotation = matrix[:3, :3]
    inverse = np.eye(4)
    inverse[:3, :3] = rotation.T
    inverse[:3, 3] = -rotation.T @ matrix[:3, 3]
    return inverse


def transform_between_poses(origin: Pose, target: Pose) -> np.ndarray:
    """Transform taking coordinates in the `origin` frame to the `target` frame."""
    return invert_transform(pose_to_matrix(target)) @ pose_to_matrix(origin)


def transform_cloud(matrix: np.ndarray, cloud: np.ndarray) -> np.ndarray:
    """Apply a rigid transform to an (N, 3) point cloud."""
    cloud = np.asarray(cloud, dtype=np.float64).reshape(-1, 3)
    return cloud @ matrix[:3, :3].T + matrix[:3, 3]


def wrap_angle(angle: float) -> float:
    return math.atan2(math.sin(angle), math.cos(angle))


def custom_distance(a: Pose, b: Pose) -> float:
    """Position-dominant distance between two poses."""
    position_distance = float(np.linalg.norm(np.subtract(a.position, b.position)))
    yaw_distance = abs(wrap_angle(a.yaw - b.yaw))
    return position_distance + YAW_DISTANCE_WEIGHT * yaw_distance


def control_error_of_transformation(matrix: np.ndarray) -> TrajectoryError:
    """Turn a registration result into a planar control error."""
    yaw = float(Rotation.from_matrix(matrix[:3, :3]).as_euler("ZYX")[0])
    return TrajectoryError(x=float(matrix[0, 3]), y=float(matrix[1, 3]), theta=wrap_angle(yaw))
