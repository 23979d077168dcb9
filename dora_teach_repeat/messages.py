"""Arrow encoding of the repeat node inputs and outputs."""

import json
from typing import Any, Dict

import numpy as np
import pyarrow as pa

from .anchor_points import AnchorPointSwitch
from .geometry import Pose, Twist, TrajectoryError

VECTOR3_TYPE = pa.struct([
    pa.field("x", pa.float64()),
    pa.field("y", pa.float64()),
    pa.field("z", pa.float64()),
])

QUATERNION_TYPE = pa.struct([
    pa.field("x", pa.float64()),
    pa.field("y", pa.float64()),
    pa.field("z", pa.float64()),
    pa.field("w", pa.float64()),
])

TWIST_TYPE = pa.struct([
    pa.field("linear", VECTOR3_TYPE),
    pa.field("angular", VECTOR3_TYPE),
])

POSE_TYPE = pa.struct([
    pa.field("position", VECTOR3_TYPE),
    pa.field("orientation", QUATERNION_TYPE),
])

TRAJECTORY_ERROR_TYPE = pa.struct([
    pa.field("x", pa.float64()),
    pa.field("y", pa.float64()),
    pa.field("theta", pa.float64()),
])

ANCHOR_POINT_SWITCH_TYPE = pa.struct([
    pa.field("stamp", pa.float64()),
    pa.field("new_anchor_point", pa.string()),
])


def _vector3(values) -> Dict[str, float]:
    x, y, z = values
    return {"x": float(x), "y": float(y), "z": float(z)}


def twist_to_arrow(twist: Twist) -> pa.Array:
    return pa.array(
        [{"linear": _vector3(twist.linear), "angular": _vector3(twist.angular)}],
        type=TWIST_TYPE,
    )


def pose_to_arrow(pose: Pose) -> pa.Array:
    qx, qy, qz, qw = pose.orientation
    return pa.array(
        [{
            "position": _vector3(pose.position),
            "orientation": {"x": float(qx), "y": float(qy), "z": float(qz), "w": float(qw)},
        }],
        type=POSE_TYPE,
    )


def trajectory_error_to_arrow(error: TrajectoryError) -> pa.Array:
    return pa.array([{"x": error.x, "y": error.y, "theta": error.theta}],
                    type=TRAJECTORY_ERROR_TYPE)


def anchor_point_switch_to_arrow(switch: AnchorPointSwitch) -> pa.Array:
    return pa.array([{"stamp": switch.stamp, "new_anchor_point": switch.new_anchor_point}],
                    type=ANCHOR_POINT_SWITCH_TYPE)


def twist_from_arrow(value: pa.Array) -> Twist:
    item = value[0].as_py()
    linear, angular = item["linear"], item["angular"]
    return Twist(
        linear=(linear["x"], linear["y"], linear["z"]),
        angular=(angular["x"], angular["y"], angular["z"]),
    )


def cloud_from_arrow(value: pa.Array) -> np.ndarray:
    """Decode a point cloud, either flat `x y z x y z ...` or a struct of x/y/z."""
    if pa.types.is_struct(value.type):
        names = [value.type.field(i).name for i in range(value.type.num_fields)]
        if not {"x", "y", "z"} <= set(names):
            raise ValueError(f"Point cloud struct needs x, y and z fields, got {names}")
        columns = [value.field(axis).to_numpy(zero_copy_only=False) for axis in ("x", "y", "z")]
        return np.stack(columns, axis=-1).astype(np.float64)

    flat = value.to_numpy(zero_copy_only=False).astype(np.float64)
    if flat.size % 3:
        raise ValueError(f"Point cloud size {flat.size} is not a multiple of 3")
    return flat.reshape(-1, 3)


def pose_from_arrow(value: pa.Array) -> Pose:
    """Decode `x y z qx qy qz qw` floats."""
    return Pose.from_values(value.to_pylist())


def string_from_arrow(value: pa.Array) -> str:
    return value[0].as_py()


def params_from_arrow(value: pa.Array) -> Dict[str, Any]:
    """Parameters come as a JSON object string or as a struct."""
    if pa.types.is_struct(value.type):
        return value[0].as_py()
    try:
        params = json.loads(string_from_arrow(value))
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed parameters message: {e}") from e
    if not isinstance(params, dict):
        raise ValueError(f"Parameters must be a JSON object, got {params!r}")
    return params
