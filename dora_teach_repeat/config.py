"""
Configuration for the Teach & Repeat node.
Every value can be overridden from the dataflow `env:` section.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _env_transform() -> Optional[Tuple[float, ...]]:
    raw = os.getenv("SENSOR_TRANSFORM", "").replace(",", " ").split()
    if not raw:
        return None
    if len(raw) != 7:
        raise ValueError(
            f"SENSOR_TRANSFORM expects 7 values (x y z qx qy qz qw), got {len(raw)}"
        )
    return tuple(float(value) for value in raw)


def topic_to_output_id(topic: str) -> str:
    """Map a ROS-style topic name onto a dora input/output id.

    `/teach_repeat/desired_command` becomes `teach_repeat_desired_command`.
    """
    return topic.strip("/").replace("/", "_")


@dataclass
class RepeatConfig:
    """Repeat node configuration class"""

    # Teach files
    WORKING_DIRECTORY: str = field(default_factory=lambda: os.getenv("WORKING_DIRECTORY", ""))
    COMMANDS_FILE: str = field(default_factory=lambda: os.getenv("COMMANDS_FILE", "speeds.sl"))
    POSITIONS_FILE: str = field(default_factory=lambda: os.getenv("POSITIONS_FILE", "positions.pl"))
    ANCHOR_POINTS_FILE: str = field(
        default_factory=lambda: os.getenv("ANCHOR_POINTS_FILE", "anchorPoints.apd")
    )

    # Topics
    SOURCE_TOPIC: str = field(default_factory=lambda: os.getenv("SOURCE_TOPIC", "/cloud"))
    COMMAND_OUTPUT_TOPIC: str = field(
        default_factory=lambda: os.getenv("COMMAND_OUTPUT_TOPIC", "/teach_repeat/desired_command")
    )
    JOY_TOPIC: str = "/joy"
    PARAMS_TOPIC: str = "params"
    TRANSFORM_TOPIC: str = "sensor_transform"
    REFERENCE_POSE_TOPIC: str = "/teach_repeat/reference_pose"
    ERROR_REPORTING_TOPIC: str = "/teach_repeat/raw_error"
    AP_SWITCH_TOPIC: str = "/teach_repeat/ap_switch"

    # Playback
    LOOP_RATE: float = field(default_factory=lambda: float(os.getenv("LOOP_RATE", "100.0")))
    LOOKAHEAD: float = field(default_factory=lambda: float(os.getenv("LOOKAHEAD", "0.0")))

    # Lidar -> base_link, x y z qx qy qz qw
    SENSOR_TRANSFORM: Optional[Tuple[float, ...]] = field(default_factory=_env_transform)
    TRANSFORM_TIMEOUT: float = field(
        default_factory=lambda: float(os.getenv("TRANSFORM_TIMEOUT", "5.0"))
    )

    # Correction pipeline
    MATCH_WORKERS: int = field(default_factory=lambda: int(os.getenv("MATCH_WORKERS", "4")))
    ICP_MAX_ITERATIONS: int = field(
        default_factory=lambda: int(os.getenv("ICP_MAX_ITERATIONS", "30"))
    )
    ICP_MAX_CORRESPONDENCE: float = field(
        default_factory=lambda: float(os.getenv("ICP_MAX_CORRESPONDENCE", "1.0"))
    )
    ICP_MIN_INLIER_RATIO: float = field(
        default_factory=lambda: float(os.getenv("ICP_MIN_INLIER_RATIO", "0.3"))
    )

    # Controller
    GAIN_X: float = field(default_factory=lambda: float(os.getenv("GAIN_X", "0.5")))
    GAIN_Y: float = field(default_factory=lambda: float(os.getenv("GAIN_Y", "0.8")))
    GAIN_THETA: float = field(default_factory=lambda: float(os.getenv("GAIN_THETA", "1.0")))
    MAX_LINEAR_SPEED: float = field(
        default_factory=lambda: float(os.getenv("MAX_LINEAR_SPEED", "1.0"))
    )
    MAX_ANGULAR_SPEED: float = field(
        default_factory=lambda: float(os.getenv("MAX_ANGULAR_SPEED", "1.5"))
    )

    # Gamepad buttons
    RESUME_BUTTON: str = field(default_factory=lambda: os.getenv("RESUME_BUTTON", "RB"))
    ACKNOWLEDGE_BUTTON: str = field(default_factory=lambda: os.getenv("ACKNOWLEDGE_BUTTON", "X"))

    # Logging
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def __post_init__(self):
        if self.LOOP_RATE <= 0:
            raise ValueError(f"LOOP_RATE must be positive, got {self.LOOP_RATE}")
        if self.MATCH_WORKERS < 1:
            raise ValueError(f"MATCH_WORKERS must be at least 1, got {self.MATCH_WORKERS}")

    @property
    def source_id(self) -> str:
        return topic_to_output_id(self.SOURCE_TOPIC)

    @property
    def command_output_id(self) -> str:
        return topic_to_output_id(self.COMMAND_OUTPUT_TOPIC)

    @property
    def joy_id(self) -> str:
        return topic_to_output_id(self.JOY_TOPIC)

    @property
    def params_id(self) -> str:
        return topic_to_output_id(self.PARAMS_TOPIC)

    @property
    def transform_id(self) -> str:
        return topic_to_output_id(self.TRANSFORM_TOPIC)

    @property
    def reference_pose_id(self) -> str:
        return topic_to_output_id(self.REFERENCE_POSE_TOPIC)

    @property
    def error_reporting_id(self) -> str:
        return topic_to_output_id(self.ERROR_REPORTING_TOPIC)

    @property
    def ap_switch_id(self) -> str:
        return topic_to_output_id(self.AP_SWITCH_TOPIC)
