"""Command corrector feeding the registration error back into the taught commands."""

import logging
import threading
from typing import Any, Dict

from .geometry import Twist, TrajectoryError

logger = logging.getLogger(__name__)


def clamp(value, min_val, max_val):
    """Clamp value between min_val and max_val."""
    return max(min(value, max_val), min_val)


def idle_command() -> Twist:
    return Twist()


def param_as_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Parameter {name} must be a number, got {value!r}") from e


class CommandCorrector:
    """
    Proportional correction of the taught twist.

    The longitudinal error scales the forward speed, the lateral and heading
    errors steer the robot back onto the taught path.
    """

    PARAMS = ("gain_x", "gain_y", "gain_theta", "max_linear_speed", "max_angular_speed")

    def __init__(self, gain_x=0.5, gain_y=0.8, gain_theta=1.0,
                 max_linear_speed=1.0, max_angular_speed=1.5):
        self.gain_x = gain_x
        self.gain_y = gain_y
        self.gain_theta = gain_theta
        self.max_linear_speed = max_linear_speed
        self.max_angular_speed = max_angular_speed

        self.error = TrajectoryError()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "CommandCorrector":
        return cls(
            gain_x=config.GAIN_X,
            gain_y=config.GAIN_Y,
            gain_theta=config.GAIN_THETA,
            max_linear_speed=config.MAX_LINEAR_SPEED,
            max_angular_speed=config.MAX_ANGULAR_SPEED,
        )

    def update_error(self, error: TrajectoryError):
        with self._lock:
            self.error = error

    def update_params(self, params: Dict[str, Any]):
        with self._lock:
            for name in self.PARAMS:
                if name in params:
                    setattr(self, name, param_as_float(name, params[name]))
                    logger.info(f"Controller {name} set to {getattr(self, name)}")

    def correct_command(self, command: Twist) -> Twist:
        with self._lock:
            error = self.error
            linear_x = command.linear[0]
            angular_z = command.angular[2]

            # Only correct while the teach is moving, never start a stopped robot
            if linear_x == 0.0 and angular_z == 0.0:
                return command

            direction = 1.0 if linear_x >= 0.0 else -1.0
            corrected_linear = linear_x - self.gain_x * error.x
            corrected_angular = (
                angular_z
                - direction * self.gain_y * error.y
                - self.gain_theta * error.theta
            )

            corrected_linear = clamp(corrected_linear, -self.max_linear_speed, self.max_linear_speed)
            corrected_angular = clamp(corrected_angular, -self.max_angular_speed, self.max_angular_speed)

        return Twist(
            linear=(corrected_linear, command.linear[1], command.linear[2]),
            angular=(command.angular[0], command.angular[1], corrected_angular),
        )
