"""
Dora Teach & Repeat Node - Main Module.
Replays a recorded teach, correcting the drift against anchor point clouds.
"""

import logging
import threading
import time
from typing import Callable, Optional

import numpy as np
from dora import Node

from .anchor_points import AnchorPointSwitch
from .config import RepeatConfig
from .geometry import Pose, Twist, TrajectoryError, pose_to_matrix
from .messages import (
    anchor_point_switch_to_arrow,
    cloud_from_arrow,
    params_from_arrow,
    pose_from_arrow,
    pose_to_arrow,
    string_from_arrow,
    trajectory_error_to_arrow,
    twist_to_arrow,
)
from .repeat import Publisher, Repeat
from .state_machine import PlaybackEvent

logger = logging.getLogger(__name__)


class DoraPublisher(Publisher):
    """Sends the repeat outputs through the dora node."""

    def __init__(self, node, config: RepeatConfig):
        self.node = node
        self.config = config
        # The main loop and the matching workers both publish
        self._lock = threading.Lock()

    def _send(self, output_id, data, kind):
        with self._lock:
            self.node.send_output(output_id, data, metadata={"type": kind, "timestamp": time.time()})

    def command(self, twist: Twist):
        self._send(self.config.command_output_id, twist_to_arrow(twist), "twist")

    def reference_pose(self, pose: Pose):
        self._send(self.config.reference_pose_id, pose_to_arrow(pose), "pose")

    def trajectory_error(self, error: TrajectoryError):
        self._send(self.config.error_reporting_id, trajectory_error_to_arrow(error), "trajectory_error")

    def anchor_point_switch(self, switch: AnchorPointSwitch):
        self._send(self.config.ap_switch_id, anchor_point_switch_to_arrow(switch), "anchor_point_switch")


def wait_for_sensor_transform(node, config: RepeatConfig, stop: threading.Event,
                              now: Callable[[], float] = time.monotonic) -> np.ndarray:
    """Resolve the lidar to base_link transform, waiting at most TRANSFORM_TIMEOUT."""
    if config.SENSOR_TRANSFORM is not None:
        return pose_to_matrix(Pose.from_values(config.SENSOR_TRANSFORM))

    deadline = now() + config.TRANSFORM_TIMEOUT
    while (remaining := deadline - now()) > 0:
        event = node.next(timeout=remaining)
        if event is None:
            break
        if event["type"] == "STOP":
            stop.set()
            break
        if event["type"] == "INPUT" and event["id"] == config.transform_id:
            transform = pose_to_matrix(pose_from_arrow(event["value"]))
            logger.info("Received the sensor transform.")
            return transform
        logger.debug(f"Waiting for the sensor transform, ignoring {event['type']} {event.get('id')}")

    logger.warning(
        f"No sensor transform received within {config.TRANSFORM_TIMEOUT}s, using identity."
    )
    return np.eye(4)


def dispatch(repeat: Repeat, config: RepeatConfig, event: dict):
    """Route one dora INPUT event to the repeat core."""
    event_id = event["id"]

    if event_id == config.source_id:
        repeat.on_cloud(cloud_from_arrow(event["value"]))
    elif event_id == config.joy_id:
        repeat.handle_gamepad(string_from_arrow(event["value"]))
    elif event_id == config.params_id:
        repeat.update_params(params_from_arrow(event["value"]))
    elif event_id == config.transform_id:
        logger.debug("Sensor transform is already cached, ignoring update.")
    else:
        logger.debug(f"Ignoring unknown input {event_id}")


def read_events(node, repeat: Repeat, config: RepeatConfig, stop: threading.Event,
                errors: list):
    """Task that reads incoming events until the dataflow stops."""
    try:
        for event in node:
            event_type = event["type"]

            if event_type == "INPUT":
                dispatch(repeat, config, event)
            elif event_type == "STOP":
                logger.info("Received STOP, leaving.")
                break
            elif event_type == "ERROR":
                raise ValueError("An error occurred in the dataflow: " + event["error"])
    except Exception as e:
        errors.append(e)
    finally:
        stop.set()


def run(node, config: Optional[RepeatConfig] = None, **repeat_kwargs):
    config = config or RepeatConfig()
    stop = threading.Event()
    errors = []

    sensor_to_robot = wait_for_sensor_transform(node, config, stop)
    publisher = DoraPublisher(node, config)

    with Repeat(config, publisher, sensor_to_robot=sensor_to_robot, **repeat_kwargs) as repeat:
        reader = threading.Thread(
            target=read_events, args=(node, repeat, config, stop, errors), daemon=True
        )
        reader.start()
        try:
            repeat.spin(stop)
        except KeyboardInterrupt:
            logger.info("Interrupted, leaving.")
        finally:
            stop.set()
            repeat.handle_event(PlaybackEvent.PAUSE)

    if errors:
        raise errors[0]


def main():
    """Main entry point for the teach & repeat node"""
    node = Node()
    config = RepeatConfig()

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info(f"Repeat node starting, loop rate {config.LOOP_RATE} Hz, "
                f"lookahead {config.LOOKAHEAD}s, reading clouds from {config.SOURCE_TOPIC}")

    run(node, config)


if __name__ == "__main__":
    main()
