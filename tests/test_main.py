import json
import threading

import numpy as np
import pyarrow as pa
import pytest

from conftest import StaticMatcher
from dora_teach_repeat.config import RepeatConfig, topic_to_output_id
from dora_teach_repeat.main import DoraPublisher, dispatch, read_events, run, wait_for_sensor_transform
from dora_teach_repeat.messages import cloud_from_arrow, twist_from_arrow
from dora_teach_repeat.geometry import Twist


class DummyNode:
    """Stands in for `dora.Node`, replaying a fixed list of events."""

    def __init__(self, events=()):
        self.events = list(events)
        self.outputs = []

    def __iter__(self):
        return iter(self.events)

    def next(self, timeout=None):
        return self.events.pop(0) if self.events else None

    def send_output(self, output_id, data, metadata=None):
        self.outputs.append((output_id, data, metadata))


class RecordingRepeat:
    def __init__(self):
        self.clouds = []
        self.gamepad = []
        self.params = []

    def on_cloud(self, scan):
        self.clouds.append(scan)

    def handle_gamepad(self, raw_control):
        self.gamepad.append(raw_control)

    def update_params(self, params):
        self.params.append(params)


def input_event(event_id, value):
    return {"type": "INPUT", "id": event_id, "value": value, "metadata": {}}


def test_topic_names_map_to_dora_ids():
    config = RepeatConfig()
    assert topic_to_output_id("/teach_repeat/desired_command") == "teach_repeat_desired_command"
    assert config.source_id == "cloud"
    assert config.joy_id == "joy"


def test_dispatch_routes_inputs():
    config = RepeatConfig()
    repeat = RecordingRepeat()

    dispatch(repeat, config, input_event("cloud", pa.array(np.arange(6, dtype=np.float32))))
    dispatch(repeat, config, input_event("joy", pa.array([json.dumps({"buttons": [0] * 12})])))
    dispatch(repeat, config, input_event("params", pa.array([json.dumps({"lookahead": 0.3})])))
    dispatch(repeat, config, input_event("unknown", pa.array([1])))

    np.testing.assert_allclose(repeat.clouds[0], [[0, 1, 2], [3, 4, 5]])
    assert json.loads(repeat.gamepad[0]) == {"buttons": [0] * 12}
    assert repeat.params == [{"lookahead": 0.3}]


def test_cloud_decoding():
    struct = pa.array([{"x": 1.0, "y": 2.0, "z": 3.0}, {"x": 4.0, "y": 5.0, "z": 6.0}])
    np.testing.assert_allclose(cloud_from_arrow(struct), [[1, 2, 3], [4, 5, 6]])
    with pytest.raises(ValueError):
        cloud_from_arrow(pa.array([1.0, 2.0]))


def test_read_events_stops_on_stop_event():
    config = RepeatConfig()
    repeat = RecordingRepeat()
    stop = threading.Event()
    errors = []
    node = DummyNode([
        input_event("cloud", pa.array(np.zeros(3, dtype=np.float32))),
        {"type": "STOP"},
        input_event("cloud", pa.array(np.zeros(3, dtype=np.float32))),
    ])

    read_events(node, repeat, config, stop, errors)
    assert stop.is_set()
    assert errors == []
    assert len(repeat.clouds) == 1


def test_read_events_reports_dataflow_errors():
    stop = threading.Event()
    errors = []
    read_events(DummyNode([{"type": "ERROR", "error": "boom"}]), RecordingRepeat(),
                RepeatConfig(), stop, errors)
    assert stop.is_set()
    assert isinstance(errors[0], ValueError)


def test_sensor_transform_from_input():
    config = RepeatConfig(SENSOR_TRANSFORM=None, TRANSFORM_TIMEOUT=1.0)
    node = DummyNode([
        input_event("cloud", pa.array(np.zeros(3, dtype=np.float32))),
        input_event("sensor_transform", pa.array([0.1, 0.0, 0.4, 0.0, 0.0, 0.0, 1.0])),
    ])
    transform = wait_for_sensor_transform(node, config, threading.Event())
    np.testing.assert_allclose(transform[:3, 3], [0.1, 0.0, 0.4])


def test_sensor_transform_timeout_falls_back_to_identity(caplog):
    config = RepeatConfig(SENSOR_TRANSFORM=None, TRANSFORM_TIMEOUT=0.05)
    transform = wait_for_sensor_transform(DummyNode(), config, threading.Event())
    np.testing.assert_allclose(transform, np.eye(4))
    assert "No sensor transform received" in caplog.text


def test_sensor_transform_from_config():
    config = RepeatConfig(SENSOR_TRANSFORM=(0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0))
    transform = wait_for_sensor_transform(DummyNode(), config, threading.Event())
    assert transform[2, 3] == 1.0


def test_publisher_encodes_outputs():
    node = DummyNode()
    publisher = DoraPublisher(node, RepeatConfig())
    publisher.command(Twist.planar(0.4, -0.2))

    output_id, data, metadata = node.outputs[0]
    assert output_id == "teach_repeat_desired_command"
    assert twist_from_arrow(data) == Twist.planar(0.4, -0.2)
    assert metadata["type"] == "twist"


def test_run_until_stop(tmp_path):
    (tmp_path / "speeds.sl").write_text("0 0.2 0 0 0 0 0\n10 0.3 0 0 0 0 0\n")
    (tmp_path / "positions.pl").write_text("0 0 0 0 0 0 0 1\n10 1 0 0 0 0 0 1\n")
    config = RepeatConfig(
        WORKING_DIRECTORY=str(tmp_path),
        SENSOR_TRANSFORM=(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0),
    )
    node = DummyNode([{"type": "STOP"}])

    run(node, config, matcher=StaticMatcher())

    ids = {output_id for output_id, _, _ in node.outputs}
    assert ids <= {"teach_repeat_reference_pose"}
