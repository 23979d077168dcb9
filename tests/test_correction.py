import threading

import numpy as np
import pytest

from conftest import SlowMatcher, StaticMatcher, make_tracker
from dora_teach_repeat.controller import CommandCorrector
from dora_teach_repeat.correction import CorrectionPipeline
from dora_teach_repeat.geometry import Pose, TrajectoryError
from dora_teach_repeat.matching import CloudMatcher


class RaisingMatcher(CloudMatcher):
    def match(self, readings, reference):
        raise ConnectionError("service unavailable")


class CapturingMatcher(CloudMatcher):
    def __init__(self):
        self.readings = None

    def match(self, readings, reference):
        self.readings = readings
        return StaticMatcher().match(readings, reference)


def make_pipeline(matcher, pose=None, sensor_to_robot=None, tracker=None, workers=4):
    errors = []
    failures = []
    corrector = CommandCorrector()
    pipeline = CorrectionPipeline(
        matcher=matcher,
        corrector=corrector,
        anchor_points=make_tracker((0, 0)) if tracker is None else tracker,
        current_pose=lambda: pose or Pose(),
        sensor_to_robot=np.eye(4) if sensor_to_robot is None else sensor_to_robot,
        report_error=errors.append,
        on_failure=lambda: failures.append(True),
        max_workers=workers,
    )
    return pipeline, corrector, errors, failures


def scan():
    return np.random.default_rng(0).uniform(-1, 1, size=(20, 3))


def test_concurrent_scans_are_dropped_while_matching():
    matcher = SlowMatcher()
    pipeline, _, errors, _ = make_pipeline(matcher)

    first = pipeline.submit(scan())
    assert matcher.started.wait(timeout=5)

    others = [pipeline.submit(scan()) for _ in range(5)]
    for future in others:
        assert future.result(timeout=5) is None

    matcher.release.set()
    assert first.result(timeout=5) == TrajectoryError()
    pipeline.shutdown()

    assert matcher.calls == 1
    assert matcher.max_in_flight == 1
    assert pipeline.accepted == 1
    assert pipeline.dropped == 5
    assert len(errors) == 1


def test_success_updates_corrector_and_reports():
    transform = np.eye(4)
    transform[:2, 3] = (0.3, -0.2)
    pipeline, corrector, errors, failures = make_pipeline(StaticMatcher(transform))

    pipeline.submit(scan()).result(timeout=5)
    pipeline.shutdown()

    assert corrector.error == TrajectoryError(x=0.3, y=-0.2, theta=0.0)
    assert errors == [corrector.error]
    assert failures == []


@pytest.mark.parametrize("matcher", [StaticMatcher(success=False), RaisingMatcher()])
def test_failure_calls_fault_hook_and_releases_guard(matcher):
    pipeline, corrector, errors, failures = make_pipeline(matcher)

    assert pipeline.submit(scan()).result(timeout=5) is None
    assert failures == [True]
    assert errors == []
    assert corrector.error == TrajectoryError()
    assert pipeline.failures == 1

    # The guard is free again
    assert pipeline.match_lock.acquire(blocking=False)
    pipeline.match_lock.release()
    pipeline.shutdown()


def test_scan_is_moved_into_the_anchor_frame():
    matcher = CapturingMatcher()
    sensor_to_robot = np.eye(4)
    sensor_to_robot[2, 3] = 0.5
    pipeline, _, _, _ = make_pipeline(
        matcher,
        pose=Pose.planar(3.0, 1.0),
        sensor_to_robot=sensor_to_robot,
        tracker=make_tracker((1.0, 1.0)),
    )

    pipeline.submit(np.zeros((1, 3))).result(timeout=5)
    pipeline.shutdown()
    np.testing.assert_allclose(matcher.readings, [[2.0, 0.0, 0.5]], atol=1e-9)


def test_no_anchor_points_means_no_matching():
    matcher = StaticMatcher()
    pipeline, _, _, _ = make_pipeline(matcher, tracker=make_tracker())
    assert pipeline.submit(scan()).result(timeout=5) is None
    pipeline.shutdown()
    assert matcher.calls == 0


def test_shutdown_waits_for_running_match():
    matcher = SlowMatcher()
    pipeline, _, errors, _ = make_pipeline(matcher)
    pipeline.submit(scan())
    assert matcher.started.wait(timeout=5)

    stopper = threading.Thread(target=pipeline.shutdown)
    stopper.start()
    stopper.join(timeout=0.2)
    assert stopper.is_alive()

    matcher.release.set()
    stopper.join(timeout=5)
    assert not stopper.is_alive()
    assert len(errors) == 1

    # Nothing is accepted after shutdown
    assert pipeline.submit(scan()) is None


def test_unexpected_worker_error_is_logged(caplog):
    def lost():
        raise RuntimeError("no pose")

    pipeline, _, errors, _ = make_pipeline(StaticMatcher())
    pipeline.current_pose = lost
    future = pipeline.submit(scan())
    assert isinstance(future.exception(timeout=5), RuntimeError)
    # Joins the workers, so the done callbacks have run
    pipeline.shutdown()

    assert errors == []
    assert "Correction of a cloud failed" in caplog.text
    assert "no pose" in caplog.text
