"""
Correction pipeline.

Every incoming scan is matched against the reference cloud of the current
anchor point on a worker thread. Only one match runs at a time: scans that
arrive while the matcher is busy are dropped, never queued.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

import numpy as np

from .anchor_points import AnchorPointTracker
from .controller import CommandCorrector
from .geometry import (
    Pose,
    TrajectoryError,
    control_error_of_transformation,
    transform_between_poses,
    transform_cloud,
)
from .matching import CloudMatcher

logger = logging.getLogger(__name__)


def _noop():
    pass


def _log_unexpected_error(future: Future):
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Correction of a cloud failed: {error!r}", exc_info=error)


class CorrectionPipeline:
    def __init__(
        self,
        matcher: CloudMatcher,
        corrector: CommandCorrector,
        anchor_points: AnchorPointTracker,
        current_pose: Callable[[], Pose],
        sensor_to_robot: np.ndarray,
        report_error: Callable[[TrajectoryError], None],
        on_failure: Callable[[], None] = _noop,
        max_workers: int = 4,
    ):
        self.matcher = matcher
        self.corrector = corrector
        self.anchor_points = anchor_points
        self.current_pose = current_pose
        self.sensor_to_robot = np.asarray(sensor_to_robot, dtype=np.float64)
        self.report_error = report_error
        self.on_failure = on_failure

        self.match_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="match")
        self._accepting = True
        self._state_lock = threading.Lock()

        # Statistics
        self.accepted = 0
        self.dropped = 0
        self.failures = 0

    def submit(self, scan: np.ndarray) -> Optional[Future]:
        """Hand a scan over to a worker. Returns None once shut down."""
        with self._state_lock:
            if not self._accepting:
                logger.debug("Pipeline is shutting down, ignoring cloud.")
                return None
            future = self._executor.submit(self.update_error, scan)
        future.add_done_callback(_log_unexpected_error)
        return future

    def update_error(self, scan: np.ndarray) -> Optional[TrajectoryError]:
        if len(self.anchor_points) == 0:
            logger.debug("No anchor point to match against, ignoring cloud.")
            return None

        anchor_point = self.anchor_points.current()
        reading_to_anchor = transform_between_poses(self.current_pose(), anchor_point.pose)
        transformed = transform_cloud(reading_to_anchor @ self.sensor_to_robot, scan)

        if not self.match_lock.acquire(blocking=False):
            with self._state_lock:
                self.dropped += 1
            logger.info("ICP service was busy, dropped a cloud.")
            return None

        try:
            with self._state_lock:
                self.accepted += 1
            try:
                result = self.matcher.match(transformed, anchor_point.cloud)
            except Exception as e:
                logger.warning(f"Point matching raised: {e}")
                result = None

            if result is None or not result.success:
                with self._state_lock:
                    self.failures += 1
                logger.warning("There was a problem with the point matching service.")
                self.on_failure()
                return None

            error = control_error_of_transformation(result.transform)
            self.corrector.update_error(error)
            self.report_error(error)
            return error
        finally:
            self.match_lock.release()

    def wait_until_idle(self):
        """Block until no match is in flight."""
        self.match_lock.acquire()
        self.match_lock.release()

    def shutdown(self):
        with self._state_lock:
            self._accepting = False
        self.wait_until_idle()
        self._executor.shutdown(wait=True)
        logger.info(
            f"Correction pipeline stopped: {self.accepted} matched, "
            f"{self.dropped} dropped, {self.failures} failed"
        )
