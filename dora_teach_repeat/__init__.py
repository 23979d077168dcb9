"""Teach & Repeat package for closed-loop trajectory replay.

This package replays a recorded teach (commands and poses) at its original
pace and corrects the drift by matching live lidar scans against the
reference clouds of anchor points recorded along the path.
"""
