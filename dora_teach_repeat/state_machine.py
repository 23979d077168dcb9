"""
Playback state machine for the repeat node.
PLAY / PAUSE / ERROR, driven by the gamepad and by matching failures.
"""

import json
import logging
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    """Playback states"""
    PLAY = "play"
    PAUSE = "pause"
    ERROR = "error"


class PlaybackEvent(Enum):
    """Operator requests"""
    RESUME = "resume"
    PAUSE = "pause"
    ACKNOWLEDGE = "acknowledge"


# Logitech F710, same layout as the dora gamepad node
DEFAULT_BUTTON_NAMES = {
    "X": 0,
    "A": 1,
    "B": 2,
    "Y": 3,
    "LB": 4,
    "RB": 5,
    "LT": 6,
    "RT": 7,
    "BACK": 8,
    "START": 9,
    "LEFT-STICK": 10,
    "RIGHT-STICK": 11,
}


def _noop():
    pass


class PlaybackStateMachine:
    """
    Manages playback state transitions.

    `on_start` runs when entering PLAY, `on_pause` when leaving it, either on
    operator request or on a fault. Requests that do not apply to the current
    state are ignored.
    """

    def __init__(self, on_start: Callable[[], None] = _noop,
                 on_pause: Callable[[], None] = _noop):
        self.state = PlaybackState.PAUSE
        self.on_start = on_start
        self.on_pause = on_pause
        self.lock = threading.RLock()

    @property
    def playing(self) -> bool:
        return self.state == PlaybackState.PLAY

    def handle(self, event: PlaybackEvent) -> bool:
        """Apply an operator request. Returns True if the state changed."""
        with self.lock:
            if self.state == PlaybackState.PAUSE and event == PlaybackEvent.RESUME:
                logger.info("Starting playback.")
                self.on_start()
                self.state = PlaybackState.PLAY
                return True

            if self.state == PlaybackState.PLAY and event == PlaybackEvent.PAUSE:
                logger.info("Stopping playback.")
                self.on_pause()
                self.state = PlaybackState.PAUSE
                return True

            if self.state == PlaybackState.ERROR and event == PlaybackEvent.ACKNOWLEDGE:
                # Playback was already stopped when the fault happened
                logger.info("Attempting recovery.")
                self.state = PlaybackState.PAUSE
                return True

            return False

    def fault(self) -> bool:
        """Enter the ERROR state. Returns True on the first fault only."""
        with self.lock:
            if self.state == PlaybackState.ERROR:
                return False
            logger.warning("Switching to emergency mode.")
            self.on_pause()
            self.state = PlaybackState.ERROR
            return True


class GamepadMapping:
    """Turns gamepad button states into playback requests.

    Holding the resume button plays, releasing it pauses (dead man's
    switch). The acknowledge button clears an error.

    Releasing a button only reaches the node if the gamepad source publishes
    on every button change. The dora gamepad node sends `raw_control` only
    while a stick is deflected, so it needs to be patched to publish
    button-only changes as well.
    """

    def __init__(self, resume_button: str = "RB", acknowledge_button: str = "X"):
        self.resume_button = resume_button
        self.acknowledge_button = acknowledge_button

    @staticmethod
    def _pressed(buttons: List[int], names: Dict[str, int], button: str) -> Optional[bool]:
        index = names.get(button)
        if index is None or index >= len(buttons):
            return None
        return bool(buttons[index])

    def events(self, raw_control: Union[str, dict]) -> List[PlaybackEvent]:
        if isinstance(raw_control, str):
            try:
                raw_control = json.loads(raw_control)
            except json.JSONDecodeError as e:
                raise ValueError(f"Malformed gamepad message: {e}") from e
        if not isinstance(raw_control, dict):
            raise ValueError(f"Gamepad message must be a JSON object, got {raw_control!r}")

        buttons = raw_control.get("buttons", [])
        names = raw_control.get("mapping", {}).get("buttons") or DEFAULT_BUTTON_NAMES

        events = []
        if self._pressed(buttons, names, self.acknowledge_button):
            events.append(PlaybackEvent.ACKNOWLEDGE)

        resume = self._pressed(buttons, names, self.resume_button)
        if resume is not None:
            events.append(PlaybackEvent.RESUME if resume else PlaybackEvent.PAUSE)
        return events
