"""
Keyboard gestures: key-to-navigation mapping and double-press detection
"""
import string
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .utils import now_ms

DOUBLE_PRESS_THRESHOLD_MS = 500


class Intent(Enum):
    NEXT = "next"
    PREVIOUS = "previous"
    FIRST = "first"
    LAST = "last"
    GOTO = "goto"


@dataclass(frozen=True)
class NavigationIntent:
    intent: Intent
    index: Optional[int] = None


_KEY_INTENTS = {
    "ArrowRight": Intent.NEXT,
    " ": Intent.NEXT,
    "PageDown": Intent.NEXT,
    "ArrowLeft": Intent.PREVIOUS,
    "PageUp": Intent.PREVIOUS,
    "Home": Intent.FIRST,
    "End": Intent.LAST,
}


def intent_for_key(key: str, total_slides: int) -> Optional[NavigationIntent]:
    """
    Map a key name to a navigation intent.

    Digit keys jump to a 1-based slide number and are ignored when the deck
    is shorter than that. Returns None for keys with no meaning.
    """
    intent = _KEY_INTENTS.get(key)
    if intent is Intent.LAST:
        return NavigationIntent(intent, total_slides - 1)
    if intent is Intent.FIRST:
        return NavigationIntent(intent, 0)
    if intent is not None:
        return NavigationIntent(intent)

    if len(key) == 1 and key in string.digits:
        number = int(key)
        if 0 < number <= total_slides:
            return NavigationIntent(Intent.GOTO, number - 1)
    return None


class DoublePressDetector:
    """
    Flags two presses of the same key within the threshold as one gesture
    (e.g. double Escape to leave presentation mode).
    """

    def __init__(self, threshold_ms: int = DOUBLE_PRESS_THRESHOLD_MS):
        self.threshold_ms = threshold_ms
        self._last_press: Optional[int] = None
        self._listeners: list[Callable[[], None]] = []

    def press(self, now: Optional[int] = None) -> bool:
        """Record a press. Returns True (and notifies listeners) on a double press."""
        now = now_ms() if now is None else now
        is_double = self._last_press is not None and (now - self._last_press) < self.threshold_ms
        self._last_press = now

        if is_double:
            for listener in list(self._listeners):
                listener()
        return is_double

    def reset(self) -> None:
        """Forget the last press (e.g. when the modal owning the gesture closes)"""
        self._last_press = None

    def on_double_press(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe
