"""
Slide navigation: the current index is the single source of truth.

Every successful move is one index write, which listeners (window sync,
presenter publishing) observe and rebroadcast. Transitions are cosmetic:
when a transition runner is given it wraps the write, otherwise the write
happens directly.
"""
import logging
from typing import Callable, Optional
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from .keyboard import Intent, intent_for_key

logger = logging.getLogger("livedeck")

# Wraps the state mutation, e.g. to animate between slides
TransitionRunner = Callable[[Callable[[], None]], None]
SlideListener = Callable[[int], None]


class SlideNavigator:

    def __init__(
        self,
        total_slides: int,
        initial: int = 0,
        transition: Optional[TransitionRunner] = None,
    ):
        if total_slides < 1:
            raise ValueError("a deck needs at least one slide")
        self.total_slides = total_slides
        self.current = initial if 0 <= initial < total_slides else 0
        self._transition = transition
        self._listeners: list[SlideListener] = []

    def on_change(self, listener: SlideListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def go_to(self, index: int) -> bool:
        """Move to ``index``. Out of range or unchanged moves are ignored."""
        if not 0 <= index < self.total_slides or index == self.current:
            return False

        def apply() -> None:
            self.current = index

        if self._transition is not None:
            self._transition(apply)
        else:
            apply()

        for listener in list(self._listeners):
            listener(self.current)
        return True

    def next(self) -> bool:
        return self.go_to(self.current + 1)

    def previous(self) -> bool:
        return self.go_to(self.current - 1)

    def first(self) -> bool:
        return self.go_to(0)

    def last(self) -> bool:
        return self.go_to(self.total_slides - 1)

    def handle_key(self, key: str) -> bool:
        """Apply a key press. Returns True if the key meant something."""
        nav = intent_for_key(key, self.total_slides)
        if nav is None:
            return False
        if nav.intent is Intent.NEXT:
            self.next()
        elif nav.intent is Intent.PREVIOUS:
            self.previous()
        else:
            self.go_to(nav.index)
        return True


# ============================================================
# URL HELPERS
# ============================================================

def initial_slide(query: str, total_slides: int) -> int:
    """0-based index from a 1-based ``slide`` query parameter, 0 if absent or invalid"""
    values = parse_qs(query.lstrip("?")).get("slide")
    if values:
        try:
            number = int(values[0])
        except ValueError:
            return 0
        if 1 <= number <= total_slides:
            return number - 1
    return 0


def _with_params(url: str, path: Optional[str] = None, **params: str) -> str:
    parts = urlsplit(url)
    query = {key: values[-1] for key, values in parse_qs(parts.query).items()}
    query.update(params)
    return urlunsplit((parts.scheme, parts.netloc, path or parts.path, urlencode(query), ""))


def slide_url(url: str, slide_index: int) -> str:
    """Same page with the ``slide`` parameter pointing at ``slide_index``"""
    return _with_params(url, slide=str(slide_index + 1))


def viewer_url(url: str, slide_index: int) -> str:
    """Audience link for a presenting URL (``/present/`` becomes ``/watch/``)"""
    path = urlsplit(url).path.replace("/present/", "/watch/")
    return _with_params(url, path=path, slide=str(slide_index + 1))


def presenter_window_url(url: str) -> str:
    return _with_params(url, presenter="true")


def is_presenter_window(query: str) -> bool:
    return parse_qs(query.lstrip("?")).get("presenter", [""])[-1] == "true"
