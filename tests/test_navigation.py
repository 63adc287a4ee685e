"""Tests for livedeck.navigation."""

from __future__ import annotations

import pytest

from livedeck.navigation import (
    SlideNavigator,
    initial_slide,
    is_presenter_window,
    presenter_window_url,
    slide_url,
    viewer_url,
)


class TestSlideNavigator:

    def test_moves_within_bounds(self) -> None:
        nav = SlideNavigator(3)
        assert nav.next() and nav.current == 1
        assert nav.last() and nav.current == 2
        assert not nav.next()
        assert nav.first() and nav.current == 0
        assert not nav.previous()

    def test_same_index_is_a_no_op(self) -> None:
        nav = SlideNavigator(3, initial=1)
        changes: list[int] = []
        nav.on_change(changes.append)

        assert not nav.go_to(1)
        assert changes == []

    def test_listeners_see_every_change(self) -> None:
        nav = SlideNavigator(5)
        changes: list[int] = []
        stop = nav.on_change(changes.append)

        nav.go_to(3)
        nav.previous()
        stop()
        nav.next()

        assert changes == [3, 2]

    def test_transition_wraps_the_update(self) -> None:
        order: list[str] = []

        def transition(apply) -> None:
            order.append("start")
            apply()
            order.append("end")

        nav = SlideNavigator(3, transition=transition)
        nav.on_change(lambda i: order.append(f"changed {i}"))
        nav.next()

        assert order == ["start", "end", "changed 1"]

    def test_keys(self) -> None:
        nav = SlideNavigator(5)
        assert nav.handle_key("End") and nav.current == 4
        assert nav.handle_key("2") and nav.current == 1
        assert nav.handle_key("ArrowLeft") and nav.current == 0
        assert not nav.handle_key("x")

    def test_superscript_digit_is_ignored(self) -> None:
        nav = SlideNavigator(5, initial=2)
        assert not nav.handle_key("²")
        assert nav.current == 2

    def test_invalid_initial_slide(self) -> None:
        assert SlideNavigator(3, initial=7).current == 0

    def test_empty_deck(self) -> None:
        with pytest.raises(ValueError):
            SlideNavigator(0)


class TestUrls:

    @pytest.mark.parametrize("query,expected", [
        ("?slide=3", 2),
        ("slide=1", 0),
        ("?slide=9", 0),
        ("?slide=0", 0),
        ("?slide=abc", 0),
        ("", 0),
    ])
    def test_initial_slide(self, query: str, expected: int) -> None:
        assert initial_slide(query, 5) == expected

    def test_slide_url(self) -> None:
        assert slide_url("http://deck.test/present/a?x=1", 2) == "http://deck.test/present/a?x=1&slide=3"

    def test_viewer_url(self) -> None:
        url = viewer_url("https://deck.test/present/keynote?slide=1", 4)
        assert url == "https://deck.test/watch/keynote?slide=5"

    def test_presenter_window(self) -> None:
        url = presenter_window_url("http://deck.test/present/a?slide=2")
        assert url == "http://deck.test/present/a?slide=2&presenter=true"
        assert is_presenter_window(url.split("?", 1)[1])
        assert not is_presenter_window("?slide=2")
