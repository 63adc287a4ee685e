"""Tests for livedeck.reactions: rate limiting, recency and de-duplication."""

from __future__ import annotations

import asyncio

import pytest

from livedeck.reactions import RATE_LIMIT_MS, ReactionService, SendStatus, filter_recent
from tests.conftest import FakeClock


class RecordingTransport:
    def __init__(self, fail: Exception | None = None) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail = fail

    async def __call__(self, deck_id: str, emoji: str) -> None:
        self.calls.append((deck_id, emoji))
        if self.fail is not None:
            raise self.fail


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_second_send_in_window_is_limited(self, clock: FakeClock) -> None:
        transport = RecordingTransport()
        service = ReactionService(transport, clock=clock)

        first = await service.send_reaction("deck-1", "🎉")
        clock.advance(50)
        second = await service.send_reaction("deck-1", "🎉")

        assert first.success
        assert second.rate_limited
        assert transport.calls == [("deck-1", "🎉")]

    @pytest.mark.asyncio
    async def test_allowed_again_after_window(self, clock: FakeClock) -> None:
        transport = RecordingTransport()
        service = ReactionService(transport, clock=clock)

        await service.send_reaction("deck-1", "a")
        clock.advance(RATE_LIMIT_MS)
        result = await service.send_reaction("deck-1", "b")

        assert result.status is SendStatus.SENT
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_sends_only_one_goes_out(self, clock: FakeClock) -> None:
        gate = asyncio.Event()
        calls = []

        async def slow_transport(deck_id: str, emoji: str) -> None:
            calls.append(emoji)
            await gate.wait()

        service = ReactionService(slow_transport, clock=clock)
        first = asyncio.create_task(service.send_reaction("deck-1", "a"))
        await asyncio.sleep(0)
        second = await service.send_reaction("deck-1", "b")
        gate.set()

        assert (await first).success
        assert second.rate_limited
        assert calls == ["a"]

    @pytest.mark.asyncio
    async def test_failure_gives_the_slot_back(self, clock: FakeClock) -> None:
        service = ReactionService(RecordingTransport(fail=ConnectionError("offline")), clock=clock)

        result = await service.send_reaction("deck-1", "🎉")

        assert result.status is SendStatus.FAILED
        assert result.error == "offline"
        assert service.last_reaction_time is None
        assert not service.is_rate_limited()

    @pytest.mark.asyncio
    async def test_failure_restores_previous_stamp(self, clock: FakeClock) -> None:
        transport = RecordingTransport()
        service = ReactionService(transport, clock=clock)
        await service.send_reaction("deck-1", "a")
        sent_at = service.last_reaction_time

        clock.advance(RATE_LIMIT_MS)
        transport.fail = OSError("boom")
        await service.send_reaction("deck-1", "b")

        assert service.last_reaction_time == sent_at

    @pytest.mark.asyncio
    async def test_missing_deck(self, clock: FakeClock) -> None:
        transport = RecordingTransport()
        result = await ReactionService(transport, clock=clock).send_reaction("", "🎉")

        assert result.status is SendStatus.FAILED
        assert result.error == "No deckId"
        assert transport.calls == []


class TestRecency:

    def test_filter_recent_default_window(self) -> None:
        now = 1_000_000
        reactions = [{"id": str(i), "ts": now - age} for i, age in enumerate((15_000, 5_000, 1_000))]

        assert [r["id"] for r in filter_recent(reactions, now=now)] == ["1", "2"]

    def test_filter_recent_custom_window(self) -> None:
        now = 1_000_000
        reactions = [{"id": "old", "ts": now - 3_000}, {"id": "new", "ts": now - 1_000}]

        assert [r["id"] for r in filter_recent(reactions, 2_000, now=now)] == ["new"]

    def test_boundary_is_excluded(self) -> None:
        assert filter_recent([{"ts": 0}], 10, now=10) == []

    def test_service_uses_its_clock(self, clock: FakeClock) -> None:
        service = ReactionService(RecordingTransport(), clock=clock)
        reactions = [{"ts": clock.now - 20_000}, {"ts": clock.now}]
        assert service.filter_recent(reactions) == [{"ts": clock.now}]


class TestSeen:

    def test_cleanup_keeps_only_valid_ids(self) -> None:
        service = ReactionService(RecordingTransport())
        for reaction_id in ("1", "2", "3"):
            service.mark_seen(reaction_id)

        service.cleanup_seen({"2", "3"})

        assert not service.has_seen("1")
        assert service.has_seen("2") and service.has_seen("3")
        assert service.seen_count == 2

    @pytest.mark.asyncio
    async def test_reset(self, clock: FakeClock) -> None:
        service = ReactionService(RecordingTransport(), clock=clock)
        await service.send_reaction("deck-1", "a")
        service.mark_seen("x")

        service.reset()

        assert service.seen_count == 0
        assert not service.is_rate_limited()
