"""
Tests for qvdao_chain.events.
"""
from __future__ import annotations

import asyncio

import pytest

from qvdao_chain.events import EventChannel, WalletEvent


class TestEventChannel:
    """Tests for subscribe / emit / unsubscribe."""

    def test_emit_delivers_in_order(self):
        channel = EventChannel("test")
        seen = []
        channel.subscribe(WalletEvent.CONNECTED, lambda n: seen.append(("first", n.data)))
        channel.subscribe(WalletEvent.CONNECTED, lambda n: seen.append(("second", n.data)))

        notification = channel.emit(WalletEvent.CONNECTED, address="0xabc")

        assert seen == [("first", {"address": "0xabc"}), ("second", {"address": "0xabc"})]
        assert notification.event is WalletEvent.CONNECTED

    def test_wildcard_subscription(self):
        channel = EventChannel()
        seen = []
        channel.subscribe(None, lambda n: seen.append(n.event))

        channel.emit(WalletEvent.CONNECTED)
        channel.emit(WalletEvent.CACHE_CLEARED)

        assert seen == [WalletEvent.CONNECTED, WalletEvent.CACHE_CLEARED]

    def test_unsubscribe_handle(self):
        channel = EventChannel()
        seen = []
        unsubscribe = channel.subscribe(WalletEvent.ERROR, seen.append)
        unsubscribe()
        unsubscribe()

        channel.emit(WalletEvent.ERROR)
        assert seen == []
        assert channel.subscriber_count() == 0

    def test_duplicate_subscription_ignored(self):
        channel = EventChannel()
        seen = []
        channel.subscribe(WalletEvent.ERROR, seen.append)
        channel.subscribe(WalletEvent.ERROR, seen.append)

        channel.emit(WalletEvent.ERROR)
        assert len(seen) == 1

    def test_failing_handler_does_not_stop_delivery(self):
        channel = EventChannel()
        seen = []

        def broken(notification):
            raise RuntimeError("boom")

        channel.subscribe(WalletEvent.MESSAGE, broken)
        channel.subscribe(WalletEvent.MESSAGE, seen.append)

        channel.emit(WalletEvent.MESSAGE, message="hi")
        assert seen[0].data["message"] == "hi"

    @pytest.mark.asyncio
    async def test_coroutine_handlers_are_scheduled(self):
        channel = EventChannel()
        done = asyncio.Event()

        async def handler(notification):
            done.set()

        channel.subscribe(WalletEvent.DISCONNECTED, handler)
        channel.emit(WalletEvent.DISCONNECTED)

        await asyncio.wait_for(done.wait(), 1.0)

    def test_clear(self):
        channel = EventChannel()
        channel.subscribe(WalletEvent.ERROR, lambda n: None)
        channel.subscribe(None, lambda n: None)

        channel.clear()
        assert channel.subscriber_count() == 0
