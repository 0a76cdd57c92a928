"""Tests for the change watcher's full-rescan capture."""

import asyncio

import pytest

from lovable_exporter.store import MessageStore
from lovable_exporter.watcher import ChangeWatcher
from tests.fakes import FakePage, message, window


@pytest.mark.asyncio
class TestRescan:
    async def test_counts_new_records(self):
        page = FakePage([window(message("umsg_1", 0, "hi"), message("a_1", 80, "hello"))])
        store = MessageStore("k")
        watcher = ChangeWatcher(page, store)
        assert await watcher.rescan() == 2
        assert [r.id for r in store.get_all()] == ["umsg_1", "a_1"]

    async def test_repeated_rescans_never_grow(self):
        page = FakePage([window(message("umsg_1", 0), message("a_1", 80))])
        store = MessageStore("k")
        watcher = ChangeWatcher(page, store)
        await watcher.rescan()
        for _ in range(5):
            assert await watcher.rescan() == 0
        assert len(store) == 2

    async def test_reflow_updates_positions(self):
        page = FakePage([window(message("a", 0), message("b", 100))])
        store = MessageStore("k")
        watcher = ChangeWatcher(page, store)
        await watcher.rescan()
        page.windows = [window(message("b", 0), message("a", 100, "changed"))]
        assert await watcher.rescan() == 0
        assert [r.id for r in store.get_all()] == ["b", "a"]
        assert store.get("a").content_text == ""

    async def test_unparseable_nodes_skipped(self):
        page = FakePage([window('<div data-message-id="">ghost</div>', message("a", 5))])
        store = MessageStore("k")
        assert await ChangeWatcher(page, store).rescan() == 1

    async def test_empty_snapshot(self):
        page = FakePage([""])
        assert await ChangeWatcher(page, MessageStore("k")).rescan() == 0


@pytest.mark.asyncio
class TestNotifications:
    async def test_burst_is_coalesced(self):
        page = FakePage([window(message("a", 0), message("b", 10))])
        store = MessageStore("k")
        watcher = ChangeWatcher(page, store)
        for _ in range(10):
            watcher.notify()
        await watcher.idle()
        assert watcher.scans == 1
        assert len(store) == 2

    async def test_notification_during_scan_rescans_once_more(self):
        page = FakePage([window(message("a", 0))])
        store = MessageStore("k")
        watcher = ChangeWatcher(page, store)
        watcher.notify()
        await asyncio.sleep(0)
        page.windows = [window(message("a", 0), message("b", 10))]
        watcher.notify()
        await watcher.idle()
        assert len(store) == 2
        assert watcher.scans <= 2

    async def test_stop_drops_pending_work(self):
        page = FakePage([window(message("a", 0))])
        watcher = ChangeWatcher(page, MessageStore("k"))
        watcher.notify()
        await watcher.stop()
        await watcher.idle()
