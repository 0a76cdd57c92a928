"""Tests for the active-thread lifecycle and the export commands."""

import datetime as dt
import json

import pytest

from lovable_exporter.driver import Outcome
from lovable_exporter.session import ExportSession
from lovable_exporter.storage import JsonFileStorage
from lovable_exporter.store import thread_key
from tests.fakes import CHAT_URL, FakePage, FakeStorage, message, window

OTHER_URL = "https://lovable.dev/projects/zzz999"
NOW = dt.datetime(2026, 10, 16, 9, 0, tzinfo=dt.timezone.utc)


class BrokenReadStorage(FakeStorage):
    def __init__(self, broken_key):
        super().__init__()
        self.broken_key = broken_key

    async def get(self, key):
        if key == self.broken_key:
            raise RuntimeError("unreadable")
        return await super().get(key)


def make_session(page, storage, tmp_path, **kwargs):
    return ExportSession(
        page, storage, output_dir=tmp_path / "out",
        settle_delay=0, persist_debounce=0.01, **kwargs,
    )


@pytest.mark.asyncio
class TestLifecycle:
    async def test_start_subscribes_and_captures_visible(self, tmp_path):
        page = FakePage([window(message("umsg_1", 0, "hi"), message("a_1", 50, "hello"))])
        session = make_session(page, FakeStorage(), tmp_path)
        assert await session.start() == 2
        assert session.key == thread_key(CHAT_URL)
        assert len(page.subscribers) == 1

    async def test_rehydrates_from_storage(self, tmp_path):
        storage = FakeStorage({thread_key(CHAT_URL): {
            "old": {"id": "old", "role": "user", "sortKey": -100, "contentText": "earlier"},
        }})
        page = FakePage([window(message("a_1", 50))])
        session = make_session(page, storage, tmp_path)
        await session.start()
        assert [r.id for r in session.store.get_all()] == ["old", "a_1"]

    async def test_mutations_feed_the_store(self, tmp_path):
        page = FakePage([window(message("a_1", 0))])
        session = make_session(page, FakeStorage(), tmp_path)
        await session.start()
        page.windows = [window(message("a_1", 0), message("a_2", 40))]
        page.mutate()
        await session.settle()
        assert session.count == 2

    async def test_thread_switch_flushes_and_swaps(self, tmp_path):
        storage = FakeStorage()
        page = FakePage([window(message("a_1", 0))])
        session = make_session(page, storage, tmp_path)
        await session.start()

        page.navigate(OTHER_URL, [window(message("b_1", 0), message("b_2", 10))])
        await session.settle()

        assert session.key == thread_key(OTHER_URL)
        assert session.count == 2
        assert "a_1" in storage.data[thread_key(CHAT_URL)]

    async def test_same_thread_navigation_keeps_transcript(self, tmp_path):
        page = FakePage([window(message("a_1", 0))])
        session = make_session(page, FakeStorage(), tmp_path)
        await session.start()
        store = session.store
        page.navigate(CHAT_URL + "/")
        await session.settle()
        assert session.store is store

    async def test_leaving_chat_deactivates(self, tmp_path):
        page = FakePage([window(message("a_1", 0))])
        session = make_session(page, FakeStorage(), tmp_path)
        await session.start()
        page.navigate("https://lovable.dev/settings")
        await session.settle()
        assert not session.active
        assert session.count == 0
        page.mutate()

    async def test_malformed_stored_record_does_not_block_start(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "threads")
        storage.directory.mkdir()
        storage.path_for(thread_key(CHAT_URL)).write_text('{"x": {"role": "user"}}', encoding="utf-8")
        page = FakePage([window(message("a_1", 0))])
        session = make_session(page, storage, tmp_path)
        assert await session.start() == 1
        assert [r.id for r in session.store.get_all()] == ["a_1"]

    async def test_failed_switch_does_not_stop_the_next(self, tmp_path, capsys):
        third_url = "https://lovable.dev/projects/third"
        storage = BrokenReadStorage(thread_key(OTHER_URL))
        page = FakePage([window(message("a_1", 0))])
        session = make_session(page, storage, tmp_path)
        await session.start()

        page.navigate(OTHER_URL)
        page.navigate(third_url, [window(message("c_1", 0))])
        await session.settle()

        assert session.key == thread_key(third_url)
        assert session.count == 1
        assert "Thread switch failed" in capsys.readouterr().err

    async def test_close_persists(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "threads")
        page = FakePage([window(message("a_1", 0))])
        session = make_session(page, storage, tmp_path)
        await session.start()
        await session.close()
        assert list((await storage.get(thread_key(CHAT_URL))).keys()) == ["a_1"]


@pytest.mark.asyncio
class TestCommands:
    async def test_capture_history(self, tmp_path):
        page = FakePage([window(message("a_1", 900)), window(message("umsg_0", 100))])
        session = make_session(page, FakeStorage(), tmp_path)
        await session.start()
        result = await session.capture_history()
        assert result.outcome is Outcome.SETTLED
        assert result.count == 2
        assert session.count == 2

    async def test_capture_without_container(self, tmp_path):
        page = FakePage([window(message("a_1", 0))], container=None)
        session = make_session(page, FakeStorage(), tmp_path)
        await session.start()
        result = await session.capture_history()
        assert result.outcome is Outcome.NO_CONTAINER

    async def test_capture_off_chat_page(self, tmp_path):
        page = FakePage(url="https://lovable.dev/")
        session = make_session(page, FakeStorage(), tmp_path)
        await session.start()
        result = await session.capture_history()
        assert result.outcome is Outcome.NO_CONTAINER
        assert result.count == 0

    async def test_export_writes_named_files(self, tmp_path):
        page = FakePage([window(message("umsg_1", 0, "hi"), message("a_1", 50, "hello"))])
        session = make_session(page, FakeStorage(), tmp_path, export_name="thread")
        await session.start()

        md = await session.export("md", NOW)
        html_path = await session.export("html", NOW)
        json_path = await session.export("json", NOW)

        assert md.name == "thread-2026-10-16.md"
        assert html_path.name == "thread-2026-10-16.html"
        assert "## 👤 You" in md.read_text(encoding="utf-8")
        assert json.loads(json_path.read_text(encoding="utf-8"))["messageCount"] == 2

    async def test_export_rejects_unknown_format(self, tmp_path):
        session = make_session(FakePage(), FakeStorage(), tmp_path)
        await session.start()
        with pytest.raises(ValueError):
            await session.export("pdf")

    async def test_clear(self, tmp_path):
        storage = FakeStorage()
        page = FakePage([window(message("a_1", 0))])
        session = make_session(page, storage, tmp_path)
        await session.start()
        assert await session.clear() == 0
        assert storage.removed == [thread_key(CHAT_URL)]
        assert json.loads(session.render("json", NOW))["messages"] == []

    async def test_from_config(self, tmp_path):
        config = {
            "output": {"dir": str(tmp_path), "export_name": "mine"},
            "capture": {"settle_delay": 0, "stable_rounds": 5, "persist_debounce": 1},
        }
        session = ExportSession.from_config(FakePage(), FakeStorage(), config)
        assert session.export_name == "mine"
        assert session.stable_rounds == 5
        assert session.output_dir == tmp_path
