"""The active thread's transcript and the commands a front end can issue.

One transcript is active at a time. ``activate`` rehydrates it from storage
and ``deactivate`` flushes it. A navigation to a different thread swaps it
wholesale. The mutation subscription is registered once per page and routed
to whichever watcher is current.
"""

import asyncio
import datetime as dt
from pathlib import Path

from .driver import CompletionResult, HistoryCompletionDriver, Outcome
from .log import log_debug, log_warn
from .parser import DEFAULT_SELECTORS
from .render import export_filename, normalize_format, render
from .store import MessageStore, is_chat_page, thread_key
from .watcher import ChangeWatcher


class ExportSession:
    def __init__(self, page, storage, *, selectors=DEFAULT_SELECTORS, output_dir=None,
                 export_name="lovable-chat", settle_delay=0.6, stable_rounds=3,
                 persist_debounce=0.4):
        self.page = page
        self.storage = storage
        self.selectors = selectors
        self.output_dir = Path(output_dir) if output_dir else Path.cwd()
        self.export_name = export_name
        self.settle_delay = settle_delay
        self.stable_rounds = stable_rounds
        self.persist_debounce = persist_debounce

        self.key = None
        self.store = None
        self.watcher = None
        self.driver = None
        self._switch_task = None
        self._activate_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, page, storage, config, selectors=DEFAULT_SELECTORS):
        capture = config.get("capture", {})
        output = config.get("output", {})
        return cls(
            page,
            storage,
            selectors=selectors,
            output_dir=output.get("dir"),
            export_name=output.get("export_name", "lovable-chat"),
            settle_delay=float(capture.get("settle_delay", 0.6)),
            stable_rounds=int(capture.get("stable_rounds", 3)),
            persist_debounce=float(capture.get("persist_debounce", 0.4)),
        )

    @property
    def active(self) -> bool:
        return self.store is not None

    @property
    def count(self) -> int:
        return len(self.store) if self.store is not None else 0

    async def start(self):
        """Subscribe to page mutations and navigation, then activate the current thread."""
        await self.page.subscribe(self._on_mutation)
        self.page.on_navigate(self._on_navigate)
        return await self.activate(self.page.url)

    async def activate(self, url: str) -> int:
        async with self._activate_lock:
            return await self._activate(url)

    async def _activate(self, url):
        if not is_chat_page(url):
            await self.deactivate()
            log_debug(f"Not a chat page: {url}")
            return 0
        key = thread_key(url)
        if key == self.key and self.active:
            return self.count
        await self.deactivate()

        store = MessageStore(key, self.storage, debounce=self.persist_debounce)
        store.load_from(await self.storage.get(key))
        self.key = key
        self.store = store
        self.watcher = ChangeWatcher(self.page, store, self.selectors)
        self.driver = HistoryCompletionDriver(
            self.page, self.watcher, store,
            settle_delay=self.settle_delay, stable_rounds=self.stable_rounds,
        )
        await self.watcher.rescan()
        log_debug(f"Activated {key} with {self.count} messages")
        return self.count

    async def deactivate(self):
        if self.store is None:
            return
        await self.watcher.stop()
        await self.store.flush()
        log_debug(f"Deactivated {self.key}")
        self.key = self.store = self.watcher = self.driver = None

    def _on_mutation(self):
        if self.watcher is not None:
            self.watcher.notify()

    def _on_navigate(self, url):
        if self.active and thread_key(url) == self.key:
            return
        self._switch_task = asyncio.ensure_future(self._switch(self._switch_task, url))

    async def _switch(self, previous, url):
        # Switches run in navigation order; a superseded one only gets logged
        if previous is not None:
            try:
                await previous
            except Exception as e:
                log_warn(f"Thread switch failed: {e}")
        return await self.activate(url)

    async def settle(self):
        """Wait for a pending thread switch and queued rescans."""
        if self._switch_task is not None:
            await self._switch_task
            self._switch_task = None
        if self.watcher is not None:
            await self.watcher.idle()

    # Commands

    async def capture_history(self) -> CompletionResult:
        if self.driver is None:
            return CompletionResult(Outcome.NO_CONTAINER, 0, message="Not on a chat page.")
        result = await self.driver.run()
        if result.outcome is Outcome.NO_CONTAINER:
            log_warn(result.message)
        return result

    def render(self, fmt: str, now: dt.datetime = None) -> str:
        records = self.store.get_all() if self.store is not None else []
        return render(fmt, records, self.page.url, now)

    async def export(self, fmt: str, now: dt.datetime = None) -> Path:
        fmt = normalize_format(fmt)
        if now is None:
            now = dt.datetime.now().astimezone()
        content = self.render(fmt, now)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / export_filename(self.export_name, fmt, now)
        await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        log_debug(f"Wrote {fmt} export to {path}")
        return path

    async def clear(self) -> int:
        if self.store is not None:
            await self.store.clear()
        return self.count

    async def close(self):
        await self.settle()
        await self.deactivate()
