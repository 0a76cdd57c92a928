"""Rescan the rendered document whenever it changes."""

import asyncio

from bs4 import BeautifulSoup

from .log import log_debug
from .parser import DEFAULT_SELECTORS, parse_fragment


class ChangeWatcher:
    """Full rescan on every notification.

    The visible set is bounded by the virtualization window, so re-parsing
    every candidate is cheap and catches nodes the host swaps or reorders.
    Notifications only set a pending flag; one drain task works through
    them so rescans never overlap.
    """

    def __init__(self, source, store, selectors=DEFAULT_SELECTORS):
        self.source = source
        self.store = store
        self.selectors = selectors
        self.scans = 0
        self._lock = asyncio.Lock()
        self._pending = False
        self._drain_task = None

    async def rescan(self) -> int:
        async with self._lock:
            markup = await self.source.snapshot()
            # No awaits below: the store is never left half-updated
            soup = BeautifulSoup(markup or "", "html.parser")
            new_count = 0
            for tag in soup.select(self.selectors.message):
                record = parse_fragment(tag, self.selectors)
                if record is None:
                    continue
                if self.store.upsert(record):
                    new_count += 1
            self.scans += 1
        if new_count:
            log_debug(f"Rescan found {new_count} new messages ({len(self.store)} total)")
        return new_count

    def notify(self, *_):
        self._pending = True
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.ensure_future(self._drain())

    async def _drain(self):
        while self._pending:
            self._pending = False
            await self.rescan()

    async def idle(self):
        """Wait until queued notifications have been processed."""
        while self._drain_task is not None and not self._drain_task.done():
            await self._drain_task

    async def stop(self):
        self._pending = False
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
