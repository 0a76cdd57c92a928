"""Force the virtual list to materialize older messages by scrolling to the top.

The loop keeps scrolling the container to its origin, waits for the list to
render, rescans and stops once the record count has not moved for
``stable_rounds`` consecutive iterations. A plateau of one iteration is
common while the list animates, so the threshold is a debounce rather than a
true end-of-history signal.
"""

import asyncio
import enum
from dataclasses import dataclass
from typing import Any, Optional

from .log import log_debug

SCROLL_HINTS = (
    '[class*="overflow-y-auto"]',
    '[class*="overflow-y-scroll"]',
    "main",
)


class CompletionState(enum.Enum):
    IDLE = "idle"
    SCROLLING = "scrolling"
    SETTLED = "settled"


class Outcome(enum.Enum):
    SETTLED = "settled"
    NO_CONTAINER = "no_container"
    ALREADY_RUNNING = "already_running"


@dataclass
class CompletionResult:
    outcome: Outcome
    count: int
    iterations: int = 0
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SETTLED


@dataclass
class ScrollCandidate:
    """Measurements of one element that might be the chat's scroll container."""

    ref: Any
    depth: int
    scroll_height: float
    client_height: float
    hint_rank: Optional[int] = None


def choose_scroll_container(candidates, margin: float = 50) -> Optional[ScrollCandidate]:
    hinted = [
        c for c in candidates
        if c.hint_rank is not None and c.scroll_height > c.client_height
    ]
    if hinted:
        return min(hinted, key=lambda c: c.hint_rank)

    deepest = None
    for c in candidates:
        if c.scroll_height > c.client_height + margin:
            if deepest is None or c.depth > deepest.depth:
                deepest = c
    return deepest


class HistoryCompletionDriver:
    def __init__(self, page, watcher, store, settle_delay: float = 0.6, stable_rounds: int = 3):
        self.page = page
        self.watcher = watcher
        self.store = store
        self.settle_delay = settle_delay
        self.stable_rounds = stable_rounds
        self.state = CompletionState.IDLE

    @property
    def running(self) -> bool:
        return self.state is CompletionState.SCROLLING

    async def run(self) -> CompletionResult:
        if self.running:
            log_debug("History completion already running; request dropped")
            return CompletionResult(Outcome.ALREADY_RUNNING, len(self.store), message="Already capturing.")

        # Claimed before the first await so a second request sees it
        self.state = CompletionState.SCROLLING
        try:
            container = await self.page.find_scroll_container()
            if container is None:
                self.state = CompletionState.IDLE
                return CompletionResult(
                    Outcome.NO_CONTAINER,
                    len(self.store),
                    message="Could not find scroll container.",
                )
            iterations = await self._scroll_until_stable(container)
            await self.page.scroll_to_bottom(container)
        except BaseException:
            self.state = CompletionState.IDLE
            raise
        self.state = CompletionState.SETTLED

        count = len(self.store)
        log_debug(f"History settled after {iterations} iterations with {count} messages")
        return CompletionResult(Outcome.SETTLED, count, iterations, f"Captured {count} messages!")

    async def _scroll_until_stable(self, container) -> int:
        last_count = len(self.store)
        stable = 0
        iterations = 0
        while stable < self.stable_rounds:
            iterations += 1
            await self.page.scroll_to_top(container)
            await asyncio.sleep(self.settle_delay)
            await self.watcher.rescan()
            current = len(self.store)
            if current == last_count:
                stable += 1
            else:
                stable = 0
                last_count = current
        return iterations
