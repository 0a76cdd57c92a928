"""Playwright adapter: the live page as the watcher's and driver's source."""

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .driver import SCROLL_HINTS, ScrollCandidate, choose_scroll_container
from .log import log_debug

NOTIFY_BINDING = "__lceNotify"

OBSERVER_JS = """() => {
  if (window.__lceObserver || !document.body) return false;
  window.__lceObserver = new MutationObserver(() => {
    if (window.__lceNotify) window.__lceNotify();
  });
  window.__lceObserver.observe(document.body, { childList: true, subtree: true });
  return true;
}"""

# Init scripts run before <body> exists; wait for it
OBSERVER_INIT_JS = f"""
(() => {{
  const install = {OBSERVER_JS};
  if (!install()) document.addEventListener('DOMContentLoaded', install, {{ once: true }});
}})();
"""

MEASURE_JS = """(hints) => {
  const hintRank = new Map();
  hints.forEach((sel, rank) => {
    const el = document.querySelector(sel);
    if (el && !hintRank.has(el)) hintRank.set(el, rank);
  });
  const depthOf = (el) => { let d = 0; while (el.parentElement) { el = el.parentElement; d++; } return d; };
  const elements = [];
  const metrics = [];
  document.querySelectorAll('*').forEach(el => {
    if (el.scrollHeight <= el.clientHeight) return;
    elements.push(el);
    metrics.push({
      depth: depthOf(el),
      scrollHeight: el.scrollHeight,
      clientHeight: el.clientHeight,
      hintRank: hintRank.has(el) ? hintRank.get(el) : null,
    });
  });
  return { elements, metrics };
}"""


class PlaywrightChatPage:
    def __init__(self, page: Page, scroll_hints=SCROLL_HINTS, scroll_margin: float = 50):
        self.page = page
        self.scroll_hints = list(scroll_hints)
        self.scroll_margin = scroll_margin
        self._subscribed = False

    @property
    def url(self) -> str:
        return self.page.url

    async def snapshot(self) -> str:
        try:
            return await self.page.content()
        except PlaywrightError as e:
            # Navigation in flight; the next notification rescans
            log_debug(f"Snapshot skipped: {e}")
            return ""

    async def subscribe(self, callback):
        """Route every DOM mutation batch to ``callback``; registered once per page."""
        if self._subscribed:
            return
        await self.page.expose_binding(NOTIFY_BINDING, lambda source: callback())
        await self.page.add_init_script(OBSERVER_INIT_JS)
        await self.page.evaluate(OBSERVER_JS)
        self._subscribed = True

    def on_navigate(self, callback):
        def handler(frame):
            if frame == self.page.main_frame:
                callback(frame.url)

        self.page.on("framenavigated", handler)

    async def find_scroll_container(self):
        handle = await self.page.evaluate_handle(MEASURE_JS, self.scroll_hints)
        try:
            metrics = await (await handle.get_property("metrics")).json_value()
            candidates = [
                ScrollCandidate(
                    ref=i,
                    depth=m["depth"],
                    scroll_height=m["scrollHeight"],
                    client_height=m["clientHeight"],
                    hint_rank=m["hintRank"],
                )
                for i, m in enumerate(metrics)
            ]
            chosen = choose_scroll_container(candidates, self.scroll_margin)
            if chosen is None:
                return None
            elements = await handle.get_property("elements")
            element = (await elements.get_property(str(chosen.ref))).as_element()
            log_debug(f"Scroll container at depth {chosen.depth} (hint {chosen.hint_rank})")
            return element
        finally:
            await handle.dispose()

    async def scroll_to_top(self, container):
        await container.evaluate("el => { el.scrollTop = 0; }")

    async def scroll_to_bottom(self, container):
        await container.evaluate("el => { el.scrollTop = el.scrollHeight; }")
