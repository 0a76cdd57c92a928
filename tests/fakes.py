"""Browser-free stand-ins for the Playwright page and the storage backend."""

import asyncio

CHAT_URL = "https://lovable.dev/projects/abc123"


def message(message_id, top, body="", date=None, time=None):
    stamp = ""
    if date is not None:
        stamp = f'<div><span class="text-muted-foreground font-medium">{date}</span><span>{time or ""}</span></div>'
    return (
        f'<div data-message-id="{message_id}" style="position: absolute; top: {top}px;">'
        f'{stamp}<div class="prose"><p>{body}</p></div></div>'
    )


def window(*messages):
    return "<html><body><main>" + "".join(messages) + "</main></body></html>"


class FakePage:
    """Serves one markup window per scroll position; each scroll to the top reveals the next."""

    def __init__(self, windows=None, url=CHAT_URL, container="chat-scroller"):
        self.windows = list(windows or [window()])
        self.url = url
        self.container = container
        self.position = 0
        self.top_calls = 0
        self.bottom_calls = 0
        self.snapshots = 0
        self.subscribers = []
        self.navigation_handlers = []

    async def snapshot(self):
        self.snapshots += 1
        return self.windows[min(self.position, len(self.windows) - 1)]

    async def subscribe(self, callback):
        self.subscribers.append(callback)

    def on_navigate(self, callback):
        self.navigation_handlers.append(callback)

    async def find_scroll_container(self):
        return self.container

    async def scroll_to_top(self, container):
        self.top_calls += 1
        self.position += 1

    async def scroll_to_bottom(self, container):
        self.bottom_calls += 1

    def mutate(self):
        for callback in self.subscribers:
            callback()

    def navigate(self, url, windows=None):
        self.url = url
        if windows is not None:
            self.windows = list(windows)
            self.position = 0
        for handler in self.navigation_handlers:
            handler(url)


class FakeStorage:
    def __init__(self, data=None, fail=False, delay=0):
        self.data = dict(data or {})
        self.fail = fail
        self.delay = delay
        self.writes = []
        self.removed = []

    async def get(self, key):
        return self.data.get(key, {})

    async def set(self, key, value):
        if self.fail:
            raise OSError("disk full")
        if self.delay:
            await asyncio.sleep(self.delay)
        self.writes.append((key, value))
        self.data[key] = value

    async def remove(self, key):
        if self.fail:
            raise OSError("read-only")
        self.removed.append(key)
        self.data.pop(key, None)
