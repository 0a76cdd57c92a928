"""In-memory transcript for the active thread, mirrored to durable storage."""

import asyncio
import base64
import re
from dataclasses import dataclass
from urllib.parse import urlparse

from .log import log_debug, log_warn

STORAGE_KEY_PREFIX = "lce_thread_"
CHAT_PATH_RE = re.compile(r"/(projects|chat)/[a-zA-Z0-9_-]+")

USER = "user"
ASSISTANT = "assistant"


def thread_key(url: str) -> str:
    """Storage key for the thread at ``url``; only the path takes part."""
    path = urlparse(url).path.rstrip("/")
    encoded = base64.b64encode(path.encode("utf-8")).decode("ascii")
    return STORAGE_KEY_PREFIX + re.sub(r"[^a-z0-9]", "_", encoded, flags=re.I)


def is_chat_page(url: str) -> bool:
    return bool(CHAT_PATH_RE.search(urlparse(url).path))


@dataclass
class MessageRecord:
    id: str
    role: str
    timestamp_text: str = ""
    sort_key: float = 0.0
    content_markup: str = ""
    content_text: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "timestampText": self.timestamp_text,
            "sortKey": self.sort_key,
            "contentMarkup": self.content_markup,
            "contentText": self.content_text,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MessageRecord":
        # Also reads records written by the browser extension (topPx/contentHtml, role "ai")
        role = data.get("role") or ASSISTANT
        if role != USER:
            role = ASSISTANT
        sort_key = data.get("sortKey", data.get("topPx", 0))
        if data.get("id") in (None, ""):
            raise KeyError("id")
        return cls(
            id=str(data["id"]),
            role=role,
            timestamp_text=data.get("timestampText") or "",
            sort_key=float(sort_key or 0),
            content_markup=data.get("contentMarkup", data.get("contentHtml")) or "",
            content_text=data.get("contentText") or "",
        )


class MessageStore:
    """Records of one thread keyed by id.

    Content is first-write-wins and ``sort_key`` is last-write-wins. New ids
    schedule a trailing-edge debounced write to ``storage``; every new id
    inside the window pushes the write back.
    """

    def __init__(self, key: str, storage=None, debounce: float = 0.4):
        self.key = key
        self.storage = storage
        self.debounce = debounce
        self._records: dict[str, MessageRecord] = {}
        self._timer = None
        self._writes = set()
        self.dirty = False

    def __len__(self):
        return len(self._records)

    def __contains__(self, record_id):
        return record_id in self._records

    def get(self, record_id):
        return self._records.get(record_id)

    def upsert(self, record: MessageRecord) -> bool:
        """Insert ``record`` or refresh its position. True when the id is new."""
        existing = self._records.get(record.id)
        if existing is not None:
            existing.sort_key = record.sort_key
            return False
        self._records[record.id] = record
        self.dirty = True
        self._schedule_persist()
        return True

    def get_all(self) -> list[MessageRecord]:
        # sorted() is stable: equal offsets keep insertion order
        return sorted(self._records.values(), key=lambda r: r.sort_key)

    def load_from(self, persisted) -> int:
        """Rehydrate from a ``{id: record}`` map or a list of record dicts."""
        items = persisted.values() if isinstance(persisted, dict) else persisted
        loaded = 0
        for item in items or []:
            try:
                record = item if isinstance(item, MessageRecord) else MessageRecord.from_dict(item)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                log_warn(f"Skipping malformed record in {self.key}: {e!r}")
                continue
            if record.id not in self._records:
                self._records[record.id] = record
                loaded += 1
        log_debug(f"Loaded {loaded} records for {self.key}")
        return loaded

    def to_map(self) -> dict:
        return {r.id: r.to_dict() for r in self._records.values()}

    async def persist(self):
        self._cancel_timer()
        self.dirty = False
        if self.storage is None:
            return
        try:
            await self.storage.set(self.key, self.to_map())
        except OSError as e:
            # In-memory state stays authoritative for the session
            log_warn(f"Failed to persist {self.key}: {e}")

    async def flush(self):
        """Write now if a debounced write is still pending."""
        if self.dirty:
            await self.persist()
        await self._wait_writes()

    async def clear(self):
        self._cancel_timer()
        self._records = {}
        self.dirty = False
        # In-flight writes land before the record is removed
        await self._wait_writes()
        if self.storage is None:
            return
        try:
            await self.storage.remove(self.key)
        except OSError as e:
            log_warn(f"Failed to remove {self.key}: {e}")

    def _schedule_persist(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: stays dirty until persist() is awaited
            return
        self._cancel_timer()
        self._timer = loop.call_later(self.debounce, self._start_write)

    def _start_write(self):
        self._timer = None
        task = asyncio.ensure_future(self.persist())
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _wait_writes(self):
        while True:
            pending = [t for t in self._writes if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
