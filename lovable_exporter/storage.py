"""Durable key-value storage: one JSON file per thread key."""

import asyncio
import json
import os
from pathlib import Path

from .log import log_debug, log_warn


class JsonFileStorage:
    def __init__(self, directory):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    async def get(self, key: str) -> dict:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: dict):
        await asyncio.to_thread(self._write, key, value)

    async def remove(self, key: str):
        await asyncio.to_thread(self._remove, key)

    def _read(self, key):
        path = self.path_for(key)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log_warn(f"Failed to read {path.name}: {e}")
            return {}
        if not isinstance(data, dict):
            log_warn(f"Ignoring {path.name}: expected an object")
            return {}
        return data

    def _write(self, key, value):
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)
        log_debug(f"Saved {len(value)} records to {path.name}")

    def _remove(self, key):
        self.path_for(key).unlink(missing_ok=True)
