import asyncio
import json
import time

import pytest

from linkmeta.worker.redis.lua_scripts import LuaScripts


def _as_bytes(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode()


class FakeRedis:
    """Minimal async Redis stub covering the list, pub/sub and script calls
    the metadata queue makes. Index 0 of each list is its LEFT end.
    """

    def __init__(self):
        self.lists: dict[str, list[bytes]] = {}
        self.published: list[tuple[str, str]] = []
        self.subscribers = 1
        self.publish_failures = 0
        self.closed = False

    def _list(self, key: str) -> list[bytes]:
        return self.lists.setdefault(key, [])

    def _move(self, src: str, dst: str, wherefrom: str, whereto: str):
        source = self._list(src)
        if not source:
            return None
        value = source.pop() if wherefrom == "RIGHT" else source.pop(0)
        if whereto == "LEFT":
            self._list(dst).insert(0, value)
        else:
            self._list(dst).append(value)
        return value

    async def lpush(self, key: str, *values):
        for value in values:
            self._list(key).insert(0, _as_bytes(value))
        return len(self._list(key))

    async def lmove(self, first_list, second_list, src="LEFT", dest="RIGHT"):
        return self._move(first_list, second_list, src, dest)

    async def blmove(self, first_list, second_list, timeout, src="LEFT", dest="RIGHT"):
        deadline = time.monotonic() + timeout
        while True:
            value = self._move(first_list, second_list, src, dest)
            if value is not None:
                return value
            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(0.005)

    async def lrem(self, key: str, count: int, value):
        items = self._list(key)
        value = _as_bytes(value)
        removed = 0
        while value in items and (count == 0 or removed < count):
            items.remove(value)
            removed += 1
        return removed

    async def llen(self, key: str):
        return len(self._list(key))

    async def lrange(self, key: str, start: int, end: int):
        items = self._list(key)
        return list(items[start:] if end == -1 else items[start : end + 1])

    async def eval(self, script: str, num_keys: int, *keys_and_args):  # noqa: ARG002
        if script == LuaScripts.ACK_JOB:
            key, job_id = keys_and_args
            for entry in list(self._list(key)):
                try:
                    decoded = json.loads(entry)
                except ValueError:
                    continue
                if isinstance(decoded, dict) and decoded.get("id") == job_id:
                    self._list(key).remove(entry)
                    return 1
            return 0

        if script == LuaScripts.REQUEUE_PROCESSING:
            processing, pending = keys_and_args
            moved = 0
            while self._move(processing, pending, "LEFT", "RIGHT") is not None:
                moved += 1
            return moved

        raise AssertionError("unexpected script")

    async def publish(self, channel: str, message: str):
        if self.publish_failures:
            self.publish_failures -= 1
            raise ConnectionError("publish failed")
        self.published.append((channel, message))
        return self.subscribers

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
