"""
Pytest configuration and fixtures for LinkGuard tests.
"""

import asyncio
import fnmatch
import threading
from typing import Dict, List, Optional, Set, Tuple

import pytest
import redis

from linkguard.moderation.controller import ModerationController
from linkguard.moderation.models import (
    ChatContext,
    InboundMessage,
    MediaKind,
    ModerationConfig,
    Participant,
    SenderContext,
)
from linkguard.moderation.storage import WarningStore


class FakePipeline:
    def __init__(self, server: "FakeRedis") -> None:
        self.server = server
        self.ops: List[Tuple[str, tuple, dict]] = []

    def __enter__(self) -> "FakePipeline":
        return self

    def __exit__(self, *exc_info) -> None:
        self.ops = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.ops.append((name, args, kwargs))
            return self
        return queue

    def execute(self) -> list:
        with self.server.lock:
            self.server.check()
            return [getattr(self.server, "_" + name)(*args, **kwargs) for name, args, kwargs in self.ops]


class FakeRedis:
    """In-memory subset of redis.Redis used by WarningStore."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.strings: Dict[str, str] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.lists: Dict[str, List[str]] = {}
        self.fail = False
        self.closed = False

    def check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("Connection refused")

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        self.check()
        return FakePipeline(self)

    def __getattr__(self, name):
        impl = getattr(self, "_" + name, None) if not name.startswith("_") else None
        if impl is None:
            raise AttributeError(name)

        def call(*args, **kwargs):
            with self.lock:
                self.check()
                return impl(*args, **kwargs)
        return call

    def _set(self, key, value, nx=False, ex=None):
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        return True

    def _get(self, key):
        return self.strings.get(key)

    def _delete(self, *keys):
        removed = 0
        for key in keys:
            for store in (self.strings, self.hashes, self.lists):
                if key in store:
                    del store[key]
                    removed += 1
        return removed

    def _hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def _hsetnx(self, key, field, value):
        data = self.hashes.setdefault(key, {})
        if field in data:
            return 0
        data[field] = str(value)
        return 1

    def _hset(self, key, field=None, value=None, mapping=None):
        data = self.hashes.setdefault(key, {})
        if mapping:
            data.update({k: str(v) for k, v in mapping.items()})
        if field is not None:
            data[field] = str(value)
        return len(mapping or {}) + (1 if field is not None else 0)

    def _hincrby(self, key, field, amount=1):
        data = self.hashes.setdefault(key, {})
        data[field] = str(int(data.get(field, 0)) + amount)
        return int(data[field])

    def _lpush(self, key, *values):
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    def _ltrim(self, key, start, end):
        items = self.lists.get(key, [])
        self.lists[key] = items[start:end + 1 if end >= 0 else None]
        return True

    def _lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return items[start:end + 1 if end >= 0 else None]

    def _ping(self):
        return True

    def _scan_iter(self, match="*"):
        keys = list(self.strings) + list(self.hashes) + list(self.lists)
        return [key for key in keys if fnmatch.fnmatch(key, match)]

    def close(self):
        self.closed = True


class FakeGateway:
    """ChatGateway double that records every side effect."""

    def __init__(self, *, group_id: str = "G1", group_name: str = "Test Group") -> None:
        self.group_id = group_id
        self.group_name = group_name
        self.is_group = True
        self.admins: Set[str] = set()
        self.bot_is_admin = True
        self.names: Dict[str, str] = {}

        self.sent: List[Tuple[str, str]] = []
        self.deleted: List[str] = []
        self.removed: List[Tuple[str, str]] = []

        self.delete_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.remove_error: Optional[Exception] = None
        self.remove_delay: float = 0.0

    async def get_chat_context(self, message: InboundMessage) -> ChatContext:
        return ChatContext(
            group_id=message.group_id,
            group_name=self.group_name,
            is_group=self.is_group,
            participants=tuple(Participant(user_id=uid, is_admin=True) for uid in sorted(self.admins)),
        )

    async def get_sender_context(self, message: InboundMessage) -> SenderContext:
        user_id = message.raw["sender"]
        return SenderContext(
            user_id=user_id,
            display_name=self.names.get(user_id, user_id.title()),
            is_group_admin=user_id in self.admins,
        )

    async def send_group_message(self, group_id: str, text: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((group_id, text))

    async def delete_message(self, message: InboundMessage, for_everyone: bool = True) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(message.message_id)

    async def remove_participant(self, group_id: str, user_id: str) -> None:
        if self.remove_delay:
            await asyncio.sleep(self.remove_delay)
        if self.remove_error is not None:
            raise self.remove_error
        self.removed.append((group_id, user_id))

    async def self_is_group_admin(self, group_id: str) -> bool:
        return self.bot_is_admin

    @property
    def texts(self) -> List[str]:
        return [text for _, text in self.sent]


_message_counter = iter(range(1, 1_000_000))


def make_message(
    sender: str = "alice",
    text: str = "",
    *,
    group_id: str = "G1",
    caption: str = "",
    media_kind: MediaKind = MediaKind.NONE,
    mentions=(),
    message_id: Optional[str] = None,
) -> InboundMessage:
    return InboundMessage(
        message_id=message_id or str(next(_message_counter)),
        group_id=group_id,
        text=text,
        caption=caption,
        media_kind=media_kind,
        mentions=tuple(mentions),
        raw={"sender": sender},
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis) -> WarningStore:
    return WarningStore(fake_redis)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def moderation_config() -> ModerationConfig:
    return ModerationConfig(warn_threshold=3)


@pytest.fixture
def controller(gateway, store, moderation_config) -> ModerationController:
    return ModerationController(gateway, store, moderation_config)


@pytest.fixture
def message_factory():
    return make_message
