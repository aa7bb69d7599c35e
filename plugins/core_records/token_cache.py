# plugins/core_records/token_cache.py

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemporaryToken:
    token: str
    acquired_at: float

    def is_fresh(self, now: float, window: float) -> bool:
        return now - self.acquired_at < window

    def masked(self) -> str:
        return f"...{self.token[-4:]}"


class TokenCache:
    """
    按资源 ID 缓存短期令牌。
    - 每个资源 ID 只保存一个令牌。
    - 同一资源 ID 的并发获取被串行化，只会触发一次签发（single-flight）。
    """
    def __init__(self, freshness_window: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.freshness_window = freshness_window
        self._clock = clock
        self._tokens: Dict[str, TemporaryToken] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, resource_id: str) -> asyncio.Lock:
        return self._locks.setdefault(resource_id, asyncio.Lock())

    def peek(self, resource_id: str) -> Optional[TemporaryToken]:
        """返回当前仍然新鲜的令牌，不触发签发。"""
        cached = self._tokens.get(resource_id)
        if cached and cached.is_fresh(self._clock(), self.freshness_window):
            return cached
        return None

    async def get_or_issue(self, resource_id: str, issue: Callable[[], Awaitable[str]]) -> str:
        cached = self.peek(resource_id)
        if cached:
            return cached.token

        async with self._get_lock(resource_id):
            # 等锁期间可能已有其他调用方完成了签发
            cached = self.peek(resource_id)
            if cached:
                return cached.token

            token = await issue()
            entry = TemporaryToken(token=token, acquired_at=self._clock())
            self._tokens[resource_id] = entry
            logger.debug(f"Cached temporary token {entry.masked()} for resource '{resource_id}'.")
            return token

    async def evict(self, resource_id: str, stale_token: Optional[str] = None) -> None:
        """
        移除资源 ID 的令牌。
        如果给出 stale_token，只有缓存中仍是该令牌时才移除，避免丢弃并发调用方刚签发的新令牌。
        """
        async with self._get_lock(resource_id):
            cached = self._tokens.get(resource_id)
            if cached is None:
                return
            if stale_token is not None and cached.token != stale_token:
                return
            del self._tokens[resource_id]
            logger.debug(f"Evicted temporary token {cached.masked()} for resource '{resource_id}'.")
