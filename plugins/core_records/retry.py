# plugins/core_records/retry.py

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from .contracts import HttpError, NetworkError

logger = logging.getLogger(__name__)

RETRYABLE_CLIENT_STATUSES: FrozenSet[int] = frozenset({401, 408, 429})


@dataclass
class RetryPolicy:
    """
    一次逻辑调用的重试策略：最多 max_attempts 次，第 n 次失败后等待 backoff_base ** n 秒。
    sleep 可注入，测试中无需真实等待。
    """
    max_attempts: int = 3
    backoff_base: float = 2.0
    max_backoff: float = 60.0
    retryable_statuses: FrozenSet[int] = RETRYABLE_CLIENT_STATUSES
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def backoff(self, attempt: int) -> float:
        """attempt 从 1 开始。"""
        return min(self.backoff_base ** attempt, self.max_backoff)

    def is_retryable_status(self, status: int) -> bool:
        return status >= 500 or status in self.retryable_statuses

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, NetworkError):
            return True
        if isinstance(exc, HttpError):
            return self.is_retryable_status(exc.status)
        return False

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.backoff(retry_state.attempt_number)

    def _log_before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait_for = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Attempt {retry_state.attempt_number}/{self.max_attempts} failed: {exc}. "
            f"Retrying in {wait_for:.1f}s..."
        )

    def retrying(self) -> AsyncRetrying:
        """构建一个 tenacity AsyncRetrying；用尽后重新抛出最后一个异常。"""
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(self.is_retryable),
            sleep=self.sleep,
            before_sleep=self._log_before_sleep,
            reraise=True,
        )
