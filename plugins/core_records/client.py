# plugins/core_records/client.py

from __future__ import annotations
import logging
from typing import Any, Dict, Optional

import httpx

from .auth import Authenticator
from .config import RecordStoreSettings
from .contracts import (
    AuthError,
    HttpError,
    NetworkError,
    RequestClientInterface,
)
from .retry import RetryPolicy
from .token_cache import TokenCache

logger = logging.getLogger(__name__)


class ResilientRequestClient(RequestClientInterface):
    """
    远程记录存储的带认证 HTTP 客户端。

    每次逻辑调用：
    1. 从 TokenCache 取得（或签发）作用于 resource_id 的临时令牌。
    2. 发送请求。若第一次尝试得到 401，则驱逐令牌、重新签发并立即重发，
       这一步不计入重试次数，且每次逻辑调用最多发生一次。
    3. 其余可重试失败（5xx、408、429、刷新后的 401、传输错误）由 RetryPolicy 做指数退避。
    """
    def __init__(
        self,
        settings: RecordStoreSettings,
        authenticator: Authenticator,
        token_cache: TokenCache,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.authenticator = authenticator
        self.token_cache = token_cache
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=settings.max_attempts)
        self.http_client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    # --- 动词封装 ---

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, *, resource_id: str) -> Any:
        return await self.request("GET", path, params, resource_id=resource_id)

    async def post(self, path: str, payload: Optional[Dict[str, Any]] = None, *, resource_id: str) -> Any:
        return await self.request("POST", path, payload, resource_id=resource_id)

    async def patch(self, path: str, payload: Optional[Dict[str, Any]] = None, *, resource_id: str) -> Any:
        return await self.request("PATCH", path, payload, resource_id=resource_id)

    async def delete(self, path: str, payload: Optional[Dict[str, Any]] = None, *, resource_id: str) -> Any:
        return await self.request("DELETE", path, payload, resource_id=resource_id)

    # --- 核心请求循环 ---

    async def request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        resource_id: str,
    ) -> Any:
        method = method.upper()
        max_attempts = self.retry_policy.max_attempts
        try:
            async for attempt in self.retry_policy.retrying():
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    logger.info(f"{method} {path} [resource={resource_id}] attempt {attempt_number}/{max_attempts}")
                    return await self._attempt(
                        method, path, payload, resource_id, allow_refresh=(attempt_number == 1)
                    )
        except HttpError as e:
            if e.status == 401:
                raise AuthError(
                    f"Temporary token for resource '{resource_id}' was rejected after refresh."
                ) from e
            logger.error(f"{method} {path} failed with HTTP {e.status}.")
            raise
        except NetworkError:
            logger.error(f"{method} {path} failed: network error after {max_attempts} attempts.")
            raise

    async def _attempt(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]],
        resource_id: str,
        allow_refresh: bool,
    ) -> Any:
        token = await self._resolve_token(resource_id)
        response = await self._send(method, path, payload, token)

        if response.status_code == 401 and allow_refresh:
            logger.info(f"Token for resource '{resource_id}' rejected (401). Refreshing once and resending.")
            await self.token_cache.evict(resource_id, stale_token=token)
            token = await self._resolve_token(resource_id)
            response = await self._send(method, path, payload, token)

        return self._parse_response(method, path, response)

    async def _resolve_token(self, resource_id: str) -> str:
        return await self.token_cache.get_or_issue(resource_id, lambda: self._issue_token(resource_id))

    def _base_headers(self) -> Dict[str, str]:
        headers = {"User-Agent": "codepage-hub"}
        if self.settings.realm:
            headers["QB-Realm-Hostname"] = self.settings.realm
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]],
        token: str,
    ) -> httpx.Response:
        headers = self._base_headers()
        headers["Authorization"] = f"QB-TEMP-TOKEN {token}"

        kwargs: Dict[str, Any] = {"headers": headers}
        if payload is not None:
            if method == "GET":
                kwargs["params"] = payload
            else:
                kwargs["json"] = payload

        try:
            return await self.http_client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out after {self.settings.timeout_seconds}s: {e}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"{method} {path} transport error: {e}") from e

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    def _parse_response(self, method: str, path: str, response: httpx.Response) -> Any:
        body = self._decode_body(response)
        if response.is_success:
            return body

        detail = body.get("message") if isinstance(body, dict) else None
        message = f"{method} {path} failed with HTTP {response.status_code}"
        if detail:
            message = f"{message}: {detail}"
        raise HttpError(response.status_code, body=body, message=message)

    async def _issue_token(self, resource_id: str) -> str:
        """签发作用于 resource_id 的临时令牌。任何失败都直接以 AuthError 结束，不进入退避阶梯。"""
        headers = self._base_headers()
        headers.update(self.authenticator.issuance_headers())
        path = f"/auth/temporary/{resource_id}"

        try:
            response = await self.http_client.get(path, headers=headers)
        except httpx.RequestError as e:
            raise AuthError(f"Could not reach token endpoint for resource '{resource_id}': {e}") from e

        if not response.is_success:
            raise AuthError(
                f"Token issuance for resource '{resource_id}' failed with HTTP {response.status_code} "
                f"({self.authenticator.mode} credentials)."
            )

        body = self._decode_body(response)
        token = body.get("temporaryAuthorization") if isinstance(body, dict) else None
        if not token:
            raise AuthError(f"Token endpoint returned no temporary authorization for resource '{resource_id}'.")

        logger.info(f"Issued temporary token ending '...{token[-4:]}' for resource '{resource_id}'.")
        return token

    async def aclose(self) -> None:
        await self.http_client.aclose()
