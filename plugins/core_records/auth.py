# plugins/core_records/auth.py

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .config import RecordStoreSettings
from .contracts import AuthError

logger = logging.getLogger(__name__)


class Authenticator(ABC):
    """
    提供换取临时令牌时所需的环境凭证。
    具体策略在构建时选定一次，调用时不再探测。
    """
    mode: str = "unknown"

    @abstractmethod
    def issuance_headers(self) -> Dict[str, str]:
        """返回附加到令牌签发请求上的请求头。凭证缺失时抛出 AuthError。"""
        raise NotImplementedError


class SessionTokenAuthenticator(Authenticator):
    """使用已登录会话的 ticket（作为 TICKET cookie 发送）。"""
    mode = "session"

    def __init__(self, ticket: Optional[str], app_token: Optional[str] = None):
        self._ticket = ticket
        self._app_token = app_token

    def issuance_headers(self) -> Dict[str, str]:
        if not self._ticket:
            raise AuthError("No session ticket configured (QB_SESSION_TICKET).")
        headers = {"Cookie": f"TICKET={self._ticket}"}
        if self._app_token:
            headers["QB-App-Token"] = self._app_token
        return headers


class AppTokenAuthenticator(Authenticator):
    """使用长期有效的预共享应用令牌，可选地附带用户令牌。"""
    mode = "app_token"

    def __init__(self, app_token: Optional[str], user_token: Optional[str] = None):
        self._app_token = app_token
        self._user_token = user_token

    def issuance_headers(self) -> Dict[str, str]:
        if not self._app_token:
            raise AuthError("No app token configured (QB_APP_TOKEN).")
        headers = {"QB-App-Token": self._app_token}
        if self._user_token:
            headers["Authorization"] = f"QB-USER-TOKEN {self._user_token}"
        return headers


def create_authenticator(settings: RecordStoreSettings) -> Authenticator:
    """根据配置选择认证策略。"""
    if settings.auth_mode == "app_token":
        if settings.app_token:
            logger.info(f"Using app-token authentication (token ending '...{settings.app_token[-4:]}').")
        else:
            logger.warning("QB_AUTH_MODE is 'app_token' but QB_APP_TOKEN is not set. Token issuance will fail.")
        return AppTokenAuthenticator(settings.app_token, user_token=settings.user_token)

    if not settings.session_ticket:
        logger.warning("QB_SESSION_TICKET is not set. Token issuance will fail.")
    else:
        logger.info("Using session-ticket authentication.")
    return SessionTokenAuthenticator(settings.session_ticket, app_token=settings.app_token)
