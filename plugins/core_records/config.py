# plugins/core_records/config.py

import os
import logging
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.quickbase.com/v1"


class RecordStoreSettings(BaseModel):
    """远程记录存储客户端的运行时配置。"""
    base_url: str = DEFAULT_BASE_URL
    realm: Optional[str] = Field(default=None, description="Realm hostname sent on every request.")
    auth_mode: Literal["session", "app_token"] = "session"
    session_ticket: Optional[str] = None
    app_token: Optional[str] = None
    user_token: Optional[str] = None
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    token_ttl_seconds: float = 300.0


def _env_number(name: str, default, cast=float):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: '{raw}'. Falling back to default {default}.")
        return default
    if value <= 0:
        logger.warning(f"{name} must be positive, got '{raw}'. Falling back to default {default}.")
        return default
    return value


def load_settings_from_env() -> RecordStoreSettings:
    """从环境变量（以及 .env，如果已加载）中解析客户端配置。"""
    auth_mode = os.getenv("QB_AUTH_MODE", "session").strip().lower()
    if auth_mode not in ("session", "app_token"):
        logger.warning(f"Unknown QB_AUTH_MODE '{auth_mode}'. Falling back to 'session'.")
        auth_mode = "session"

    return RecordStoreSettings(
        base_url=os.getenv("QB_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        realm=os.getenv("QB_REALM") or None,
        auth_mode=auth_mode,
        session_ticket=os.getenv("QB_SESSION_TICKET") or None,
        app_token=os.getenv("QB_APP_TOKEN") or None,
        user_token=os.getenv("QB_USER_TOKEN") or None,
        timeout_seconds=_env_number("QB_TIMEOUT_SECONDS", 30.0),
        max_attempts=_env_number("QB_MAX_ATTEMPTS", 3, cast=int),
        token_ttl_seconds=_env_number("QB_TOKEN_TTL_SECONDS", 300.0),
    )


def parse_field_id_mapping(mapping_str: Optional[str], source: str = "field mapping") -> Dict[str, int]:
    """
    解析 "name:6,code:7" 形式的字段映射。
    格式错误的条目会被记录并跳过。
    """
    mapping: Dict[str, int] = {}
    if not mapping_str:
        return mapping

    for item in mapping_str.split(","):
        item = item.strip()
        if not item:
            continue
        if ":" not in item:
            logger.warning(f"Could not parse entry '{item}' in {source}. Expected 'name:id'.")
            continue
        name, raw_id = (part.strip() for part in item.split(":", 1))
        try:
            mapping[name] = int(raw_id)
        except ValueError:
            logger.warning(f"Field id for '{name}' in {source} is not an integer: '{raw_id}'.")
    return mapping
