# plugins/core_records/__init__.py

import logging

from backend.core.contracts import Container, HookManager

from .auth import Authenticator, create_authenticator
from .client import ResilientRequestClient
from .config import RecordStoreSettings, load_settings_from_env
from .field_map import FieldMapper
from .retry import RetryPolicy
from .store import RecordStore
from .token_cache import TokenCache

logger = logging.getLogger(__name__)

# --- 服务工厂 (Service Factories) ---

def _create_settings() -> RecordStoreSettings:
    settings = load_settings_from_env()
    logger.debug(
        f"Record store settings: base_url={settings.base_url}, realm={settings.realm}, "
        f"auth_mode={settings.auth_mode}, max_attempts={settings.max_attempts}"
    )
    return settings

def _create_token_cache(container: Container) -> TokenCache:
    settings: RecordStoreSettings = container.resolve("record_store_settings")
    return TokenCache(freshness_window=settings.token_ttl_seconds)

def _create_authenticator(container: Container) -> Authenticator:
    return create_authenticator(container.resolve("record_store_settings"))

def _create_request_client(container: Container) -> ResilientRequestClient:
    settings: RecordStoreSettings = container.resolve("record_store_settings")
    return ResilientRequestClient(
        settings=settings,
        authenticator=container.resolve("authenticator"),
        token_cache=container.resolve("token_cache"),
        retry_policy=RetryPolicy(max_attempts=settings.max_attempts),
    )

def _create_field_mapper(container: Container) -> FieldMapper:
    return FieldMapper(container.resolve("record_client"))

def _create_record_store(container: Container) -> RecordStore:
    return RecordStore(container.resolve("record_client"), container.resolve("field_mapper"))


# --- 钩子实现 (Hook Implementations) ---

async def close_record_client(container: Container):
    """钩子实现：应用关闭时释放共享的 httpx 连接池。"""
    if not container.is_resolved("record_client"):
        return
    client: ResilientRequestClient = container.resolve("record_client")
    await client.aclose()
    logger.info("Record store HTTP client closed.")


# --- 主注册函数 (Main Registration Function) ---
def register_plugin(container: Container, hook_manager: HookManager):
    logger.info("--> 正在注册 [core_records] 插件...")

    container.register("record_store_settings", _create_settings, singleton=True)
    container.register("token_cache", _create_token_cache, singleton=True)
    container.register("authenticator", _create_authenticator, singleton=True)
    container.register("record_client", _create_request_client, singleton=True)
    container.register("field_mapper", _create_field_mapper, singleton=True)
    container.register("record_store", _create_record_store, singleton=True)

    hook_manager.add_implementation("app_shutdown", close_record_client, plugin_name="core_records")

    logger.info("插件 [core_records] 注册成功。")
