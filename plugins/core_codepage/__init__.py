# plugins/core_codepage/__init__.py

import logging
from typing import List

from fastapi import APIRouter

from backend.core.contracts import Container, HookManager

from .api import codepage_router
from .config import CodepageSettings, load_codepage_settings
from .service import CodepageService
from .versions import VersionControlService

logger = logging.getLogger(__name__)

# --- 服务工厂 (Service Factories) ---

def _create_settings() -> CodepageSettings:
    settings = load_codepage_settings()
    if not settings.codepage_table_id:
        logger.warning("CODEPAGE_TABLE_ID is not set. Codepage operations must pass an explicit table_id.")
    if not settings.version_table_id:
        logger.warning("CODEPAGE_VERSION_TABLE_ID is not set. Version operations must pass an explicit table_id.")
    return settings

def _create_codepage_service(container: Container) -> CodepageService:
    return CodepageService(
        record_store=container.resolve("record_store"),
        settings=container.resolve("codepage_settings"),
    )

def _create_version_control_service(container: Container) -> VersionControlService:
    return VersionControlService(
        record_store=container.resolve("record_store"),
        settings=container.resolve("codepage_settings"),
        codepage_service=container.resolve("codepage_service"),
    )


# --- 钩子实现 (Hook Implementations) ---

async def provide_api_router(routers: List[APIRouter]) -> List[APIRouter]:
    """钩子实现：将 Codepage API 路由添加到收集中。"""
    routers.append(codepage_router)
    logger.debug("Provided 'codepage_router' to the application.")
    return routers


# --- 主注册函数 (Main Registration Function) ---
def register_plugin(container: Container, hook_manager: HookManager):
    logger.info("--> 正在注册 [core_codepage] 插件...")

    container.register("codepage_settings", _create_settings, singleton=True)
    container.register("codepage_service", _create_codepage_service, singleton=True)
    container.register("version_control_service", _create_version_control_service, singleton=True)

    hook_manager.add_implementation("collect_api_routers", provide_api_router, plugin_name="core_codepage")

    logger.info("插件 [core_codepage] 注册成功。")
