# backend/app.py
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware

from backend.container import Container
from backend.core.hooks import HookManager
from backend.core.loader import PluginLoader


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- 启动阶段 ---
    container = Container()
    hook_manager = HookManager(container)

    # 1. 注册平台核心服务
    container.register("container", lambda: container)
    container.register("hook_manager", lambda: hook_manager)

    # 2. 加载插件（同步注册）
    loader = PluginLoader(container, hook_manager)
    loader.load_plugins()

    logger = logging.getLogger(__name__)
    logger.info("--- FastAPI 应用组装 ---")

    # 3. 将核心服务附加到 app.state
    app.state.container = container
    hook_manager.add_shared_context("app", app)

    # 4. 异步服务初始化
    await hook_manager.trigger('services_post_register')

    # 5. 收集并装配插件提供的 API 路由
    routers: list[APIRouter] = await hook_manager.filter("collect_api_routers", [])
    if routers:
        for router in routers:
            app.include_router(router)
            logger.debug(f"已添加路由: prefix='{router.prefix}', tags={router.tags}")
        logger.info(f"已装配 {len(routers)} 个插件路由。")
    else:
        logger.warning("未从插件中收集到任何 API 路由。")

    await hook_manager.trigger('app_startup_complete')
    logger.info("--- Codepage Hub 已就绪 ---")
    yield
    # --- 关闭阶段 ---
    logger.info("--- Codepage Hub 正在关闭 ---")
    await hook_manager.trigger('app_shutdown')


def create_app() -> FastAPI:
    """应用工厂函数"""
    app = FastAPI(
        title="Codepage Hub",
        version="0.3.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", tags=["System"])
    async def read_root():
        return {"message": "Codepage Hub is running."}

    return app
