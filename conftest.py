# conftest.py

import pytest
from typing import AsyncGenerator, List

import httpx
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from asgi_lifespan import LifespanManager

from backend.app import create_app
from plugins.core_records.auth import SessionTokenAuthenticator
from plugins.core_records.client import ResilientRequestClient
from plugins.core_records.config import RecordStoreSettings
from plugins.core_records.field_map import FieldMapper
from plugins.core_records.retry import RetryPolicy
from plugins.core_records.store import RecordStore
from plugins.core_records.token_cache import TokenCache
from plugins.core_records.tests.fake_remote import FakeRemoteStore
from plugins.core_codepage.config import CodepageSettings
from plugins.core_codepage.service import CodepageService
from plugins.core_codepage.versions import VersionControlService

CODEPAGE_TABLE = "bq_codepages"
VERSION_TABLE = "bq_versions"


# --- 1. 远程存储替身与客户端 ---

@pytest.fixture
def fake_remote() -> FakeRemoteStore:
    return FakeRemoteStore()

@pytest.fixture
def sleeps() -> List[float]:
    """记录退避等待时长，而不真正 sleep。"""
    return []

@pytest.fixture
def retry_policy(sleeps: List[float]) -> RetryPolicy:
    async def _record_sleep(seconds: float) -> None:
        sleeps.append(seconds)
    return RetryPolicy(max_attempts=3, sleep=_record_sleep)

@pytest.fixture
def record_settings() -> RecordStoreSettings:
    return RecordStoreSettings(realm="example.quickbase.com", session_ticket="ticket-xyz")

@pytest.fixture
def token_cache() -> TokenCache:
    return TokenCache(freshness_window=300.0)

@pytest.fixture
async def record_client(
    fake_remote: FakeRemoteStore,
    record_settings: RecordStoreSettings,
    token_cache: TokenCache,
    retry_policy: RetryPolicy,
) -> AsyncGenerator[ResilientRequestClient, None]:
    client = ResilientRequestClient(
        settings=record_settings,
        authenticator=SessionTokenAuthenticator(record_settings.session_ticket),
        token_cache=token_cache,
        retry_policy=retry_policy,
        transport=httpx.MockTransport(fake_remote.handle),
    )
    yield client
    await client.aclose()

@pytest.fixture
def record_store(record_client: ResilientRequestClient) -> RecordStore:
    return RecordStore(record_client, FieldMapper(record_client))


# --- 2. Codepage 服务 ---

@pytest.fixture
def codepage_settings() -> CodepageSettings:
    return CodepageSettings(codepage_table_id=CODEPAGE_TABLE, version_table_id=VERSION_TABLE)

@pytest.fixture
def codepage_service(record_store: RecordStore, codepage_settings: CodepageSettings) -> CodepageService:
    return CodepageService(record_store, codepage_settings)

@pytest.fixture
def version_service(
    record_store: RecordStore,
    codepage_settings: CodepageSettings,
    codepage_service: CodepageService,
) -> VersionControlService:
    return VersionControlService(record_store, codepage_settings, codepage_service)


# --- 3. 端到端 API ---

@pytest.fixture
def app() -> FastAPI:
    return create_app()

@pytest.fixture
async def client(
    app: FastAPI,
    record_client: ResilientRequestClient,
    codepage_settings: CodepageSettings,
) -> AsyncGenerator[AsyncClient, None]:
    """
    启动完整的应用生命周期（插件加载、路由装配），
    然后把远程存储客户端和表配置替换为测试替身。
    """
    async with LifespanManager(app) as manager:
        container = app.state.container
        container.register_instance("record_client", record_client)
        container.register_instance("codepage_settings", codepage_settings)

        transport = ASGITransport(app=manager.app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
