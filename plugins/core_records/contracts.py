# plugins/core_records/contracts.py

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

# 每个集合都自带的系统字段
BUILTIN_FIELDS: Dict[str, int] = {
    "date_created": 1,
    "date_modified": 2,
    "record_id": 3,
}
RECORD_ID_FIELD = BUILTIN_FIELDS["record_id"]


# --- Data Models (公共契约) ---

class FieldSchema(BaseModel):
    """
    一个集合的语义字段描述：语义名称 -> 数字字段 ID。
    - defaults: 约定俗成的字段布局，在无法从远程元数据解析时使用。
    - labels: 用于在远程字段元数据中按标签匹配的候选名称（不区分大小写）。
    - overrides: 来自配置的显式映射，优先级最高。
    """
    name: str = Field(..., description="Schema identifier, e.g. 'codepage'.")
    defaults: Dict[str, int]
    labels: Dict[str, List[str]] = Field(default_factory=dict)
    overrides: Dict[str, int] = Field(default_factory=dict)

    @property
    def semantic_names(self) -> List[str]:
        return list(self.defaults.keys())


SortSpec = Sequence[Tuple[str, str]]


# --- Custom Exceptions (公共契约) ---

class RecordStoreError(Exception):
    """所有远程记录存储错误的基类。可以附带失败的逻辑操作名称。"""
    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation

    def __str__(self):
        if self.operation:
            return f"{super().__str__()} (during '{self.operation}')"
        return super().__str__()


class AuthError(RecordStoreError):
    """临时令牌无法获取，或在刷新后仍被拒绝。"""


class HttpError(RecordStoreError):
    """远程存储返回了非 2xx 状态。"""
    def __init__(self, status: int, body: Any = None, message: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message or f"Remote store responded with HTTP {status}", operation=operation)
        self.status = status
        self.body = body


class NetworkError(RecordStoreError):
    """传输层失败（连接、超时等）。"""


# --- Service Interfaces (公共契约) ---

class RequestClientInterface(ABC):
    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        resource_id: str,
    ) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def aclose(self) -> None: raise NotImplementedError


class RecordStoreInterface(ABC):
    """
    远程记录存储的最小动词面。
    调用方只使用语义字段名称，数字字段 ID 在内部解析。
    """
    @abstractmethod
    async def query(
        self,
        collection_id: str,
        schema: FieldSchema,
        where: Optional[Any] = None,
        fields: Optional[List[str]] = None,
        limit: Optional[int] = None,
        sort_by: Optional[SortSpec] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def create(self, collection_id: str, schema: FieldSchema, values: Dict[str, Any]) -> str:
        raise NotImplementedError

    @abstractmethod
    async def update(self, collection_id: str, schema: FieldSchema, record_id: str, values: Dict[str, Any]) -> None:
        raise NotImplementedError
