# plugins/core_codepage/contracts.py

from __future__ import annotations
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# --- Enums (公共契约) ---

class ExportFormat(str, Enum):
    HTML = "html"          # 原始源码
    JSON = "json"          # 结构化元数据
    MARKDOWN = "markdown"  # 人类可读文档


class ImportFormat(str, Enum):
    HTML = "html"
    JSON = "json"
    AUTO = "auto"


# --- Core Data Models (公共契约) ---

class CodepageDraft(BaseModel):
    """一个尚未拥有身份（记录 ID、时间戳）的 Codepage。"""
    name: str
    code: str
    description: Optional[str] = None
    version: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    target_table_id: Optional[str] = None
    active: Optional[bool] = None


class Codepage(CodepageDraft):
    """远程存储中的一条 Codepage 记录。"""
    id: str = Field(..., description="Opaque record id assigned by the remote store.")
    created_date: Optional[str] = None
    modified_date: Optional[str] = None

    def to_draft(self) -> CodepageDraft:
        return CodepageDraft.model_validate(self.model_dump(include=set(CodepageDraft.model_fields)))


class CodepageUpdate(BaseModel):
    """部分更新：只有非 None 的字段会被写入。"""
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    tags: Optional[List[str]] = None
    dependencies: Optional[List[str]] = None
    target_table_id: Optional[str] = None
    active: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SearchCriteria(BaseModel):
    term: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    target_table_id: Optional[str] = None
    active_only: bool = True


class CodepageVersion(BaseModel):
    """一次不可变的代码快照。"""
    model_config = ConfigDict(frozen=True)

    id: str
    codepage_id: str
    version_label: Optional[str] = None
    code_snapshot: str = ""
    change_log: Optional[str] = None
    created_date: Optional[str] = None


class ValidationOptions(BaseModel):
    check_syntax: bool = True
    check_apis: bool = True
    check_security: bool = True


class ValidationReport(BaseModel):
    """静态校验结果。只有 errors 会影响 is_valid。"""
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    security_issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class LineChange(BaseModel):
    kind: Literal["addition", "deletion"]
    line: int = Field(..., description="1-based line number in the side the change belongs to.")
    content: str


class DiffSummary(BaseModel):
    lines_added: int = 0
    lines_removed: int = 0
    total_changes: int = 0


class VersionComparison(BaseModel):
    codepage_id: str
    from_version: CodepageVersion
    to_version: CodepageVersion
    differences: List[LineChange] = Field(default_factory=list)
    summary: DiffSummary = Field(default_factory=DiffSummary)


# --- Custom Exceptions (公共契约) ---

class CodepageError(Exception):
    """Codepage 领域错误的基类。"""


class NotFoundError(CodepageError):
    pass


class NoOpUpdateError(CodepageError):
    pass


class InvalidCodepageError(CodepageError):
    """缺少 name 或 code 等必填内容。"""


class UnrecognizedFormatError(CodepageError):
    pass


class ValidationBlockedError(CodepageError):
    """启用校验闸门时，代码未通过静态校验。"""
    def __init__(self, message: str, report: ValidationReport):
        super().__init__(message)
        self.report = report

    def __str__(self):
        details = "; ".join(self.report.errors) or "no details"
        return f"{super().__str__()} ({details})"


# --- Service Interfaces (公共契约) ---

class CodepageServiceInterface(ABC):
    @abstractmethod
    async def deploy(self, draft: CodepageDraft, *, table_id: Optional[str] = None, validate_first: bool = False) -> str: raise NotImplementedError
    @abstractmethod
    async def update(self, codepage_id: str, changes: CodepageUpdate, *, table_id: Optional[str] = None, validate_first: bool = False) -> None: raise NotImplementedError
    @abstractmethod
    async def get(self, codepage_id: str, *, table_id: Optional[str] = None) -> Codepage: raise NotImplementedError
    @abstractmethod
    async def list(self, limit: int = 50, *, table_id: Optional[str] = None) -> List[Codepage]: raise NotImplementedError
    @abstractmethod
    async def search(self, criteria: SearchCriteria, *, table_id: Optional[str] = None) -> List[Codepage]: raise NotImplementedError
    @abstractmethod
    async def clone(self, source_id: str, new_name: str, modifications: Optional[CodepageUpdate] = None, *, table_id: Optional[str] = None) -> str: raise NotImplementedError


class VersionControlServiceInterface(ABC):
    @abstractmethod
    async def save_version(self, codepage_id: str, version_label: Optional[str], code_snapshot: str, change_log: Optional[str] = None) -> str: raise NotImplementedError
    @abstractmethod
    async def list_versions(self, codepage_id: str, limit: int = 20) -> List[CodepageVersion]: raise NotImplementedError
    @abstractmethod
    async def rollback(self, codepage_id: str, version_id: str) -> CodepageVersion: raise NotImplementedError
