# plugins/core_codepage/codec.py

import json
import re
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .contracts import (
    Codepage,
    CodepageDraft,
    ExportFormat,
    ImportFormat,
    UnrecognizedFormatError,
)

DEFAULT_IMPORT_NAME = "Imported Codepage"
TITLE_TAG = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
BACKTICK_RUN = re.compile(r"`{3,}")


class CodepageDocument(BaseModel):
    """结构化元数据的线上格式（camelCase 键）。"""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    code: str
    description: Optional[str] = None
    version: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    target_table_id: Optional[str] = Field(default=None, alias="targetTableId")
    active: Optional[bool] = None

    @field_validator("name", "code")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


def _as_draft(codepage: Union[Codepage, CodepageDraft]) -> CodepageDraft:
    if isinstance(codepage, Codepage):
        return codepage.to_draft()
    return codepage


# --- Export ---

def export_json(codepage: Union[Codepage, CodepageDraft]) -> str:
    fields = _as_draft(codepage).model_dump()
    fields["targetTableId"] = fields.pop("target_table_id")
    # 导出不做校验：存储中的记录可能并不满足导入时的约束
    document = CodepageDocument.model_construct(**fields)
    return json.dumps(document.model_dump(by_alias=True), indent=2, ensure_ascii=False)


def export_markdown(codepage: Union[Codepage, CodepageDraft]) -> str:
    fence = "```"
    runs = BACKTICK_RUN.findall(codepage.code)
    if runs:
        fence = "`" * (max(len(r) for r in runs) + 1)

    lines = [f"# {codepage.name}", "", f"**Version:** {codepage.version or 'unversioned'}", ""]
    if codepage.description:
        lines.extend([codepage.description, ""])
    if codepage.tags:
        lines.extend([f"**Tags:** {', '.join(codepage.tags)}", ""])
    lines.extend(["## Code", "", f"{fence}html", codepage.code, fence, ""])
    return "\n".join(lines)


def export_codepage(codepage: Union[Codepage, CodepageDraft], fmt: ExportFormat) -> str:
    fmt = ExportFormat(fmt)
    if fmt == ExportFormat.HTML:
        return codepage.code
    if fmt == ExportFormat.JSON:
        return export_json(codepage)
    return export_markdown(codepage)


# --- Import ---

def _looks_like_markup(text: str) -> bool:
    return text.lstrip().startswith("<")


def import_html(text: str, name: Optional[str] = None) -> CodepageDraft:
    if not text.strip():
        raise UnrecognizedFormatError("Cannot import an empty document.")
    if not name:
        match = TITLE_TAG.search(text)
        name = match.group(1).strip() if match and match.group(1).strip() else DEFAULT_IMPORT_NAME
    return CodepageDraft(name=name, code=text)


def import_json(text: str, name: Optional[str] = None) -> CodepageDraft:
    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as e:
        raise UnrecognizedFormatError(f"Not a valid structured codepage document: {e}") from e
    if not isinstance(data, dict):
        raise UnrecognizedFormatError("Structured codepage document must be a JSON object.")

    try:
        document = CodepageDocument.model_validate(data)
    except ValidationError as e:
        raise UnrecognizedFormatError(f"Structured codepage document is missing required fields: {e}") from e

    fields: Dict[str, Any] = document.model_dump()
    if name:
        fields["name"] = name
    return CodepageDraft.model_validate(fields)


def import_codepage(text: str, fmt: ImportFormat = ImportFormat.AUTO, name: Optional[str] = None) -> CodepageDraft:
    """
    把外部表示解码为 CodepageDraft。
    auto 模式：以 '<' 开头视为原始源码；能解析为结构化文档则按结构化处理；否则拒绝。
    """
    fmt = ImportFormat(fmt)
    if fmt == ImportFormat.HTML:
        return import_html(text, name)
    if fmt == ImportFormat.JSON:
        return import_json(text, name)

    if _looks_like_markup(text):
        return import_html(text, name)
    try:
        return import_json(text, name)
    except UnrecognizedFormatError as e:
        raise UnrecognizedFormatError(
            "Could not detect the import format: expected a markup document or a structured codepage object."
        ) from e
