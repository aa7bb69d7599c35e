# plugins/core_codepage/service.py

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Union

from plugins.core_records.contracts import RecordStoreError, RecordStoreInterface
from plugins.core_records.filters import all_of, any_of, contains, equals

from . import codec
from .config import CodepageSettings
from .contracts import (
    Codepage,
    CodepageDraft,
    CodepageServiceInterface,
    CodepageUpdate,
    ExportFormat,
    ImportFormat,
    InvalidCodepageError,
    NoOpUpdateError,
    NotFoundError,
    SearchCriteria,
    ValidationBlockedError,
    ValidationOptions,
)
from .fields import codepage_from_row, codepage_schema, normalize_tags, to_record_values
from .validation import validate

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("date_created", "DESC"), ("record_id", "DESC")]


def record_ref(record_id: str) -> Any:
    """过滤表达式中的记录 ID：纯数字按数字比较。"""
    return int(record_id) if str(record_id).isdigit() else record_id


@contextmanager
def attach_operation(operation: str) -> Iterator[None]:
    """给穿过的远程存储错误标记失败的逻辑操作，然后原样重新抛出。"""
    try:
        yield
    except RecordStoreError as e:
        if e.operation is None:
            e.operation = operation
        logger.error(f"Codepage operation '{operation}' failed: {e}")
        raise


class CodepageService(CodepageServiceInterface):
    """
    Codepage 生命周期管理：deploy / update / get / list / search / clone，
    以及基于编解码器的导入导出。
    """
    def __init__(self, record_store: RecordStoreInterface, settings: CodepageSettings):
        self._store = record_store
        self._settings = settings
        self.schema = codepage_schema(settings.codepage_field_ids)

    def _table(self, table_id: Optional[str]) -> str:
        table = table_id or self._settings.codepage_table_id
        if not table:
            raise ValueError("No codepage collection given and CODEPAGE_TABLE_ID is not configured.")
        return table

    @staticmethod
    def _check_gate(code: str) -> None:
        report = validate(code, ValidationOptions())
        if not report.is_valid:
            raise ValidationBlockedError("Codepage blocked by validation", report)

    # --- 写操作 ---

    async def deploy(self, draft: CodepageDraft, *, table_id: Optional[str] = None, validate_first: bool = False) -> str:
        if not draft.name.strip() or not draft.code.strip():
            raise InvalidCodepageError("A codepage requires a non-empty name and code.")
        if validate_first:
            self._check_gate(draft.code)

        table = self._table(table_id)
        values = draft.model_dump()
        if values.get("active") is None:
            values["active"] = True

        with attach_operation("deploy"):
            record_id = await self._store.create(table, self.schema, to_record_values(values))
        logger.info(f"Deployed codepage '{draft.name}' as record {record_id} in '{table}'.")
        return record_id

    async def update(
        self,
        codepage_id: str,
        changes: Union[CodepageUpdate, Dict[str, Any]],
        *,
        table_id: Optional[str] = None,
        validate_first: bool = False,
    ) -> None:
        if isinstance(changes, dict):
            changes = CodepageUpdate.model_validate(changes)
        fields = changes.changes()
        if not fields:
            raise NoOpUpdateError(f"Update for codepage '{codepage_id}' contains no fields.")
        for required in ("name", "code"):
            if required in fields and not fields[required].strip():
                raise InvalidCodepageError(f"Codepage '{required}' cannot be set to an empty value.")
        if validate_first and "code" in fields:
            self._check_gate(fields["code"])

        table = self._table(table_id)
        with attach_operation("update"):
            await self._store.update(table, self.schema, codepage_id, to_record_values(fields))

    async def activate(self, codepage_id: str, *, table_id: Optional[str] = None) -> None:
        await self.update(codepage_id, CodepageUpdate(active=True), table_id=table_id)

    async def deactivate(self, codepage_id: str, *, table_id: Optional[str] = None) -> None:
        await self.update(codepage_id, CodepageUpdate(active=False), table_id=table_id)

    async def clone(
        self,
        source_id: str,
        new_name: str,
        modifications: Optional[Union[CodepageUpdate, Dict[str, Any]]] = None,
        *,
        table_id: Optional[str] = None,
    ) -> str:
        source = await self.get(source_id, table_id=table_id)

        fields = source.to_draft().model_dump()
        fields["name"] = new_name
        if isinstance(modifications, dict):
            modifications = CodepageUpdate.model_validate(modifications)
        if modifications:
            fields.update(modifications.changes())

        new_id = await self.deploy(CodepageDraft.model_validate(fields), table_id=table_id)
        logger.info(f"Cloned codepage {source_id} into {new_id} ('{new_name}').")
        return new_id

    # --- 读操作 ---

    async def get(self, codepage_id: str, *, table_id: Optional[str] = None) -> Codepage:
        table = self._table(table_id)
        with attach_operation("get"):
            rows = await self._store.query(
                table, self.schema, where=equals("record_id", record_ref(codepage_id)), limit=1
            )
        if not rows:
            raise NotFoundError(f"Codepage '{codepage_id}' not found in '{table}'.")
        return codepage_from_row(rows[0])

    async def list(self, limit: int = 50, *, table_id: Optional[str] = None) -> List[Codepage]:
        if limit < 1:
            raise ValueError(f"limit must be a positive integer, got {limit}.")
        table = self._table(table_id)
        with attach_operation("list"):
            rows = await self._store.query(table, self.schema, limit=limit, sort_by=NEWEST_FIRST)
        return [codepage_from_row(row) for row in rows]

    async def search(
        self,
        criteria: Optional[SearchCriteria] = None,
        *,
        table_id: Optional[str] = None,
    ) -> List[Codepage]:
        criteria = criteria or SearchCriteria()
        tags = normalize_tags(criteria.tags)

        term_clause = None
        if criteria.term:
            term_clause = any_of(contains("name", criteria.term), contains("description", criteria.term))
        where = all_of(
            term_clause,
            *(contains("tags", tag) for tag in tags),
            equals("target_table_id", criteria.target_table_id) if criteria.target_table_id else None,
            equals("active", True) if criteria.active_only else None,
        )

        table = self._table(table_id)
        with attach_operation("search"):
            rows = await self._store.query(table, self.schema, where=where, sort_by=NEWEST_FIRST)

        results = [codepage_from_row(row) for row in rows]
        if tags:
            # CT 是子串匹配，这里收紧为精确的标签包含
            results = [cp for cp in results if set(tags) <= set(cp.tags)]
        return results

    # --- 导入 / 导出 ---

    async def export_codepage(
        self, codepage_id: str, fmt: ExportFormat = ExportFormat.JSON, *, table_id: Optional[str] = None
    ) -> str:
        codepage = await self.get(codepage_id, table_id=table_id)
        return codec.export_codepage(codepage, fmt)

    async def import_codepage(
        self,
        text: str,
        fmt: ImportFormat = ImportFormat.AUTO,
        *,
        name: Optional[str] = None,
        overwrite: bool = False,
        table_id: Optional[str] = None,
    ) -> str:
        """
        解码外部表示并写入存储。
        overwrite=True 且存在同名记录时，原地更新第一条同名记录而不是新建。
        """
        draft = codec.import_codepage(text, fmt, name=name)

        if overwrite:
            existing = await self._find_by_exact_name(draft.name, table_id=table_id)
            if existing:
                changes = CodepageUpdate.model_validate(draft.model_dump())
                await self.update(existing.id, changes, table_id=table_id)
                logger.info(f"Import overwrote existing codepage {existing.id} ('{draft.name}').")
                return existing.id

        return await self.deploy(draft, table_id=table_id)

    async def _find_by_exact_name(self, name: str, *, table_id: Optional[str] = None) -> Optional[Codepage]:
        table = self._table(table_id)
        with attach_operation("import"):
            rows = await self._store.query(
                table, self.schema, where=equals("name", name), sort_by=[("record_id", "ASC")]
            )
        for row in rows:
            codepage = codepage_from_row(row)
            if codepage.name == name:
                return codepage
        return None
