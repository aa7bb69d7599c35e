# plugins/core_codepage/versions.py

import difflib
import logging
from typing import List, Optional

from plugins.core_records.contracts import RecordStoreInterface
from plugins.core_records.filters import equals

from .config import CodepageSettings
from .contracts import (
    CodepageServiceInterface,
    CodepageUpdate,
    CodepageVersion,
    DiffSummary,
    LineChange,
    NotFoundError,
    VersionComparison,
    VersionControlServiceInterface,
)
from .fields import version_from_row, version_schema
from .service import NEWEST_FIRST, attach_operation, record_ref

logger = logging.getLogger(__name__)


def diff_lines(old: str, new: str) -> List[LineChange]:
    """逐行差异：删除行使用旧文本的行号，新增行使用新文本的行号。"""
    old_lines = old.splitlines()
    new_lines = new.splitlines()
    changes: List[LineChange] = []
    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag in ("replace", "delete"):
            changes.extend(
                LineChange(kind="deletion", line=i + 1, content=old_lines[i]) for i in range(i1, i2)
            )
        if tag in ("replace", "insert"):
            changes.extend(
                LineChange(kind="addition", line=j + 1, content=new_lines[j]) for j in range(j1, j2)
            )
    return changes


class VersionControlService(VersionControlServiceInterface):
    """
    在独立的版本集合上维护不可变快照。
    版本记录只会被创建和读取，从不修改。
    """
    def __init__(
        self,
        record_store: RecordStoreInterface,
        settings: CodepageSettings,
        codepage_service: CodepageServiceInterface,
    ):
        self._store = record_store
        self._settings = settings
        self._codepages = codepage_service
        self.schema = version_schema(settings.version_field_ids)

    def _table(self, table_id: Optional[str]) -> str:
        table = table_id or self._settings.version_table_id
        if not table:
            raise ValueError("No version collection given and CODEPAGE_VERSION_TABLE_ID is not configured.")
        return table

    async def save_version(
        self,
        codepage_id: str,
        version_label: Optional[str],
        code_snapshot: str,
        change_log: Optional[str] = None,
        *,
        table_id: Optional[str] = None,
    ) -> str:
        table = self._table(table_id)
        values = {
            "codepage_id": record_ref(codepage_id),
            "version_label": version_label,
            "code_snapshot": code_snapshot,
            "change_log": change_log,
        }
        with attach_operation("save_version"):
            version_id = await self._store.create(table, self.schema, values)
        logger.info(f"Saved version {version_id} ('{version_label}') of codepage {codepage_id}.")
        return version_id

    async def list_versions(
        self, codepage_id: str, limit: int = 20, *, table_id: Optional[str] = None
    ) -> List[CodepageVersion]:
        if limit < 1:
            raise ValueError(f"limit must be a positive integer, got {limit}.")
        table = self._table(table_id)
        with attach_operation("list_versions"):
            rows = await self._store.query(
                table,
                self.schema,
                where=equals("codepage_id", record_ref(codepage_id)),
                limit=limit,
                sort_by=NEWEST_FIRST,
            )
        return [version_from_row(row) for row in rows]

    async def get_version(self, version_id: str, *, table_id: Optional[str] = None) -> CodepageVersion:
        table = self._table(table_id)
        with attach_operation("get_version"):
            rows = await self._store.query(
                table, self.schema, where=equals("record_id", record_ref(version_id)), limit=1
            )
        if not rows:
            raise NotFoundError(f"Version '{version_id}' not found.")
        return version_from_row(rows[0])

    async def _owned_version(self, codepage_id: str, version_id: str, table_id: Optional[str]) -> CodepageVersion:
        version = await self.get_version(version_id, table_id=table_id)
        if version.codepage_id != str(codepage_id):
            raise NotFoundError(f"Version '{version_id}' does not belong to codepage '{codepage_id}'.")
        return version

    async def rollback(
        self,
        codepage_id: str,
        version_id: str,
        *,
        table_id: Optional[str] = None,
        codepage_table_id: Optional[str] = None,
    ) -> CodepageVersion:
        """把目标快照的代码写回在线记录。不会自动快照当前状态，也不会删除更新的版本。"""
        version = await self._owned_version(codepage_id, version_id, table_id)
        await self._codepages.update(
            codepage_id, CodepageUpdate(code=version.code_snapshot), table_id=codepage_table_id
        )
        logger.info(f"Rolled back codepage {codepage_id} to version {version_id} ('{version.version_label}').")
        return version

    async def compare_versions(
        self,
        codepage_id: str,
        from_version_id: str,
        to_version_id: str,
        *,
        table_id: Optional[str] = None,
    ) -> VersionComparison:
        old = await self._owned_version(codepage_id, from_version_id, table_id)
        new = await self._owned_version(codepage_id, to_version_id, table_id)

        differences = diff_lines(old.code_snapshot, new.code_snapshot)
        added = sum(1 for c in differences if c.kind == "addition")
        removed = len(differences) - added
        return VersionComparison(
            codepage_id=str(codepage_id),
            from_version=old,
            to_version=new,
            differences=differences,
            summary=DiffSummary(lines_added=added, lines_removed=removed, total_changes=len(differences)),
        )
