# plugins/core_codepage/fields.py

from typing import Any, Dict, Iterable, List, Optional

from plugins.core_records.contracts import FieldSchema

from .contracts import Codepage, CodepageVersion

CODEPAGE_DEFAULT_FIELDS: Dict[str, int] = {
    "name": 6,
    "code": 7,
    "description": 8,
    "version": 9,
    "tags": 10,
    "dependencies": 11,
    "target_table_id": 12,
    "active": 13,
}

CODEPAGE_FIELD_LABELS: Dict[str, List[str]] = {
    "name": ["Name", "Codepage Name"],
    "code": ["Code", "Source"],
    "description": ["Description"],
    "version": ["Version"],
    "tags": ["Tags"],
    "dependencies": ["Dependencies"],
    "target_table_id": ["Target Table", "Target Table ID", "TargetTableId"],
    "active": ["Active", "Is Active"],
}

VERSION_DEFAULT_FIELDS: Dict[str, int] = {
    "codepage_id": 6,
    "version_label": 7,
    "code_snapshot": 8,
    "change_log": 9,
}

VERSION_FIELD_LABELS: Dict[str, List[str]] = {
    "codepage_id": ["Codepage", "Codepage ID", "Related Codepage"],
    "version_label": ["Version", "Version Label"],
    "code_snapshot": ["Code", "Code Snapshot"],
    "change_log": ["Change Log", "Changelog"],
}


def codepage_schema(overrides: Optional[Dict[str, int]] = None) -> FieldSchema:
    return FieldSchema(
        name="codepage",
        defaults=CODEPAGE_DEFAULT_FIELDS,
        labels=CODEPAGE_FIELD_LABELS,
        overrides={k: v for k, v in (overrides or {}).items() if k in CODEPAGE_DEFAULT_FIELDS},
    )


def version_schema(overrides: Optional[Dict[str, int]] = None) -> FieldSchema:
    return FieldSchema(
        name="codepage_version",
        defaults=VERSION_DEFAULT_FIELDS,
        labels=VERSION_FIELD_LABELS,
        overrides={k: v for k, v in (overrides or {}).items() if k in VERSION_DEFAULT_FIELDS},
    )


# --- 值转换 ---

def normalize_tags(tags: Iterable[str]) -> List[str]:
    """去掉空白与重复，保留首次出现的顺序。"""
    seen: Dict[str, None] = {}
    for tag in tags:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen[tag] = None
    return list(seen)


def join_tags(tags: Iterable[str]) -> str:
    return ",".join(normalize_tags(tags))


def split_tags(raw: Any) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, list):
        return normalize_tags(raw)
    return normalize_tags(str(raw).split(","))


def join_dependencies(dependencies: Iterable[str]) -> str:
    return "\n".join(d.strip() for d in dependencies if d and d.strip())


def split_dependencies(raw: Any) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, list):
        return [str(d).strip() for d in raw if str(d).strip()]
    return [line.strip() for line in str(raw).splitlines() if line.strip()]


def _as_bool(raw: Any) -> Optional[bool]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("true", "1", "yes")


def _as_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    return str(raw)


def _as_ref(raw: Any) -> str:
    """记录引用：数字字段可能以浮点形式返回。"""
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    return "" if raw is None else str(raw)


def to_record_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    """语义字段 -> 记录存储值。列表字段被编码为分隔文本。"""
    values = dict(fields)
    if "tags" in values and values["tags"] is not None:
        values["tags"] = join_tags(values["tags"])
    if "dependencies" in values and values["dependencies"] is not None:
        values["dependencies"] = join_dependencies(values["dependencies"])
    return values


def codepage_from_row(row: Dict[str, Any]) -> Codepage:
    return Codepage(
        id=str(row["record_id"]),
        name=_as_text(row.get("name")) or "",
        code=_as_text(row.get("code")) or "",
        description=_as_text(row.get("description")) or None,
        version=_as_text(row.get("version")) or None,
        tags=split_tags(row.get("tags")),
        dependencies=split_dependencies(row.get("dependencies")),
        target_table_id=_as_text(row.get("target_table_id")) or None,
        active=_as_bool(row.get("active")),
        created_date=_as_text(row.get("date_created")),
        modified_date=_as_text(row.get("date_modified")),
    )


def version_from_row(row: Dict[str, Any]) -> CodepageVersion:
    return CodepageVersion(
        id=str(row["record_id"]),
        codepage_id=_as_ref(row.get("codepage_id")),
        version_label=_as_text(row.get("version_label")) or None,
        code_snapshot=_as_text(row.get("code_snapshot")) or "",
        change_log=_as_text(row.get("change_log")) or None,
        created_date=_as_text(row.get("date_created")),
    )
