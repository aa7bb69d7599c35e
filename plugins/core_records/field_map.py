# plugins/core_records/field_map.py

import asyncio
import logging
from typing import Any, Dict, List, Tuple

from .contracts import (
    BUILTIN_FIELDS,
    FieldSchema,
    HttpError,
    RecordStoreError,
    RequestClientInterface,
)

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class FieldMapper:
    """
    将语义字段名解析为某个集合的数字字段 ID，每个集合只解析一次。
    解析顺序：配置覆盖 > 远程字段元数据中的标签匹配 > schema 默认值。
    """
    def __init__(self, client: RequestClientInterface):
        self._client = client
        self._cache: Dict[CacheKey, Dict[str, int]] = {}
        self._locks: Dict[CacheKey, asyncio.Lock] = {}

    def _get_lock(self, key: CacheKey) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def resolve(self, collection_id: str, schema: FieldSchema) -> Dict[str, int]:
        key = (collection_id, schema.name)
        if key in self._cache:
            return self._cache[key]

        async with self._get_lock(key):
            if key in self._cache:
                return self._cache[key]

            mapping, cacheable = await self._build_mapping(collection_id, schema)
            if cacheable:
                self._cache[key] = mapping
            return mapping

    async def _build_mapping(self, collection_id: str, schema: FieldSchema) -> Tuple[Dict[str, int], bool]:
        mapping = dict(schema.defaults)
        cacheable = True

        unresolved = [name for name in schema.semantic_names if name not in schema.overrides]
        if unresolved and schema.labels:
            try:
                matched = await self._match_labels(collection_id, schema, unresolved)
                mapping.update(matched)
                logger.info(
                    f"Resolved {len(matched)}/{len(unresolved)} '{schema.name}' fields "
                    f"from metadata of collection '{collection_id}'."
                )
            except RecordStoreError as e:
                # 确定性的拒绝（HTTP 4xx/5xx）可以缓存默认值；瞬时失败下次再试
                cacheable = isinstance(e, HttpError)
                logger.warning(
                    f"Field metadata lookup for collection '{collection_id}' failed: {e}. "
                    f"Using default field ids for '{schema.name}'."
                )

        mapping.update(schema.overrides)
        mapping.update(BUILTIN_FIELDS)
        logger.debug(f"Field map for '{schema.name}' @ '{collection_id}': {mapping}")
        return mapping, cacheable

    async def _match_labels(self, collection_id: str, schema: FieldSchema, names: List[str]) -> Dict[str, int]:
        metadata = await self._client.request(
            "GET", "/fields", {"tableId": collection_id}, resource_id=collection_id
        )
        by_label: Dict[str, int] = {}
        for entry in self._iter_fields(metadata):
            label = str(entry.get("label", "")).strip().lower()
            if label and "id" in entry:
                by_label.setdefault(label, int(entry["id"]))

        matched: Dict[str, int] = {}
        for name in names:
            for candidate in schema.labels.get(name, []):
                field_id = by_label.get(candidate.lower())
                if field_id is not None:
                    matched[name] = field_id
                    break
        return matched

    @staticmethod
    def _iter_fields(metadata: Any) -> List[Dict[str, Any]]:
        if isinstance(metadata, list):
            return [f for f in metadata if isinstance(f, dict)]
        if isinstance(metadata, dict) and isinstance(metadata.get("fields"), list):
            return [f for f in metadata["fields"] if isinstance(f, dict)]
        return []
