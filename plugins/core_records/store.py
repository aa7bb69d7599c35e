# plugins/core_records/store.py

import logging
from typing import Any, Dict, List, Optional

from .contracts import (
    BUILTIN_FIELDS,
    RECORD_ID_FIELD,
    FieldSchema,
    RecordStoreError,
    RecordStoreInterface,
    RequestClientInterface,
    SortSpec,
)
from .field_map import FieldMapper
from .filters import Expression, render

logger = logging.getLogger(__name__)


def _record_id_to_wire(record_id: str) -> Any:
    return int(record_id) if str(record_id).isdigit() else record_id


class RecordStore(RecordStoreInterface):
    """
    远程记录存储的 query/create/update 适配器。
    负责 {value} 包装、字段 ID 翻译以及把返回的行还原为语义字典。
    """
    def __init__(self, client: RequestClientInterface, field_mapper: FieldMapper):
        self._client = client
        self._field_mapper = field_mapper

    async def query(
        self,
        collection_id: str,
        schema: FieldSchema,
        where: Optional[Expression] = None,
        fields: Optional[List[str]] = None,
        limit: Optional[int] = None,
        sort_by: Optional[SortSpec] = None,
    ) -> List[Dict[str, Any]]:
        mapping = await self._field_mapper.resolve(collection_id, schema)

        names = list(fields or schema.semantic_names)
        for builtin in BUILTIN_FIELDS:
            if builtin not in names:
                names.append(builtin)
        select = [mapping[name] for name in names]

        body: Dict[str, Any] = {"from": collection_id, "select": select}
        where_clause = render(where, mapping)
        if where_clause:
            body["where"] = where_clause
        if sort_by:
            body["sortBy"] = [{"fieldId": mapping[name], "order": order.upper()} for name, order in sort_by]
        if limit is not None:
            body["options"] = {"top": limit}

        logger.debug(f"Querying '{collection_id}' where={where_clause!r} top={limit}")
        response = await self._client.request("POST", "/records/query", body, resource_id=collection_id)

        by_id = {str(mapping[name]): name for name in names}
        rows = response.get("data", []) if isinstance(response, dict) else []
        return [self._decode_row(row, by_id) for row in rows]

    async def create(self, collection_id: str, schema: FieldSchema, values: Dict[str, Any]) -> str:
        mapping = await self._field_mapper.resolve(collection_id, schema)
        body = {
            "to": collection_id,
            "data": [self._encode_row(values, mapping)],
            "fieldsToReturn": [RECORD_ID_FIELD],
        }
        response = await self._client.request("POST", "/records", body, resource_id=collection_id)
        self._raise_line_errors(collection_id, response)

        record_id = self._extract_created_id(response)
        if record_id is None:
            raise RecordStoreError(f"Remote store accepted the record for '{collection_id}' but returned no record id.")
        logger.info(f"Created record {record_id} in collection '{collection_id}'.")
        return record_id

    async def update(self, collection_id: str, schema: FieldSchema, record_id: str, values: Dict[str, Any]) -> None:
        mapping = await self._field_mapper.resolve(collection_id, schema)
        row = self._encode_row(values, mapping)
        row[str(RECORD_ID_FIELD)] = {"value": _record_id_to_wire(record_id)}
        body = {"to": collection_id, "data": [row], "fieldsToReturn": [RECORD_ID_FIELD]}

        response = await self._client.request("POST", "/records", body, resource_id=collection_id)
        self._raise_line_errors(collection_id, response)
        logger.info(f"Updated record {record_id} in collection '{collection_id}' ({', '.join(values)}).")

    @staticmethod
    def _encode_row(values: Dict[str, Any], mapping: Dict[str, int]) -> Dict[str, Dict[str, Any]]:
        row: Dict[str, Dict[str, Any]] = {}
        for name, value in values.items():
            if name not in mapping:
                raise ValueError(f"Unknown field '{name}'.")
            if value is None:
                continue
            row[str(mapping[name])] = {"value": value}
        return row

    @staticmethod
    def _decode_row(row: Dict[str, Any], by_id: Dict[str, str]) -> Dict[str, Any]:
        decoded: Dict[str, Any] = {}
        for fid, cell in row.items():
            name = by_id.get(str(fid))
            if name is None:
                continue
            value = cell.get("value") if isinstance(cell, dict) else cell
            decoded[name] = value
        if decoded.get("record_id") is not None:
            decoded["record_id"] = str(decoded["record_id"])
        return decoded

    @staticmethod
    def _raise_line_errors(collection_id: str, response: Any) -> None:
        """写入可能以 207 部分成功返回，被拒绝的行记录在 metadata.lineErrors 中。"""
        if not isinstance(response, dict):
            return
        line_errors = (response.get("metadata") or {}).get("lineErrors") or {}
        if not line_errors:
            return
        details = "; ".join(
            f"row {line}: {' '.join(str(m) for m in messages) if isinstance(messages, list) else messages}"
            for line, messages in line_errors.items()
        )
        logger.error(f"Remote store rejected a write to '{collection_id}': {details}")
        raise RecordStoreError(f"Remote store rejected the write to '{collection_id}': {details}")

    @staticmethod
    def _extract_created_id(response: Any) -> Optional[str]:
        if not isinstance(response, dict):
            return None
        created = (response.get("metadata") or {}).get("createdRecordIds") or []
        if created:
            return str(created[0])
        data = response.get("data") or []
        if data and isinstance(data[0], dict):
            cell = data[0].get(str(RECORD_ID_FIELD))
            if isinstance(cell, dict) and cell.get("value") is not None:
                return str(cell["value"])
        return None
