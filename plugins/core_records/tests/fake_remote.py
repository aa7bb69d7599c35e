# plugins/core_records/tests/fake_remote.py

"""
一个内存中的远程记录存储替身，挂在 httpx.MockTransport 后面使用。
它实现临时令牌签发、令牌作用域校验、records/query、records 写入和字段元数据，
并支持注入失败（状态码或传输异常）。
"""

import json
import re
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Optional, Union

import httpx

CONDITION = re.compile(r"\{(\d+)\.(EX|CT)\.('(?:[^'\\]|\\.)*'|[^}]*)\}")

Fault = Union[int, Callable[[httpx.Request], Exception]]


def _unquote(literal: str) -> Any:
    if literal.startswith("'") and literal.endswith("'"):
        return re.sub(r"\\(.)", r"\1", literal[1:-1])
    if literal == "true":
        return True
    if literal == "false":
        return False
    return literal


class _WhereParser:
    """解析 {fid.OP.value} / AND / OR / 括号 组成的过滤表达式。"""
    def __init__(self, text: str):
        self.tokens = self._tokenize(text)
        self.pos = 0

    @staticmethod
    def _tokenize(text: str) -> List[Any]:
        tokens: List[Any] = []
        i = 0
        while i < len(text):
            if text[i].isspace():
                i += 1
                continue
            if text[i] in "()":
                tokens.append(text[i])
                i += 1
                continue
            if text.startswith("AND", i):
                tokens.append("AND")
                i += 3
                continue
            if text.startswith("OR", i):
                tokens.append("OR")
                i += 2
                continue
            match = CONDITION.match(text, i)
            if not match:
                raise ValueError(f"Bad where clause near: {text[i:]}")
            tokens.append((int(match.group(1)), match.group(2), _unquote(match.group(3))))
            i = match.end()
        return tokens

    def parse(self) -> Callable[[Dict[int, Any]], bool]:
        expr = self._or()
        if self.pos != len(self.tokens):
            raise ValueError("Trailing tokens in where clause")
        return expr

    def _peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _or(self):
        parts = [self._and()]
        while self._peek() == "OR":
            self.pos += 1
            parts.append(self._and())
        return lambda rec: any(p(rec) for p in parts)

    def _and(self):
        parts = [self._factor()]
        while self._peek() == "AND":
            self.pos += 1
            parts.append(self._factor())
        return lambda rec: all(p(rec) for p in parts)

    def _factor(self):
        token = self._peek()
        self.pos += 1
        if token == "(":
            inner = self._or()
            self.pos += 1  # ')'
            return inner
        fid, op, value = token
        return lambda rec: _matches(rec.get(fid), op, value)


def _matches(cell: Any, op: str, expected: Any) -> bool:
    if op == "EX":
        if isinstance(expected, bool) or isinstance(cell, bool):
            return bool(cell) == (expected is True or str(expected).lower() == "true")
        return cell is not None and str(cell) == str(expected)
    if cell is None:
        return False
    return str(expected).lower() in str(cell).lower()


class FakeRemoteStore:
    def __init__(self, base_path: str = "/v1"):
        self.base_path = base_path
        self.tables: Dict[str, Dict[int, Dict[int, Any]]] = defaultdict(dict)
        self.field_metadata: Dict[str, List[Dict[str, Any]]] = {}
        self.valid_tokens: Dict[str, str] = {}
        self.issued: Dict[str, int] = defaultdict(int)
        self.faults: Deque[Fault] = deque()
        self.issuance_faults: Deque[int] = deque()
        self.write_rejections: Deque[str] = deque()
        self.requests: List[httpx.Request] = []
        self._next_id = 100
        self._clock = 0

    # --- 测试控制面 ---

    def fail_next(self, *faults: Fault) -> None:
        """依次让接下来的数据请求失败：int 表示 HTTP 状态，callable 返回要抛出的传输异常。"""
        self.faults.extend(faults)

    def reject_next_write(self, message: str) -> None:
        """让下一次写入的第一行以 lineErrors 被拒绝（HTTP 207）。"""
        self.write_rejections.append(message)

    def expire_tokens(self, table_id: Optional[str] = None) -> None:
        if table_id is None:
            self.valid_tokens.clear()
        else:
            self.valid_tokens.pop(table_id, None)

    def data_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if "/auth/temporary/" not in r.url.path]

    def seed(self, table_id: str, values: Dict[int, Any]) -> int:
        return self._create(table_id, values)

    # --- 传输入口 ---

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len(self.base_path):] if request.url.path.startswith(self.base_path) else request.url.path

        if path.startswith("/auth/temporary/"):
            return self._issue(path.rsplit("/", 1)[-1], request)

        resource = self._resource_of(path, request)
        auth = request.headers.get("Authorization", "")
        if not resource or self.valid_tokens.get(resource) != auth.replace("QB-TEMP-TOKEN ", ""):
            return httpx.Response(401, json={"message": "Invalid or expired temporary token"})

        if self.faults:
            fault = self.faults.popleft()
            if callable(fault):
                raise fault(request)
            return httpx.Response(fault, json={"message": f"Injected failure {fault}"})

        if path == "/fields" and request.method == "GET":
            return httpx.Response(200, json=self.field_metadata.get(resource, []))
        if path == "/records/query" and request.method == "POST":
            return httpx.Response(200, json=self._query(json.loads(request.content)))
        if path == "/records" and request.method == "POST":
            result = self._upsert(json.loads(request.content))
            return httpx.Response(207 if "lineErrors" in result["metadata"] else 200, json=result)
        return httpx.Response(404, json={"message": f"No route for {request.method} {path}"})

    def _resource_of(self, path: str, request: httpx.Request) -> Optional[str]:
        if path == "/fields":
            return request.url.params.get("tableId")
        if request.content:
            body = json.loads(request.content)
            return body.get("from") or body.get("to")
        return None

    def _issue(self, table_id: str, request: httpx.Request) -> httpx.Response:
        if self.issuance_faults:
            return httpx.Response(self.issuance_faults.popleft(), json={"message": "denied"})
        if "TICKET=" not in request.headers.get("Cookie", "") and "QB-App-Token" not in request.headers:
            return httpx.Response(401, json={"message": "No credentials"})
        self.issued[table_id] += 1
        token = f"tok-{table_id}-{self.issued[table_id]}"
        self.valid_tokens[table_id] = token
        return httpx.Response(200, json={"temporaryAuthorization": token})

    # --- 记录语义 ---

    def _timestamp(self) -> str:
        self._clock += 1
        return f"2024-01-01T{self._clock // 3600:02d}:{(self._clock // 60) % 60:02d}:{self._clock % 60:02d}Z"

    def _create(self, table_id: str, values: Dict[int, Any]) -> int:
        self._next_id += 1
        record_id = self._next_id
        stamp = self._timestamp()
        record = {1: stamp, 2: stamp, 3: record_id}
        record.update({int(k): v for k, v in values.items() if int(k) not in (1, 2, 3)})
        self.tables[table_id][record_id] = record
        return record_id

    def _upsert(self, body: Dict[str, Any]) -> Dict[str, Any]:
        table_id = body["to"]
        created, updated, data = [], [], []
        line_errors: Dict[str, List[str]] = {}
        for line, row in enumerate(body.get("data", []), start=1):
            if self.write_rejections:
                line_errors[str(line)] = [self.write_rejections.popleft()]
                continue
            values = {int(fid): cell["value"] for fid, cell in row.items()}
            record_id = values.pop(3, None)
            if record_id is None:
                record_id = self._create(table_id, values)
                created.append(record_id)
            elif int(record_id) in self.tables[table_id]:
                record = self.tables[table_id][int(record_id)]
                record.update(values)
                record[2] = self._timestamp()
                updated.append(int(record_id))
            else:
                line_errors[str(line)] = [f"Record with ID {record_id} does not exist."]
                continue
            data.append({"3": {"value": int(record_id)}})
        metadata: Dict[str, Any] = {"createdRecordIds": created, "updatedRecordIds": updated, "unchangedRecordIds": []}
        if line_errors:
            metadata["lineErrors"] = line_errors
        return {"data": data, "metadata": metadata}

    def _query(self, body: Dict[str, Any]) -> Dict[str, Any]:
        records = list(self.tables[body["from"]].values())
        if body.get("where"):
            predicate = _WhereParser(body["where"]).parse()
            records = [r for r in records if predicate(r)]
        for sort in reversed(body.get("sortBy", [])):
            records.sort(key=lambda r: (r.get(sort["fieldId"]) is None, r.get(sort["fieldId"])),
                         reverse=sort.get("order") == "DESC")
        top = (body.get("options") or {}).get("top")
        if top:
            records = records[:top]
        select = body.get("select") or [3]
        return {
            "data": [{str(fid): {"value": r.get(fid)} for fid in select} for r in records],
            "metadata": {"totalRecords": len(records)},
        }
