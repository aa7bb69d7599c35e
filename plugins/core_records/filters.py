# plugins/core_records/filters.py

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union


def quote_value(value: Any) -> str:
    """把值渲染为过滤表达式字面量：布尔和数字不加引号，文本用单引号并转义。"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


@dataclass(frozen=True)
class Condition:
    field: str
    operator: str
    value: Any

    def render(self, mapping: Dict[str, int]) -> str:
        return f"{{{mapping[self.field]}.{self.operator}.{quote_value(self.value)}}}"


def equals(field: str, value: Any) -> Condition:
    return Condition(field, "EX", value)


def contains(field: str, value: Any) -> Condition:
    return Condition(field, "CT", value)


@dataclass(frozen=True)
class _Group:
    joiner: str
    parts: Tuple["Expression", ...]

    def render(self, mapping: Dict[str, int]) -> str:
        rendered = []
        for part in self.parts:
            text = part.render(mapping)
            if isinstance(part, _Group) and len(part.parts) > 1:
                text = f"({text})"
            rendered.append(text)
        return self.joiner.join(rendered)


Expression = Union[Condition, _Group]


def all_of(*parts: Optional[Expression]) -> Optional[Expression]:
    """合取；忽略 None，只剩一个时直接返回它。"""
    kept = tuple(p for p in parts if p is not None)
    if not kept:
        return None
    if len(kept) == 1:
        return kept[0]
    return _Group("AND", kept)


def any_of(*parts: Optional[Expression]) -> Optional[Expression]:
    kept = tuple(p for p in parts if p is not None)
    if not kept:
        return None
    if len(kept) == 1:
        return kept[0]
    return _Group("OR", kept)


def render(expression: Optional[Expression], mapping: Dict[str, int]) -> Optional[str]:
    if expression is None:
        return None
    return expression.render(mapping)
