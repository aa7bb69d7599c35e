# plugins/core_codepage/validation.py

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern

import tree_sitter_javascript
from tree_sitter import Language, Node, Parser

from .contracts import ValidationOptions, ValidationReport

logger = logging.getLogger(__name__)

JAVASCRIPT = Language(tree_sitter_javascript.language())

DOCUMENT_PREFIX = re.compile(r"^\s*<(?:!DOCTYPE|html)", re.IGNORECASE)
SCRIPT_BLOCK = re.compile(r"<script[^>]*>(.*?)</script>", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class SecurityRule:
    pattern: Pattern[str]
    message: str
    fatal: bool


SECURITY_RULES: List[SecurityRule] = [
    SecurityRule(re.compile(r"\beval\s*\("), "Uses eval() - avoid dynamic code evaluation", fatal=True),
    SecurityRule(re.compile(r"\bnew\s+Function\s*\("), "Uses new Function() - avoid dynamic code evaluation", fatal=True),
    SecurityRule(re.compile(r"\.(?:inner|outer)HTML\s*=(?!=)"), "Uses innerHTML - consider textContent or sanitize", fatal=False),
    SecurityRule(
        re.compile(r"QB-USER-TOKEN|QB-APP-TOKEN|userToken|appToken", re.IGNORECASE),
        "Contains a hardcoded token or credential reference",
        fatal=True,
    ),
]

NATIVE_CLIENT = re.compile(r"qdb\.api")
PLATFORM_CLIENT = re.compile(r"qbClient|QB\.api")
GENERIC_FETCH = re.compile(r"\bfetch\s*\(")
CONNECTION_TEST = re.compile(r"test.*connection", re.IGNORECASE)


def is_document(source: str) -> bool:
    return bool(DOCUMENT_PREFIX.match(source))


def extract_scripts(source: str) -> str:
    """拼接文档中所有内嵌 <script> 块的内容。"""
    return "\n".join(block for block in SCRIPT_BLOCK.findall(source))


def _first_error(root: Node) -> Optional[Node]:
    """按源码顺序返回第一个 ERROR / MISSING 节点。使用显式栈，嵌套深度不受递归限制。"""
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return node
        if node.has_error:
            stack.extend(reversed(node.children))
    return None


def _syntax_error(text: str) -> Optional[str]:
    tree = Parser(JAVASCRIPT).parse(text.encode("utf-8"))
    if not tree.root_node.has_error:
        return None

    node = _first_error(tree.root_node)
    if node is None:
        return "Script could not be parsed"
    row, column = node.start_point
    if node.is_missing:
        return f"Line {row + 1}, column {column + 1}: missing '{node.type}'"
    fragment = (node.text or b"").decode("utf-8", errors="replace").strip().splitlines()
    near = fragment[0][:40] if fragment else ""
    return f"Line {row + 1}, column {column + 1}: unexpected input near '{near}'"


def validate(source: str, options: Optional[ValidationOptions] = None) -> ValidationReport:
    """
    对一段源码做纯静态校验，不做任何 I/O。
    语法检查只针对脚本文本；安全与 API 使用检查总是覆盖完整源码。
    """
    options = options or ValidationOptions()
    report = ValidationReport()
    document = is_document(source)

    if options.check_syntax:
        text = extract_scripts(source) if document else source
        if text.strip():
            error = _syntax_error(text)
            if error and not document:
                report.errors.append(f"Syntax Error: {error}")
            elif error:
                logger.debug(f"Ignoring script parse failure inside markup document: {error}")

    if options.check_security:
        for rule in SECURITY_RULES:
            if not rule.pattern.search(source):
                continue
            if rule.fatal:
                report.security_issues.append(rule.message)
                report.errors.append(f"Security: {rule.message}")
            else:
                report.warnings.append(f"Security: {rule.message}")

    if options.check_apis:
        uses_native = bool(NATIVE_CLIENT.search(source))
        if uses_native:
            report.suggestions.append("Uses qdb.api - recommended client, avoids cross-origin issues")
        if PLATFORM_CLIENT.search(source):
            report.suggestions.append("Uses QuickBase client")
        if GENERIC_FETCH.search(source) and not uses_native:
            report.warnings.append("Uses fetch() without qdb.api - may hit cross-origin (CORS) restrictions")
        if CONNECTION_TEST.search(source):
            report.suggestions.append("Includes connection testing")

    report.is_valid = not report.errors
    return report
