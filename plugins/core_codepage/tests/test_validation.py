# plugins/core_codepage/tests/test_validation.py

import pytest

from plugins.core_codepage.contracts import ValidationOptions
from plugins.core_codepage.validation import extract_scripts, is_document, validate

pytestmark = pytest.mark.asyncio


class TestSecurityChecks:
    async def test_eval_is_an_error(self):
        report = validate("var x = eval('1 + 1');")

        assert report.is_valid is False
        assert any("eval()" in issue for issue in report.security_issues)
        assert any(e.startswith("Security:") and "eval()" in e for e in report.errors)

    async def test_function_constructor_is_an_error(self):
        report = validate("var f = new Function('a', 'return a');")
        assert report.is_valid is False

    async def test_inner_html_assignment_is_only_a_warning(self):
        report = validate("document.getElementById('out').innerHTML = 'hi';")

        assert report.is_valid is True
        assert report.errors == []
        assert any("innerHTML" in w for w in report.warnings)

    async def test_inner_html_comparison_is_not_flagged(self):
        report = validate("if (el.innerHTML == 'x') { el.textContent = 'y'; }")
        assert not any("innerHTML" in w for w in report.warnings)

    async def test_hardcoded_credentials_are_errors(self):
        report = validate("var headers = { Authorization: 'QB-USER-TOKEN abc123' };")

        assert report.is_valid is False
        assert report.security_issues == ["Contains a hardcoded token or credential reference"]

    async def test_security_checks_can_be_disabled(self):
        report = validate("eval('x');", ValidationOptions(check_security=False))

        assert report.is_valid is True
        assert report.security_issues == []


class TestSyntaxChecks:
    async def test_script_syntax_error_is_reported(self):
        report = validate("function broken( {")

        assert report.is_valid is False
        assert report.errors[0].startswith("Syntax Error:")

    async def test_syntax_error_reports_position(self):
        report = validate("var ok = 1;\nvar broken = ;")
        assert report.errors[0].startswith("Syntax Error: Line 2")

    @pytest.mark.parametrize("snippet", [
        "const x = obj?.a;",
        "const y = a ?? b;",
        "class Counter { #count = 0; static label = 'c'; inc() { return ++this.#count; } }",
        "const big = 1_000_000;",
        "async function drain(items) { for await (const item of items) { console.log(item); } }",
        "try { risky(); } catch { recover(); }",
        "const { a, ...rest } = source;",
    ])
    async def test_modern_syntax_is_accepted(self, snippet: str):
        report = validate(snippet)

        assert report.errors == []
        assert report.is_valid is True

    async def test_deeply_nested_script_is_reported_not_raised(self):
        nested = "var x = " + "[" * 400 + "1" + "]" * 400 + ";"
        unbalanced = "var y = " + "(" * 1000 + "1;"

        assert validate(nested).is_valid is True
        report = validate(unbalanced)
        assert report.is_valid is False
        assert report.errors[0].startswith("Syntax Error:")

    async def test_markup_documents_skip_syntax_errors(self):
        source = "<!DOCTYPE html><html><body><script>function (</script></body></html>"

        report = validate(source)

        assert report.is_valid is True
        assert report.errors == []

    async def test_syntax_check_can_be_disabled(self):
        report = validate("function broken( {", ValidationOptions(check_syntax=False))
        assert report.is_valid is True

    async def test_document_helpers(self):
        source = "  <html><script>var a = 1;</script><p>x</p><SCRIPT type='module'>var b = 2;</SCRIPT></html>"

        assert is_document(source)
        assert not is_document("<div>fragment</div>")
        assert extract_scripts(source) == "var a = 1;\nvar b = 2;"


class TestApiUsage:
    async def test_fetch_without_native_client_warns(self):
        report = validate("fetch('/records').then(function (r) { return r.json(); });")

        assert report.is_valid is True
        assert any("fetch()" in w for w in report.warnings)

    async def test_native_client_is_suggested_and_silences_fetch_warning(self):
        source = "qdb.api.getRecords('bq_table'); fetch('/other');"

        report = validate(source)

        assert any("qdb.api" in s for s in report.suggestions)
        assert not any("fetch()" in w for w in report.warnings)

    async def test_platform_client_and_connection_test_are_noted(self):
        report = validate("function testConnection() { return QB.api.ping(); }")

        assert "Uses QuickBase client" in report.suggestions
        assert "Includes connection testing" in report.suggestions

    async def test_clean_code_has_empty_report(self):
        report = validate("var total = [1, 2, 3].reduce(function (a, b) { return a + b; }, 0);")

        assert report.is_valid is True
        assert report.errors == report.warnings == report.security_issues == report.suggestions == []
