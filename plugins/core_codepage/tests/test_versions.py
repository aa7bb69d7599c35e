# plugins/core_codepage/tests/test_versions.py

import pytest

from plugins.core_codepage.contracts import CodepageDraft, CodepageUpdate, NotFoundError
from plugins.core_codepage.service import CodepageService
from plugins.core_codepage.versions import VersionControlService, diff_lines
from plugins.core_records.tests.fake_remote import FakeRemoteStore

pytestmark = pytest.mark.asyncio

VERSION_TABLE = "bq_versions"


async def deploy(service: CodepageService, name: str = "Widget", code: str = "v1") -> str:
    return await service.deploy(CodepageDraft(name=name, code=code))


class TestSnapshots:
    async def test_versions_are_listed_newest_first(
        self, codepage_service: CodepageService, version_service: VersionControlService
    ):
        codepage_id = await deploy(codepage_service)
        other_id = await deploy(codepage_service, name="Other")
        for label in ("1.0", "1.1", "2.0"):
            await version_service.save_version(codepage_id, label, f"code {label}", f"release {label}")
        await version_service.save_version(other_id, "9.9", "foreign")

        versions = await version_service.list_versions(codepage_id)

        assert [v.version_label for v in versions] == ["2.0", "1.1", "1.0"]
        assert all(v.codepage_id == codepage_id for v in versions)
        assert versions[0].code_snapshot == "code 2.0"
        assert versions[0].change_log == "release 2.0"

    async def test_list_versions_honours_limit(
        self, codepage_service: CodepageService, version_service: VersionControlService
    ):
        codepage_id = await deploy(codepage_service)
        for label in ("a", "b", "c"):
            await version_service.save_version(codepage_id, label, label)

        versions = await version_service.list_versions(codepage_id, limit=2)

        assert [v.version_label for v in versions] == ["c", "b"]

    async def test_list_versions_rejects_zero_limit(
        self, version_service: VersionControlService, fake_remote: FakeRemoteStore
    ):
        with pytest.raises(ValueError, match="positive"):
            await version_service.list_versions("101", limit=0)
        assert fake_remote.requests == []

    async def test_snapshot_references_the_codepage_record(
        self,
        codepage_service: CodepageService,
        version_service: VersionControlService,
        fake_remote: FakeRemoteStore,
    ):
        codepage_id = await deploy(codepage_service)

        version_id = await version_service.save_version(codepage_id, "1.0", "v1")

        record = fake_remote.tables[VERSION_TABLE][int(version_id)]
        assert record[6] == int(codepage_id)
        assert record[8] == "v1"

    async def test_unknown_version_raises_not_found(self, version_service: VersionControlService):
        with pytest.raises(NotFoundError):
            await version_service.get_version("999")


class TestRollback:
    async def test_rollback_restores_snapshot_and_keeps_history(
        self, codepage_service: CodepageService, version_service: VersionControlService
    ):
        codepage_id = await deploy(codepage_service, code="<p>v1</p>")
        v1_id = await version_service.save_version(codepage_id, "1.0", "<p>v1</p>", "initial")
        await codepage_service.update(codepage_id, CodepageUpdate(code="<p>v2</p>"))
        await version_service.save_version(codepage_id, "2.0", "<p>v2</p>", "second")

        restored = await version_service.rollback(codepage_id, v1_id)

        assert restored.id == v1_id
        assert restored.version_label == "1.0"
        assert (await codepage_service.get(codepage_id)).code == "<p>v1</p>"
        labels = [v.version_label for v in await version_service.list_versions(codepage_id)]
        assert labels == ["2.0", "1.0"]

    async def test_release_then_revert_scenario(
        self, codepage_service: CodepageService, version_service: VersionControlService
    ):
        original = "<html><body>calc v1</body></html>"
        codepage_id = await codepage_service.deploy(CodepageDraft(name="Calc", code=original, version="1.0.0"))
        v1_id = await version_service.save_version(codepage_id, "1.0.0", original, "initial")

        await codepage_service.update(codepage_id, {"version": "1.0.1", "code": "<html>v2</html>"})
        assert (await codepage_service.get(codepage_id)).code == "<html>v2</html>"

        await version_service.rollback(codepage_id, v1_id)

        codepage = await codepage_service.get(codepage_id)
        assert codepage.code == original
        # 回滚只恢复代码，版本号保持更新后的值
        assert codepage.version == "1.0.1"

    async def test_rollback_to_foreign_version_is_refused(
        self, codepage_service: CodepageService, version_service: VersionControlService
    ):
        codepage_id = await deploy(codepage_service, code="mine")
        other_id = await deploy(codepage_service, name="Other", code="theirs")
        foreign_version = await version_service.save_version(other_id, "1.0", "theirs")

        with pytest.raises(NotFoundError):
            await version_service.rollback(codepage_id, foreign_version)

        assert (await codepage_service.get(codepage_id)).code == "mine"

    async def test_rollback_to_missing_version_is_refused(
        self, codepage_service: CodepageService, version_service: VersionControlService
    ):
        codepage_id = await deploy(codepage_service)

        with pytest.raises(NotFoundError):
            await version_service.rollback(codepage_id, "999")


class TestCompare:
    async def test_diff_lines_reports_line_numbers_per_side(self):
        changes = diff_lines("a\nb\nc", "a\nB\nc\nd")

        assert [(c.kind, c.line, c.content) for c in changes] == [
            ("deletion", 2, "b"),
            ("addition", 2, "B"),
            ("addition", 4, "d"),
        ]

    async def test_identical_snapshots_have_no_differences(self):
        assert diff_lines("same\ntext", "same\ntext") == []

    async def test_compare_versions_summarises_changes(
        self, codepage_service: CodepageService, version_service: VersionControlService
    ):
        codepage_id = await deploy(codepage_service)
        old_id = await version_service.save_version(codepage_id, "1.0", "line one\nline two")
        new_id = await version_service.save_version(codepage_id, "2.0", "line one\nline 2\nline three")

        comparison = await version_service.compare_versions(codepage_id, old_id, new_id)

        assert comparison.from_version.version_label == "1.0"
        assert comparison.to_version.version_label == "2.0"
        assert comparison.summary.lines_added == 2
        assert comparison.summary.lines_removed == 1
        assert comparison.summary.total_changes == 3
