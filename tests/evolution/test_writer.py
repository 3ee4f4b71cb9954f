"""Tests for CodeWriter — guarded writes, backups and rollback."""

import pytest

from codevolve.evolution.writer import CodeWriter
from codevolve.types import FileChange, Plan


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "repo"
    (root / "core").mkdir(parents=True)
    (root / "core" / "app.py").write_text("VERSION = 1\n", encoding="utf-8")
    return root


@pytest.fixture
def writer(project, tmp_path):
    return CodeWriter(project_root=project, backup_dir=tmp_path / "backups")


def _snapshot(root):
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*")) if p.is_file()
    }


@pytest.mark.asyncio
async def test_create_and_modify(writer, project):
    plan = Plan(changes=[
        FileChange(action="create", file_path="core/greeting.py", content="def greet():\n    return 'hi'\n"),
        FileChange(action="modify", file_path="core/app.py", content="VERSION = 2\n"),
    ])

    result = await writer.apply(plan)

    assert result.success
    assert [(c.action, c.file_path) for c in result.applied] == [
        ("create", "core/greeting.py"),
        ("modify", "core/app.py"),
    ]
    assert (project / "core" / "app.py").read_text(encoding="utf-8") == "VERSION = 2\n"
    backup = result.applied[1].backup_location
    assert backup.startswith(str(writer.run_dir))
    assert writer.run_dir.name.startswith("run-")
    with open(backup, encoding="utf-8") as f:
        assert f.read() == "VERSION = 1\n"


@pytest.mark.asyncio
async def test_rollback_restores_exact_tree(writer, project):
    before = _snapshot(project)
    plan = Plan(changes=[
        FileChange(action="create", file_path="core/nested/new.py", content="x = 1\n"),
        FileChange(action="modify", file_path="core/app.py", content="broken(\n"),
    ])
    await writer.apply(plan)

    result = await writer.rollback()

    assert result.success
    assert result.rolled == 2
    assert _snapshot(project) == before
    assert writer.get_applied_changes() == []


@pytest.mark.asyncio
async def test_rollback_twice_is_noop(writer):
    await writer.apply(Plan(changes=[
        FileChange(action="create", file_path="core/a.py", content="a = 1\n"),
    ]))
    await writer.rollback()

    again = await writer.rollback()

    assert again.success
    assert again.rolled == 0


@pytest.mark.asyncio
async def test_create_over_existing_is_recorded_as_modify(writer, project):
    result = await writer.apply(Plan(changes=[
        FileChange(action="create", file_path="core/app.py", content="VERSION = 3\n"),
    ]))

    assert result.applied[0].action == "modify"
    await writer.rollback()
    assert (project / "core" / "app.py").read_text(encoding="utf-8") == "VERSION = 1\n"


@pytest.mark.asyncio
async def test_modify_missing_is_recorded_as_create(writer, project):
    result = await writer.apply(Plan(changes=[
        FileChange(action="modify", file_path="core/ghost.py", content="g = 1\n"),
    ]))

    assert result.applied[0].action == "create"
    await writer.rollback()
    assert not (project / "core" / "ghost.py").exists()


@pytest.mark.asyncio
async def test_repeated_path_backed_up_once(writer, project):
    result = await writer.apply(Plan(changes=[
        FileChange(action="modify", file_path="core/app.py", content="VERSION = 2\n"),
        FileChange(action="modify", file_path="core/app.py", content="VERSION = 3\n"),
    ]))

    assert len(result.applied) == 1
    assert (project / "core" / "app.py").read_text(encoding="utf-8") == "VERSION = 3\n"
    await writer.rollback()
    assert (project / "core" / "app.py").read_text(encoding="utf-8") == "VERSION = 1\n"


@pytest.mark.asyncio
async def test_guard_rejections_are_partial(writer, project):
    result = await writer.apply(Plan(changes=[
        FileChange(action="create", file_path="core/ok.py", content="ok = 1\n"),
        FileChange(action="create", file_path=".git/config", content="[core]\n"),
        FileChange(action="create", file_path="core/../escape.py", content="e = 1\n"),
    ]))

    assert not result.success
    assert [c.file_path for c in result.applied] == ["core/ok.py"]
    assert len(result.errors) == 2
    assert not (project / ".git").exists()
    assert not (project / "escape.py").exists()


@pytest.mark.asyncio
async def test_oversized_content_rejected(project, tmp_path):
    writer = CodeWriter(project_root=project, backup_dir=tmp_path / "b", max_file_size=10)

    result = await writer.apply(Plan(changes=[
        FileChange(action="create", file_path="core/big.py", content="x" * 11),
    ]))

    assert not result.success
    assert result.applied == []
    assert "exceeds max size" in result.errors[0]


@pytest.mark.asyncio
async def test_empty_plan(writer):
    result = await writer.apply(Plan(changes=[]))
    assert not result.success
    assert result.errors == ["No changes in plan"]


@pytest.mark.asyncio
async def test_missing_backup_reported(writer, project):
    result = await writer.apply(Plan(changes=[
        FileChange(action="modify", file_path="core/app.py", content="VERSION = 2\n"),
    ]))
    (writer.run_dir / "core" / "app.py").unlink()

    rollback = await writer.rollback()

    assert not rollback.success
    assert rollback.errors[0].startswith("Rollback failed for core/app.py")
    assert result.applied[0].backup_location in rollback.errors[0]


@pytest.mark.asyncio
async def test_interrupted_write_is_still_rolled_back(writer, project):
    before = _snapshot(project)

    def torn_write(target, content):
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content[:3], encoding="utf-8")
        raise OSError("No space left on device")

    writer._write = torn_write
    plan = Plan(changes=[
        FileChange(action="modify", file_path="core/app.py", content="VERSION = 2\n"),
        FileChange(action="create", file_path="core/greeting.py", content="def greet():\n    return 'hi'\n"),
    ])

    result = await writer.apply(plan)

    assert not result.success
    assert result.errors == [
        "Failed to apply core/app.py: No space left on device",
        "Failed to apply core/greeting.py: No space left on device",
    ]
    assert [c.file_path for c in writer.get_applied_changes()] == ["core/app.py", "core/greeting.py"]

    rollback = await writer.rollback()

    assert rollback.success
    assert _snapshot(project) == before


@pytest.mark.asyncio
async def test_discard_keeps_files_and_empties_rollback(writer, project):
    plan = Plan(changes=[
        FileChange(action="create", file_path="core/greeting.py", content="def greet():\n    return 'hi'\n"),
        FileChange(action="modify", file_path="core/app.py", content="VERSION = 2\n"),
    ])
    await writer.apply(plan)

    writer.discard()
    result = await writer.rollback()

    assert writer.get_applied_changes() == []
    assert result.rolled == 0
    assert (project / "core" / "greeting.py").exists()
    assert (project / "core" / "app.py").read_text(encoding="utf-8") == "VERSION = 2\n"
