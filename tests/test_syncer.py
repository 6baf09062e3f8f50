"""Tests for the propagation coordinator."""

from unittest.mock import MagicMock

import pytest

from claude_sync.errors import ConfigError, GitCommandError, NotFoundError
from claude_sync.git.gateway import PushResult, RemoveResult
from claude_sync.merge import MERGE_SEPARATOR
from claude_sync.syncer import Syncer


@pytest.fixture
def mock_gateway(tmp_path):
    gateway = MagicMock()
    gateway.repo_path = tmp_path / "repo"
    gateway.repo_path.mkdir()
    gateway.sync_file.return_value = PushResult(pushed=True, message="Successfully pushed")
    gateway.stage_or_remove.return_value = RemoveResult(removed=True, message="Removed")
    return gateway


@pytest.fixture
def offline_syncer(config_manager, paths, mock_gateway):
    return Syncer(config_manager, paths, mock_gateway)


def make_skill(paths, name, manifest="SKILL.md", content="# skill\n"):
    skill_dir = paths.global_skills_dir / name
    skill_dir.mkdir(parents=True, exist_ok=True)
    if manifest:
        (skill_dir / manifest).write_text(content)
    return skill_dir


# Workspace regeneration


def test_sync_workspace_merges_both_files(offline_syncer, workspaces):
    w1 = workspaces[0]
    (w1 / "CLAUDE-GLOBAL.md").write_text("# Shared\n")
    (w1 / "CLAUDE-PROJECT.md").write_text("local\n")

    result = offline_syncer.sync_workspace(w1)

    assert result.success and result.has_shared and result.has_private and result.written
    assert (w1 / "CLAUDE.md").read_text() == "# Shared" + MERGE_SEPARATOR + "local\n"


def test_sync_workspace_only_shared(offline_syncer, workspaces):
    w1 = workspaces[0]
    (w1 / "CLAUDE-GLOBAL.md").write_text("# Shared\n")
    offline_syncer.sync_workspace(w1)
    assert (w1 / "CLAUDE.md").read_text() == "# Shared\n"


def test_sync_workspace_skips_identical_output(offline_syncer, workspaces):
    w1 = workspaces[0]
    (w1 / "CLAUDE-PROJECT.md").write_text("local\n")
    assert offline_syncer.sync_workspace(w1).written
    assert not offline_syncer.sync_workspace(w1).written


def test_sync_workspace_without_rule_files(offline_syncer, workspaces):
    result = offline_syncer.sync_workspace(workspaces[0])
    assert not result.success
    assert "Neither CLAUDE-GLOBAL.md nor CLAUDE-PROJECT.md" in result.message
    assert not (workspaces[0] / "CLAUDE.md").exists()


def test_sync_workspace_missing_directory(offline_syncer, tmp_path):
    with pytest.raises(NotFoundError):
        offline_syncer.sync_workspace(tmp_path / "gone")


def test_sync_all_requires_workspaces(config_manager, paths, mock_gateway):
    with pytest.raises(ConfigError):
        Syncer(config_manager, paths, mock_gateway).sync_all()


def test_sync_all_regenerates_and_pushes_first_shared_file(offline_syncer, workspaces, mock_gateway, config_manager):
    (workspaces[1] / "CLAUDE-GLOBAL.md").write_text("# From w2\n")

    results = offline_syncer.sync_all()

    assert [r.success for r in results] == [False, True, True]
    source, target, message = mock_gateway.sync_file.call_args[0]
    assert source == workspaces[1] / "CLAUDE-GLOBAL.md"
    assert target == "CLAUDE.md"
    assert message.startswith("Update global rules - ")
    assert config_manager.reload().last_sync is not None


def test_sync_all_records_push_failure(offline_syncer, workspaces, mock_gateway):
    (workspaces[0] / "CLAUDE-GLOBAL.md").write_text("# R\n")
    mock_gateway.sync_file.side_effect = GitCommandError(["push"], 1, "fatal: Authentication failed")
    results = offline_syncer.sync_all()
    assert results[-1].workspace == "repository"
    assert not results[-1].success


# Skills and agents


def test_sync_skill_targets_relative_path(offline_syncer, paths, mock_gateway):
    skill = make_skill(paths, "tidy") / "SKILL.md"
    assert offline_syncer.sync_skill(skill).pushed
    source, target, message = mock_gateway.sync_file.call_args[0]
    assert target == "skills/tidy/SKILL.md"
    assert message.startswith("Update skill: tidy - ")


def test_local_skill_is_not_pushed(offline_syncer, tmp_path, mock_gateway):
    skill = tmp_path / "proj" / ".claude" / "skills" / "tidy" / "SKILL.md"
    skill.parent.mkdir(parents=True)
    skill.write_text("x")
    result = offline_syncer.sync_skill(skill)
    assert not result.pushed
    assert "project-specific" in result.message
    mock_gateway.sync_file.assert_not_called()


def test_missing_skill_raises(offline_syncer, paths):
    with pytest.raises(NotFoundError):
        offline_syncer.sync_skill(paths.global_skills_dir / "ghost" / "SKILL.md")


def test_sync_agent_and_remove_agent(offline_syncer, paths, mock_gateway):
    agent = paths.global_agents_dir / "reviewer.md"
    agent.write_text("# Reviewer\n")
    offline_syncer.sync_agent(agent)
    assert mock_gateway.sync_file.call_args[0][1] == "agents/reviewer.md"

    agent.unlink()
    assert offline_syncer.remove_agent(agent).removed
    target, message = mock_gateway.stage_or_remove.call_args[0]
    assert target == "agents/reviewer.md"
    assert message.startswith("Remove agent: reviewer - ")


def test_remove_skill_targets_relative_path(offline_syncer, paths, mock_gateway):
    offline_syncer.remove_skill(paths.global_skills_dir / "tidy" / "SKILL.md")
    target, message = mock_gateway.stage_or_remove.call_args[0]
    assert target == "skills/tidy/SKILL.md"
    assert message.startswith("Remove skill: tidy - ")


@pytest.mark.parametrize("total,failing", [(3, 0), (4, 1), (5, 5)])
def test_bulk_skill_sync_counts(offline_syncer, paths, mock_gateway, total, failing):
    failing_names = {f"skill-{i}" for i in range(failing)}
    for i in range(total):
        make_skill(paths, f"skill-{i}")

    def push(source, target, message):
        if source.parent.name in failing_names:
            raise GitCommandError(["push"], 1, "fatal: Authentication failed")
        return PushResult(pushed=True, message="ok")

    mock_gateway.sync_file.side_effect = push
    result = offline_syncer.sync_all_global_skills()

    assert result.synced == total - failing
    assert result.failed == failing
    assert result.success == (failing == 0)
    assert len(result.details) == total
    assert mock_gateway.sync_file.call_count == total


def test_bulk_skill_sync_skips_directories_without_manifest(offline_syncer, paths):
    make_skill(paths, "empty", manifest=None)
    make_skill(paths, "lower", manifest="skill.md")
    result = offline_syncer.sync_all_global_skills()
    assert result.skipped == 1
    assert result.synced == 1
    assert {d.name: d.status for d in result.details} == {"empty": "skipped", "lower": "synced"}


def test_bulk_sync_unchanged_item_is_skipped(offline_syncer, paths, mock_gateway):
    make_skill(paths, "tidy")
    mock_gateway.sync_file.return_value = PushResult(pushed=False, message="No changes to commit")
    result = offline_syncer.sync_all_global_skills()
    assert result.success
    assert result.skipped == 1


def test_bulk_agents_without_directory(offline_syncer, paths):
    paths.global_agents_dir.rmdir()
    result = offline_syncer.sync_all_global_agents()
    assert not result.success
    assert result.synced == result.failed == 0
    assert result.message == "No global agents directory found"


def test_bulk_agents_only_markdown(offline_syncer, paths, mock_gateway):
    (paths.global_agents_dir / "a.md").write_text("a")
    (paths.global_agents_dir / "notes.txt").write_text("n")
    result = offline_syncer.sync_all_global_agents()
    assert result.synced == 1
    assert [d.name for d in result.details] == ["a"]


# Propagation


def test_propagate_stops_when_push_fails(offline_syncer, workspaces, mock_gateway):
    w1, w2 = workspaces
    (w1 / "CLAUDE-GLOBAL.md").write_text("# R\n")
    mock_gateway.sync_file.side_effect = GitCommandError(["push"], 1, "fatal: Authentication failed")

    result = offline_syncer.propagate_shared_change(w1)

    assert not result.success
    assert [(s.name, s.success) for s in result.steps] == [("regenerate", True), ("push", False)]
    assert (w1 / "CLAUDE.md").read_text() == "# R\n"
    assert not (w2 / "CLAUDE-GLOBAL.md").exists()


def test_propagate_to_workspaces_requires_canonical_file(offline_syncer, workspaces):
    with pytest.raises(NotFoundError):
        offline_syncer.propagate_shared_to_workspaces()


def test_propagate_to_workspaces_excludes_source(offline_syncer, workspaces, mock_gateway):
    w1, w2 = workspaces
    (mock_gateway.repo_path / "CLAUDE.md").write_text("# Canonical\n")

    results = offline_syncer.propagate_shared_to_workspaces(exclude=w1)

    assert [r.workspace for r in results] == ["w2"]
    assert (w2 / "CLAUDE-GLOBAL.md").read_text() == "# Canonical\n"
    assert (w2 / "CLAUDE.md").read_text() == "# Canonical\n"
    assert not (w1 / "CLAUDE-GLOBAL.md").exists()

    again = offline_syncer.propagate_shared_to_workspaces(exclude=w1)
    assert not again[0].written


def test_pull_and_propagate_copies_everything(offline_syncer, workspaces, paths, mock_gateway):
    repo = mock_gateway.repo_path
    (repo / "CLAUDE.md").write_text("# Canonical\n")
    (repo / "skills" / "tidy").mkdir(parents=True)
    (repo / "skills" / ".gitkeep").touch()
    (repo / "skills" / "tidy" / "SKILL.md").write_text("# Tidy\n")
    (repo / "agents").mkdir()
    (repo / "agents" / "reviewer.md").write_text("# Reviewer\n")
    (workspaces[0] / "CLAUDE-PROJECT.md").write_text("local\n")

    result = offline_syncer.pull_and_propagate()

    mock_gateway.pull.assert_called_once()
    assert result.success
    assert len(result.workspaces) == 2
    assert (workspaces[0] / "CLAUDE.md").read_text() == "# Canonical" + MERGE_SEPARATOR + "local\n"
    assert (paths.global_skills_dir / "tidy" / "SKILL.md").read_text() == "# Tidy\n"
    assert not (paths.global_skills_dir / ".gitkeep").exists()
    assert (paths.global_agents_dir / "reviewer.md").read_text() == "# Reviewer\n"
    assert result.skills_written == ["tidy/SKILL.md"]
    assert result.agents_written == ["reviewer.md"]


def test_pull_failure_propagates(offline_syncer, mock_gateway, workspaces):
    mock_gateway.pull.side_effect = GitCommandError(["pull"], 1, "fatal: refusing to merge unrelated histories")
    with pytest.raises(GitCommandError):
        offline_syncer.pull_and_propagate()
    assert not (workspaces[0] / "CLAUDE-GLOBAL.md").exists()


def test_bulk_skill_sync_follows_symlinked_skill_directory(offline_syncer, paths, mock_gateway, tmp_path):
    linked = tmp_path / "dotfiles" / "linked"
    linked.mkdir(parents=True)
    (linked / "SKILL.md").write_text("# Linked\n")
    (paths.global_skills_dir / "linked").symlink_to(linked, target_is_directory=True)
    make_skill(paths, "zz-plain")

    result = offline_syncer.sync_all_global_skills()

    assert result.synced == 2
    assert result.failed == 0
    targets = [c.args[1] for c in mock_gateway.sync_file.call_args_list]
    assert targets == ["skills/linked/SKILL.md", "skills/zz-plain/SKILL.md"]


def test_bulk_skill_sync_records_unexpected_errors(offline_syncer, paths, mock_gateway):
    make_skill(paths, "broken")
    make_skill(paths, "tidy")

    def push(source, target, message):
        if source.parent.name == "broken":
            raise ValueError("unexpected")
        return PushResult(pushed=True, message="ok")

    mock_gateway.sync_file.side_effect = push
    result = offline_syncer.sync_all_global_skills()

    assert result.synced == 1
    assert result.failed == 1
    assert {d.name: d.status for d in result.details} == {"broken": "failed", "tidy": "synced"}
