"""End-to-end flows through the detector, router, coordinator and a real git remote."""

from unittest.mock import MagicMock

import pytest

from claude_sync.file_monitor import ChangeDetector
from claude_sync.router import ChangeEvent, ChangeKind, ChangeRouter, FileCategory, FileClassifier


@pytest.fixture
def detector(config_manager, paths, syncer):
    router = ChangeRouter(FileClassifier(paths, config_manager.sync_rules), syncer)
    return ChangeDetector(config_manager, paths, router, syncer, debounce=0.01, observer_factory=MagicMock)


def test_shared_rule_edit_reaches_repository_and_other_workspaces(detector, workspaces, remote, remote_file):
    w1, w2 = workspaces
    (w1 / "CLAUDE-GLOBAL.md").write_text("# R")

    outcome = detector.process_event(ChangeEvent(path=w1 / "CLAUDE-GLOBAL.md", kind=ChangeKind.CHANGE))

    assert outcome.success, outcome.message
    assert outcome.category == FileCategory.SHARED_RULE
    assert (w1 / "CLAUDE.md").read_text().startswith("# R")
    assert remote_file(remote, "CLAUDE.md") == "# R"
    assert (w2 / "CLAUDE-GLOBAL.md").read_text() == "# R"
    assert (w2 / "CLAUDE.md").read_text() == "# R"


def test_fan_out_does_not_loop(detector, workspaces, remote, run_git):
    w1, w2 = workspaces
    (w1 / "CLAUDE-GLOBAL.md").write_text("# R")
    detector.process_event(ChangeEvent(path=w1 / "CLAUDE-GLOBAL.md", kind=ChangeKind.CHANGE))
    commits = run_git("rev-list", "--count", "main", cwd=remote)

    shared_mtime = (w1 / "CLAUDE-GLOBAL.md").stat().st_mtime_ns

    # The write into w2 comes back as an event; handling it must change nothing.
    outcome = detector.process_event(ChangeEvent(path=w2 / "CLAUDE-GLOBAL.md", kind=ChangeKind.CHANGE))

    assert outcome.success
    assert run_git("rev-list", "--count", "main", cwd=remote) == commits
    assert (w1 / "CLAUDE-GLOBAL.md").stat().st_mtime_ns == shared_mtime


def test_private_rule_edit_stays_local(detector, workspaces, remote, run_git):
    w1, w2 = workspaces
    commits = run_git("rev-list", "--count", "main", cwd=remote)
    (w1 / "CLAUDE-PROJECT.md").write_text("local")

    outcome = detector.process_event(ChangeEvent(path=w1 / "CLAUDE-PROJECT.md", kind=ChangeKind.CHANGE))

    assert outcome.success
    assert outcome.category == FileCategory.PRIVATE_RULE
    assert "local" in (w1 / "CLAUDE.md").read_text()
    assert run_git("rev-list", "--count", "main", cwd=remote) == commits
    assert "CLAUDE-PROJECT.md" not in run_git("ls-tree", "-r", "--name-only", "main", cwd=remote)
    assert not (w2 / "CLAUDE.md").exists()
    assert not (w2 / "CLAUDE-GLOBAL.md").exists()


def test_global_skill_is_swept_then_removed(detector, paths, workspaces, remote, remote_file):
    skill = paths.global_skills_dir / "tidy" / "SKILL.md"
    skill.parent.mkdir(parents=True)
    skill.write_text("# Tidy")

    skills, agents = detector.sweep()

    assert skills.synced == 1
    assert agents.synced == 0
    assert remote_file(remote, "skills/tidy/SKILL.md") == "# Tidy"

    skill.unlink()
    outcome = detector.process_event(ChangeEvent(path=skill, kind=ChangeKind.REMOVE))

    assert outcome.success
    assert outcome.action == "remove"
    assert remote_file(remote, "skills/tidy/SKILL.md") is None


def test_global_agent_add_is_pushed(detector, paths, workspaces, remote, remote_file):
    agent = paths.global_agents_dir / "reviewer.md"
    agent.write_text("# Reviewer")
    outcome = detector.process_event(ChangeEvent(path=agent, kind=ChangeKind.ADD))
    assert outcome.category == FileCategory.GLOBAL_AGENT
    assert remote_file(remote, "agents/reviewer.md") == "# Reviewer"


def test_pull_brings_another_machines_rules(syncer, workspaces, second_clone):
    (second_clone.repo_path / "CLAUDE.md").write_text("# Elsewhere\n")
    (second_clone.repo_path / "agents" / "helper.md").write_text("# Helper\n")
    second_clone.add_all()
    second_clone.commit("Update global rules")
    second_clone.push()

    result = syncer.pull_and_propagate()

    assert result.success
    for workspace in workspaces:
        assert (workspace / "CLAUDE-GLOBAL.md").read_text() == "# Elsewhere\n"
        assert (workspace / "CLAUDE.md").read_text() == "# Elsewhere\n"
    assert (syncer.paths.global_agents_dir / "helper.md").read_text() == "# Helper\n"


def test_start_sweeps_symlinked_skill(detector, paths, workspaces, remote, remote_file, tmp_path):
    linked = tmp_path / "dotfiles" / "linked"
    linked.mkdir(parents=True)
    (linked / "SKILL.md").write_text("# Linked")
    (paths.global_skills_dir / "linked").symlink_to(linked, target_is_directory=True)
    plain = paths.global_skills_dir / "zz-plain" / "SKILL.md"
    plain.parent.mkdir()
    plain.write_text("# Plain")

    detector.start()
    try:
        assert detector.is_running
        assert remote_file(remote, "skills/linked/SKILL.md") == "# Linked"
        assert remote_file(remote, "skills/zz-plain/SKILL.md") == "# Plain"
    finally:
        detector.stop()


def test_shared_rules_outside_workspaces_are_ignored(detector, paths, workspaces, remote, run_git):
    w1, w2 = workspaces
    (w1 / "CLAUDE-GLOBAL.md").write_text("# R")
    detector.process_event(ChangeEvent(path=w1 / "CLAUDE-GLOBAL.md", kind=ChangeKind.CHANGE))
    commits = run_git("rev-list", "--count", "main", cwd=remote)

    stray = paths.global_skills_dir / "notes" / "CLAUDE-GLOBAL.md"
    stray.parent.mkdir()
    stray.write_text("# scratch")
    outcome = detector.process_event(ChangeEvent(path=stray, kind=ChangeKind.CHANGE))

    assert outcome.success
    assert outcome.action == "ignored"
    assert not (stray.parent / "CLAUDE.md").exists()
    assert run_git("rev-list", "--count", "main", cwd=remote) == commits
    assert (w2 / "CLAUDE-GLOBAL.md").read_text() == "# R"


def test_private_rules_outside_workspaces_are_ignored(detector, workspaces):
    stray = workspaces[0] / ".claude" / "CLAUDE-PROJECT.md"
    stray.parent.mkdir()
    stray.write_text("local")
    outcome = detector.process_event(ChangeEvent(path=stray, kind=ChangeKind.CHANGE))
    assert outcome.action == "ignored"
    assert not (stray.parent / "CLAUDE.md").exists()
