"""
Propagation Coordinator
=======================

Moves rule files, skills and agents between workspaces, the global roots and
the shared repository clone. Workspace-local work (merging rules into the
target file) never touches the repository; everything that does goes through
the ``RepositoryGateway`` so it is locked and retried.
"""

from datetime import date
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from claude_sync.config import ConfigManager, SyncRules
from claude_sync.errors import ClaudeSyncError, ConfigError, NotFoundError
from claude_sync.git.gateway import PushResult, RemoveResult, RepositoryGateway
from claude_sync.merge import merge_content
from claude_sync.paths import (
    AGENT_SUFFIX,
    CANONICAL_RULES_FILE,
    REPO_AGENTS_DIR,
    REPO_SKILLS_DIR,
    SKILL_MANIFEST,
    SyncPaths,
    path_starts_with,
    relative_to_root,
)
from claude_sync.utils.file_ops import copy_if_changed, read_text_or_empty, write_if_changed
from claude_sync.utils.logging import get_logger

logger = get_logger(__name__)

REPO_PLACEHOLDER = ".gitkeep"


class WorkspaceResult(BaseModel):
    """Outcome of regenerating or updating one workspace."""

    workspace: str
    success: bool
    message: str
    has_shared: bool = False
    has_private: bool = False
    written: bool = False


class ItemOutcome(BaseModel):
    name: str
    status: Literal["synced", "skipped", "failed"]
    message: str


class BulkSyncResult(BaseModel):
    """Per-item outcome of pushing every global skill or agent."""

    success: bool = True
    message: str = ""
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    details: list[ItemOutcome] = Field(default_factory=list)

    def record(self, outcome: ItemOutcome) -> None:
        self.details.append(outcome)
        if outcome.status == "synced":
            self.synced += 1
        elif outcome.status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
            self.success = False


class PropagationStep(BaseModel):
    name: str
    success: bool
    message: str


class PropagationResult(BaseModel):
    """Ordered steps of one shared-rules propagation."""

    steps: list[PropagationStep] = Field(default_factory=list)
    workspaces: list[WorkspaceResult] = Field(default_factory=list)
    success: bool = True
    message: str = ""

    def add(self, name: str, success: bool, message: str) -> bool:
        self.steps.append(PropagationStep(name=name, success=success, message=message))
        if not success:
            self.success = False
            self.message = f"{name} failed: {message}"
        return success


class PullResult(BaseModel):
    """What a pull brought into the workspaces and global roots."""

    success: bool = True
    workspaces: list[WorkspaceResult] = Field(default_factory=list)
    skills_written: list[str] = Field(default_factory=list)
    agents_written: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def fail(self, message: str) -> None:
        self.success = False
        self.errors.append(message)


def _today() -> str:
    return date.today().isoformat()


class Syncer:
    """Coordinates merges, pushes and fan-out between all sync locations."""

    def __init__(self, config: ConfigManager, paths: SyncPaths, gateway: RepositoryGateway):
        self.config = config
        self.paths = paths
        self.gateway = gateway

    @property
    def rules(self) -> SyncRules:
        return self.config.sync_rules

    @property
    def canonical_file(self) -> Path:
        return self.gateway.repo_path / CANONICAL_RULES_FILE

    # Workspace-local rules

    def sync_workspace(self, workspace_path: str | Path) -> WorkspaceResult:
        """Regenerate a workspace's merged rules file.

        Args:
            workspace_path: Root directory of the workspace

        Returns:
            WorkspaceResult: Unsuccessful when neither rules file exists

        Raises:
            NotFoundError: If the workspace directory does not exist
        """
        workspace = Path(workspace_path)
        if not workspace.is_dir():
            raise NotFoundError(f"Workspace path does not exist: {workspace}")

        rules = self.rules
        shared_file = workspace / rules.global_file
        private_file = workspace / rules.project_file
        has_shared, has_private = shared_file.is_file(), private_file.is_file()
        if not has_shared and not has_private:
            return WorkspaceResult(
                workspace=workspace.name,
                success=False,
                message=f"Neither {rules.global_file} nor {rules.project_file} found in workspace",
            )

        merged = merge_content(read_text_or_empty(shared_file), read_text_or_empty(private_file))
        written = write_if_changed(workspace / rules.target_file, merged)
        if written:
            logger.info(f"Regenerated {rules.target_file} in {workspace}")
        return WorkspaceResult(
            workspace=workspace.name,
            success=True,
            message=f"Successfully synced {rules.target_file}",
            has_shared=has_shared,
            has_private=has_private,
            written=written,
        )

    def sync_all(self) -> list[WorkspaceResult]:
        """Regenerate every workspace and publish the first shared-rules file.

        Raises:
            ConfigError: If no workspaces are registered
        """
        workspaces = self.config.list_workspaces()
        if not workspaces:
            raise ConfigError('No workspaces registered. Use "claude-sync add <path>" to add workspaces.')

        results = []
        for workspace in workspaces:
            try:
                result = self.sync_workspace(workspace.path)
                results.append(result.model_copy(update={"workspace": workspace.name}))
            except (ClaudeSyncError, OSError) as error:
                logger.error(f"Failed to sync workspace {workspace.path}: {error}")
                results.append(WorkspaceResult(workspace=workspace.name, success=False, message=str(error)))

        for workspace in workspaces:
            shared_file = workspace.path / self.rules.global_file
            if not shared_file.is_file():
                continue
            try:
                pushed = self.sync_shared_to_repo(shared_file)
                results.append(WorkspaceResult(workspace="repository", success=True, message=pushed.message))
            except (ClaudeSyncError, OSError) as error:
                logger.error(f"Failed to push shared rules: {error}")
                results.append(WorkspaceResult(workspace="repository", success=False, message=str(error)))
            break

        self.config.mark_synced()
        return results

    # Shared rules

    def sync_shared_to_repo(self, shared_file: str | Path) -> PushResult:
        """Publish a shared-rules file under the repository's canonical name."""
        shared_file = Path(shared_file)
        if not shared_file.is_file():
            raise NotFoundError(f"{self.rules.global_file} not found: {shared_file}")
        return self.gateway.sync_file(shared_file, CANONICAL_RULES_FILE, f"Update global rules - {_today()}")

    def propagate_shared_change(self, workspace_path: str | Path) -> PropagationResult:
        """Run the full flow after a workspace's shared rules changed.

        Steps, in order: regenerate the workspace, push its shared file, read
        the canonical file back from the clone, write it into every other
        workspace. A failing step stops the flow; earlier steps stay applied.
        """
        workspace = Path(workspace_path)
        result = PropagationResult()

        try:
            local = self.sync_workspace(workspace)
        except (ClaudeSyncError, OSError) as error:
            result.add("regenerate", False, str(error))
            return result
        if not result.add("regenerate", local.success, local.message):
            return result
        result.workspaces.append(local)

        try:
            pushed = self.sync_shared_to_repo(workspace / self.rules.global_file)
        except (ClaudeSyncError, OSError) as error:
            result.add("push", False, str(error))
            return result
        result.add("push", True, pushed.message)

        canonical = self.gateway.read_file(CANONICAL_RULES_FILE)
        if not result.add(
            "read",
            canonical is not None,
            f"Read {CANONICAL_RULES_FILE} from the repository" if canonical is not None
            else f"{CANONICAL_RULES_FILE} not found in the repository",
        ):
            return result

        fanned_out = self.propagate_shared_to_workspaces(exclude=workspace)
        result.workspaces.extend(fanned_out)
        failures = [r for r in fanned_out if not r.success]
        result.add(
            "fan-out",
            not failures,
            f"Propagated to {len(fanned_out) - len(failures)} of {len(fanned_out)} workspace(s)",
        )
        if result.success:
            result.message = "Shared rules propagated"
        return result

    def propagate_shared_to_workspaces(self, exclude: str | Path | None = None) -> list[WorkspaceResult]:
        """Copy the canonical rules file into each workspace and re-merge.

        Raises:
            NotFoundError: If the clone has no canonical rules file
        """
        if not self.canonical_file.is_file():
            raise NotFoundError(f"{CANONICAL_RULES_FILE} not found in the shared repository")

        excluded = Path(exclude).resolve() if exclude is not None else None
        results = []
        for workspace in self.config.list_workspaces():
            if excluded is not None and workspace.path.resolve() == excluded:
                continue
            try:
                copied = copy_if_changed(self.canonical_file, workspace.path / self.rules.global_file)
                merged = self.sync_workspace(workspace.path)
                results.append(
                    WorkspaceResult(
                        workspace=workspace.name,
                        success=merged.success,
                        message="Propagated shared rules" if copied else "Shared rules already up to date",
                        has_shared=True,
                        has_private=merged.has_private,
                        written=copied or merged.written,
                    )
                )
            except (ClaudeSyncError, OSError) as error:
                logger.error(f"Failed to propagate shared rules to {workspace.path}: {error}")
                results.append(WorkspaceResult(workspace=workspace.name, success=False, message=str(error)))
        return results

    # Skills and agents

    def _skill_target(self, skill_file: Path) -> str:
        relative = relative_to_root(skill_file, self.paths.global_skills_dir)
        if relative is None:
            raise NotFoundError(f"Skill is not under {self.paths.global_skills_dir}: {skill_file}")
        return f"{REPO_SKILLS_DIR}/{relative.as_posix()}"

    def _agent_target(self, agent_file: Path) -> str:
        return f"{REPO_AGENTS_DIR}/{agent_file.name}"

    def sync_skill(self, skill_file: str | Path) -> PushResult:
        """Push a global skill manifest to ``skills/<relative path>``."""
        skill_file = Path(skill_file)
        if not skill_file.is_file():
            raise NotFoundError(f"Skill file not found: {skill_file}")
        if not path_starts_with(skill_file, self.paths.global_skills_dir):
            return PushResult(pushed=False, message="Skill is project-specific, not synced to the repository")

        name = skill_file.parent.name
        return self.gateway.sync_file(skill_file, self._skill_target(skill_file), f"Update skill: {name} - {_today()}")

    def sync_agent(self, agent_file: str | Path) -> PushResult:
        """Push a global agent definition to ``agents/<file>``."""
        agent_file = Path(agent_file)
        if not agent_file.is_file():
            raise NotFoundError(f"Agent file not found: {agent_file}")
        if not path_starts_with(agent_file, self.paths.global_agents_dir):
            return PushResult(pushed=False, message="Agent is project-specific, not synced to the repository")

        return self.gateway.sync_file(
            agent_file, self._agent_target(agent_file), f"Update agent: {agent_file.stem} - {_today()}"
        )

    def remove_skill(self, skill_file: str | Path) -> RemoveResult:
        skill_file = Path(skill_file)
        if not path_starts_with(skill_file, self.paths.global_skills_dir):
            return RemoveResult(removed=False, message="Skill is project-specific, not synced to the repository")
        name = skill_file.parent.name
        return self.gateway.stage_or_remove(self._skill_target(skill_file), f"Remove skill: {name} - {_today()}")

    def remove_agent(self, agent_file: str | Path) -> RemoveResult:
        agent_file = Path(agent_file)
        if not path_starts_with(agent_file, self.paths.global_agents_dir):
            return RemoveResult(removed=False, message="Agent is project-specific, not synced to the repository")
        return self.gateway.stage_or_remove(
            self._agent_target(agent_file), f"Remove agent: {agent_file.stem} - {_today()}"
        )

    def sync_all_global_skills(self) -> BulkSyncResult:
        """Push the manifest of every skill directory under the global root."""
        root = self.paths.global_skills_dir
        if not root.is_dir():
            return BulkSyncResult(success=False, message="No global skills directory found")

        result = BulkSyncResult()
        for skill_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            manifests = sorted(f for f in skill_dir.iterdir() if f.is_file() and f.name.lower() == SKILL_MANIFEST)
            if not manifests:
                result.record(
                    ItemOutcome(name=skill_dir.name, status="skipped", message="No skill file found (SKILL.md or skill.md)")
                )
                continue
            result.record(self._bulk_item(skill_dir.name, self.sync_skill, manifests[0]))

        result.message = f"Synced {result.synced}, skipped {result.skipped}, failed {result.failed} skill(s)"
        return result

    def sync_all_global_agents(self) -> BulkSyncResult:
        """Push every ``*.md`` agent under the global agents root."""
        root = self.paths.global_agents_dir
        if not root.is_dir():
            return BulkSyncResult(success=False, message="No global agents directory found")

        result = BulkSyncResult()
        for agent_file in sorted(f for f in root.iterdir() if f.is_file() and f.name.endswith(AGENT_SUFFIX)):
            result.record(self._bulk_item(agent_file.stem, self.sync_agent, agent_file))

        result.message = f"Synced {result.synced}, skipped {result.skipped}, failed {result.failed} agent(s)"
        return result

    def _bulk_item(self, name: str, push, source: Path) -> ItemOutcome:
        try:
            pushed = push(source)
        except Exception as error:
            logger.error(f"Failed to sync {name}: {error}")
            return ItemOutcome(name=name, status="failed", message=str(error))
        if pushed.pushed:
            return ItemOutcome(name=name, status="synced", message="Successfully synced to the repository")
        return ItemOutcome(name=name, status="skipped", message=pushed.message)

    # Pull

    def pull_and_propagate(self) -> PullResult:
        """Pull once, then fan the clone's contents out to every local target.

        Raises:
            MergeConflictError, StashRecoveryError, TransientNetworkError: From the pull
        """
        self.gateway.pull()
        result = PullResult()

        if self.canonical_file.is_file():
            try:
                result.workspaces = self.propagate_shared_to_workspaces()
            except (ClaudeSyncError, OSError) as error:
                result.fail(f"Shared rules: {error}")
            for workspace in result.workspaces:
                if not workspace.success:
                    result.fail(f"{workspace.workspace}: {workspace.message}")
        else:
            logger.info(f"No {CANONICAL_RULES_FILE} in the shared repository yet")

        skills_source = self.gateway.repo_path / REPO_SKILLS_DIR
        if skills_source.is_dir():
            self.paths.global_skills_dir.mkdir(parents=True, exist_ok=True)
            for source in sorted(skills_source.rglob("*")):
                if not source.is_file() or source.name == REPO_PLACEHOLDER:
                    continue
                relative = source.relative_to(skills_source)
                try:
                    if copy_if_changed(source, self.paths.global_skills_dir / relative):
                        result.skills_written.append(relative.as_posix())
                except OSError as error:
                    result.fail(f"Skill {relative.as_posix()}: {error}")

        agents_source = self.gateway.repo_path / REPO_AGENTS_DIR
        if agents_source.is_dir():
            self.paths.global_agents_dir.mkdir(parents=True, exist_ok=True)
            for source in sorted(agents_source.glob(f"*{AGENT_SUFFIX}")):
                try:
                    if copy_if_changed(source, self.paths.global_agents_dir / source.name):
                        result.agents_written.append(source.name)
                except OSError as error:
                    result.fail(f"Agent {source.name}: {error}")

        logger.info(
            f"Pulled and propagated: {len(result.workspaces)} workspace(s), "
            f"{len(result.skills_written)} skill file(s), {len(result.agents_written)} agent(s)"
        )
        return result
