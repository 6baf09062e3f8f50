"""
Change Classification and Routing
=================================

Every filesystem change goes through the same three stages:

1. classify: map the path to a ``FileCategory``
2. act: run the matching ``Syncer`` operation
3. report: return a ``ChangeOutcome`` and log it

Each stage is a separate method so it can be exercised on its own.
"""

from enum import Enum
from pathlib import Path, PurePath

from pydantic import BaseModel

from claude_sync.config import SyncRules
from claude_sync.errors import enrich_error
from claude_sync.paths import AGENT_SUFFIX, SKILL_MANIFEST, SyncPaths, path_starts_with, same_path
from claude_sync.syncer import Syncer
from claude_sync.utils.logging import get_logger

logger = get_logger(__name__)


class FileCategory(str, Enum):
    SHARED_RULE = "shared_rule"
    PRIVATE_RULE = "private_rule"
    GLOBAL_SKILL = "global_skill"
    LOCAL_SKILL = "local_skill"
    GLOBAL_AGENT = "global_agent"
    LOCAL_AGENT = "local_agent"
    UNRELATED = "unrelated"


RULE_CATEGORIES = (FileCategory.SHARED_RULE, FileCategory.PRIVATE_RULE)


class ChangeKind(str, Enum):
    ADD = "add"
    CHANGE = "change"
    REMOVE = "remove"


class ChangeEvent(BaseModel):
    path: Path
    kind: ChangeKind


class ChangeOutcome(BaseModel):
    """Report of how one change event was handled."""

    path: Path
    kind: ChangeKind
    category: FileCategory
    action: str
    success: bool = True
    message: str = ""
    suggestion: str | None = None
    details: list[str] = []


def _has_agents_segment(path: PurePath) -> bool:
    parts = path.parts
    return any(parts[i] == ".claude" and parts[i + 1] == "agents" for i in range(len(parts) - 1))


class FileClassifier:
    """Maps a path to the category that decides how it is synced.

    Classification is total: every path gets exactly one category, checked in
    a fixed order (skills, agents, shared rules, private rules, unrelated).
    """

    def __init__(self, paths: SyncPaths, sync_rules: SyncRules):
        self.paths = paths
        self.sync_rules = sync_rules

    def classify(self, path: str | Path) -> FileCategory:
        path = Path(path)
        name = path.name

        if name.lower() == SKILL_MANIFEST:
            if path_starts_with(path, self.paths.global_skills_dir):
                return FileCategory.GLOBAL_SKILL
            return FileCategory.LOCAL_SKILL

        in_global_agents = path_starts_with(path, self.paths.global_agents_dir)
        if name.endswith(AGENT_SUFFIX) and (in_global_agents or _has_agents_segment(path)):
            return FileCategory.GLOBAL_AGENT if in_global_agents else FileCategory.LOCAL_AGENT

        if name == self.sync_rules.global_file:
            return FileCategory.SHARED_RULE
        if name == self.sync_rules.project_file:
            return FileCategory.PRIVATE_RULE
        return FileCategory.UNRELATED


class ChangeRouter:
    """Dispatches classified changes to the propagation coordinator."""

    def __init__(self, classifier: FileClassifier, syncer: Syncer):
        self.classifier = classifier
        self.syncer = syncer

    def route(self, event: ChangeEvent) -> ChangeOutcome:
        """Classify, act and report. Never raises."""
        category = self.classifier.classify(event.path)
        try:
            outcome = self.act(event, category)
        except Exception as error:
            message, suggestion = enrich_error(error)
            outcome = ChangeOutcome(
                path=event.path,
                kind=event.kind,
                category=category,
                action="error",
                success=False,
                message=message,
                suggestion=suggestion,
            )
        self.report(outcome)
        return outcome

    def act(self, event: ChangeEvent, category: FileCategory) -> ChangeOutcome:
        path, kind = event.path, event.kind

        def outcome(action: str, success: bool = True, message: str = "", details=None) -> ChangeOutcome:
            return ChangeOutcome(
                path=path,
                kind=kind,
                category=category,
                action=action,
                success=success,
                message=message,
                details=details or [],
            )

        if category in RULE_CATEGORIES and not self._is_workspace(path.parent):
            return outcome("ignored", True, "Not in a registered workspace")

        if category is FileCategory.SHARED_RULE:
            if kind is ChangeKind.REMOVE:
                merged = self.syncer.sync_workspace(path.parent)
                return outcome("regenerate", merged.success, merged.message)
            result = self.syncer.propagate_shared_change(path.parent)
            details = [f"{step.name}: {step.message}" for step in result.steps]
            return outcome("propagate", result.success, result.message, details)

        if category is FileCategory.PRIVATE_RULE:
            merged = self.syncer.sync_workspace(path.parent)
            message = merged.message
            if merged.success:
                message = f"{message} (project-specific rules are not pushed)"
            return outcome("regenerate", merged.success, message)

        if category is FileCategory.GLOBAL_SKILL:
            if kind is ChangeKind.REMOVE:
                removed = self.syncer.remove_skill(path)
                return outcome("remove", True, removed.message)
            pushed = self.syncer.sync_skill(path)
            return outcome("push", True, pushed.message)

        if category is FileCategory.GLOBAL_AGENT:
            if kind is ChangeKind.REMOVE:
                removed = self.syncer.remove_agent(path)
                return outcome("remove", True, removed.message)
            pushed = self.syncer.sync_agent(path)
            return outcome("push", True, pushed.message)

        if category in (FileCategory.LOCAL_SKILL, FileCategory.LOCAL_AGENT):
            return outcome("none", True, "Project-specific resource, not synced to the repository")

        return outcome("ignored", True, "Not a synced file")

    def _is_workspace(self, directory: Path) -> bool:
        return any(same_path(directory, w.path) for w in self.syncer.config.list_workspaces())

    def report(self, outcome: ChangeOutcome) -> None:
        label = f"{outcome.kind.value} {outcome.path.name} ({outcome.category.value})"
        if not outcome.success:
            logger.error(f"✗ {label}: {outcome.message}")
            if outcome.suggestion:
                logger.info(outcome.suggestion)
        elif outcome.action == "ignored":
            logger.debug(f"Ignored {label}")
        else:
            logger.info(f"✓ {label}: {outcome.message}")
        for detail in outcome.details:
            logger.debug(f"  {detail}")
