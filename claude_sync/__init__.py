"""
claude-sync - Keep Claude rules, skills and agents in sync across machines
"""

from claude_sync.errors import ClaudeSyncError
from claude_sync.merge import merge_content
from claude_sync.syncer import Syncer

__version__ = "0.1.0"
__all__ = [
    "ClaudeSyncError",
    "Syncer",
    "merge_content",
]
