"""Git access for the shared repository clone."""

from .gateway import PushResult, RemoveResult, RepositoryGateway
from .manager import CommitInfo, GitManager, RepositoryStatus
from .retry import RetryPolicy, is_transient_error, retry_with_backoff

__all__ = [
    "CommitInfo",
    "GitManager",
    "PushResult",
    "RemoveResult",
    "RepositoryGateway",
    "RepositoryStatus",
    "RetryPolicy",
    "is_transient_error",
    "retry_with_backoff",
]
