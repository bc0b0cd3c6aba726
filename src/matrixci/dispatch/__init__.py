from .api_client import APIError, GitHubClient
from .client import DispatchClient, DispatchReport, DispatchResult, split_repository
from .models import CommitStatus, DispatchEvent, Payload

__all__ = [
    "APIError",
    "GitHubClient",
    "DispatchClient",
    "DispatchReport",
    "DispatchResult",
    "split_repository",
    "CommitStatus",
    "DispatchEvent",
    "Payload",
]
