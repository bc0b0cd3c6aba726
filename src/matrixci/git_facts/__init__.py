from .git import GitBackend, RevisionBackend, RevisionDiff, normalize_rename

__all__ = ["GitBackend", "RevisionBackend", "RevisionDiff", "normalize_rename"]
