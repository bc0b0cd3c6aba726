# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import posixpath
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol

_BRACE_RENAME = re.compile(r"\{([^{}]*) => [^{}]*\}")


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["diff", "--numstat", "HEAD", "HEAD^"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.
    """
    # If git exits with a non-zero status, CalledProcessError is raised,
    # which is usually desirable for CI / tooling.
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str] = None) -> Optional[str]:
    """Full ref of the checked out branch (refs/heads/...), None when detached."""
    try:
        return _git(["symbolic-ref", "-q", "HEAD"], cwd=cwd) or None
    except subprocess.CalledProcessError:
        return None


def normalize_rename(path: str) -> str:
    """
    Turn git's rename notation into the path on the left side of the diff.

        recipes/{old => new}/conanfile.py  ->  recipes/old/conanfile.py
        old/devops.yml => new/devops.yml   ->  old/devops.yml
    """
    if " => " not in path:
        return path
    if _BRACE_RENAME.search(path):
        path = _BRACE_RENAME.sub(lambda m: m.group(1), path)
        # "{ => sub}" leaves an empty component behind
        return posixpath.normpath(path)
    return path.split(" => ", 1)[0]


# ----------------------------------------------------------------------
# Backend interface
# ----------------------------------------------------------------------

class RevisionBackend(Protocol):
    """What the engine needs from version control."""

    def list_changed_files(self, rev_a: str, rev_b: str) -> List[str]: ...

    def read_file_at_revision(self, rev: str, path: str) -> str: ...

    def list_tracked_files(self, rev: str) -> List[str]: ...

    def list_working_files(self) -> List[str]: ...


class GitBackend:
    """RevisionBackend over the git CLI, run inside `root`."""

    def __init__(self, root: str | Path = "."):
        self.root = Path(root)

    def _run(self, args: list[str]) -> str:
        return _git(args, cwd=str(self.root))

    def list_changed_files(self, rev_a: str, rev_b: str) -> List[str]:
        """
        Paths changed between two revisions, rename notation included.

        `--numstat` keeps git's `{old => new}` rename form, which
        RevisionDiff resolves to the rev_a side.
        """
        out = self._run(["diff", "--numstat", rev_a, rev_b])
        if not out:
            return []
        files: List[str] = []
        for line in out.splitlines():
            # added<TAB>deleted<TAB>path
            parts = line.split("\t", 2)
            if len(parts) == 3 and parts[2]:
                files.append(parts[2])
        return files

    def read_file_at_revision(self, rev: str, path: str) -> str:
        return self._run(["show", f"{rev}:{path}"])

    def list_tracked_files(self, rev: str) -> List[str]:
        out = self._run(["ls-tree", "-r", "--name-only", rev])
        return out.splitlines() if out else []

    def list_working_files(self) -> List[str]:
        out = self._run(["ls-files", "--recurse-submodules"])
        return out.splitlines() if out else []


# ----------------------------------------------------------------------
# RevisionDiff
# ----------------------------------------------------------------------

class RevisionDiff:
    """
    Changed files between two revisions, limited to paths that still exist
    in the working tree (deletions are not buildable).
    """

    def __init__(self, backend: RevisionBackend, root: str | Path = "."):
        self.backend = backend
        self.root = Path(root)

    def diff(self, rev_a: str, rev_b: str) -> List[str]:
        files: List[str] = []
        seen = set()
        for raw in self.backend.list_changed_files(rev_a, rev_b):
            path = normalize_rename(raw)
            if path in seen:
                continue
            seen.add(path)
            if not (self.root / path).exists():
                continue
            files.append(path)
        return files
