# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class CIError(Exception):
    """
    Structured error with enough context for:
      - clean CLI output
      - pointing at the path / instance / profile that broke
    """
    kind: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ParseError(CIError):
    """Malformed configuration file."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            kind="parse_error",
            message=f"Could not parse '{path}': {reason}",
            details={"path": path},
        )


class ModeDetectionError(CIError):
    """No buildable marker found in an instance folder."""

    def __init__(self, folder: str, name: str | None = None):
        details = {"folder": folder}
        if name:
            details["instance"] = name
        super().__init__(
            kind="mode_detection",
            message=f"Could not detect mode for folder: {folder}",
            details=details,
        )


class UnsupportedPlatformError(CIError):
    def __init__(self, profile: str, reason: str, instance: str | None = None):
        details = {"profile": profile}
        if instance:
            details["instance"] = instance
        super().__init__(
            kind="unsupported_platform",
            message=reason,
            details=details,
        )


class RepositoryRoutingError(CIError):
    """Upload repository cannot be chosen (no license declaration)."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            kind="repository_routing",
            message=f"{reason} in '{path}'",
            details={"path": path},
        )


class DispatchError(CIError):
    def __init__(self, context: str, reason: str):
        super().__init__(
            kind="dispatch_failed",
            message=f"Dispatch of '{context}' failed: {reason}",
            details={"context": context},
        )


class MissingBranchError(CIError):
    """A branch reference is rendered but no branch is known (detached HEAD)."""

    def __init__(self, instance: str, step: str):
        super().__init__(
            kind="missing_branch",
            message=f"No branch known for '{instance}', cannot {step}. Set GITHUB_REF or check out a branch.",
            details={"instance": instance},
        )
