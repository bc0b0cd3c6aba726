# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Tuple

DEFAULT_PROFILES: Tuple[str, ...] = ("linux-x86_64", "linux-armv8")


def branch_from_ref(ref: Optional[str]) -> Optional[str]:
    """refs/heads/dependabot/some/more -> dependabot/some/more"""
    if not ref:
        return None
    parts = ref.split("/")
    if len(parts) > 2 and parts[0] == "refs":
        return "/".join(parts[2:])
    return ref


@dataclass(frozen=True)
class Settings:
    """
    Everything the engine reads from the process environment.

    Built once at the CLI boundary and passed down explicitly, so the core
    never touches os.environ.
    """
    ref: Optional[str] = None
    sha: Optional[str] = None
    api_url: str = "https://api.github.com"
    config_name: str = "devops.yml"
    image_base: str = "aivero/conan:"
    command_image: str = "node12"
    docker_registry: str = "ghcr.io/aivero"
    arguments: str = ""
    default_profiles: Tuple[str, ...] = DEFAULT_PROFILES

    # Conan remotes, expanded by the runner from its own environment
    repo_all: str = "$CONAN_REPO_ALL"
    repo_internal: str = "$CONAN_REPO_INTERNAL"
    repo_public: str = "$CONAN_REPO_PUBLIC"

    @property
    def branch(self) -> Optional[str]:
        return branch_from_ref(self.ref)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "Settings":
        env = os.environ if environ is None else environ
        settings = cls(
            ref=env.get("GITHUB_REF"),
            sha=env.get("GITHUB_SHA"),
            api_url=env.get("GITHUB_API_URL", cls.api_url),
            config_name=env.get("MATRIXCI_CONFIG_NAME", cls.config_name),
            image_base=env.get("MATRIXCI_IMAGE_BASE", cls.image_base),
            command_image=env.get("MATRIXCI_COMMAND_IMAGE", cls.command_image),
            docker_registry=env.get("MATRIXCI_DOCKER_REGISTRY", cls.docker_registry),
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(settings, **overrides)
