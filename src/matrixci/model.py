# model.py
from __future__ import annotations

import json
import re
import shlex
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .hashing import content_hash

SHA_VERSION = re.compile(r"^[0-9a-f]{40}$")

# Characters that never need quoting in a rendered command line. `$` stays
# unquoted so the runner expands $CONAN_* credentials from its environment.
_SAFE_ARG = re.compile(r"^[\w@%+=:,./$-]+$")


class Mode(str, Enum):
    """How an instance is built."""
    PACKAGE = "conan"
    CONTAINER = "docker"
    COMMAND = "command"
    INSTALL_TARBALL = "conan-install-tarball"
    INSTALL_SCRIPT = "conan-install-script"


def is_sha_version(version: Optional[str]) -> bool:
    return bool(version) and SHA_VERSION.match(version) is not None


@dataclass(frozen=True)
class Command:
    """
    One command line kept as executable + args until it is rendered into
    a dispatch payload.

    `verbatim` commands are shell lines taken as-is from a config file.
    """
    executable: str
    args: Tuple[str, ...] = ()
    verbatim: bool = False

    @classmethod
    def of(cls, executable: str, *args: str) -> "Command":
        return cls(executable=executable, args=tuple(args))

    @classmethod
    def line(cls, text: str) -> "Command":
        return cls(executable=text, verbatim=True)

    def render(self) -> str:
        if self.verbatim:
            return self.executable
        parts = [self.executable, *self.args]
        return " ".join(p if _SAFE_ARG.match(p) else shlex.quote(p) for p in parts)


@dataclass(frozen=True)
class Commands:
    pre: Tuple[Command, ...] = ()
    main: Tuple[Command, ...] = ()
    post: Tuple[Command, ...] = ()

    def rendered(self) -> Dict[str, List[str]]:
        return {
            "pre": [c.render() for c in self.pre],
            "main": [c.render() for c in self.main],
            "post": [c.render() for c in self.post],
        }


@dataclass(frozen=True)
class DockerConfig:
    tag: Optional[str] = None
    platform: Optional[str] = None
    dockerfile: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {"tag": self.tag, "platform": self.platform, "dockerfile": self.dockerfile}


@dataclass(frozen=True)
class Instance:
    """
    One buildable unit declared in a config file, after defaults are applied.

    Created by ConfigStore only; never mutated afterwards.
    """
    name: str
    version: Optional[str]
    branch: Optional[str]
    commit: Optional[str]
    folder: str
    mode: Mode
    profiles: Tuple[str, ...] = ()
    settings: Dict[str, Any] = field(default_factory=dict)
    options: Dict[str, Any] = field(default_factory=dict)
    cmds_pre: Tuple[str, ...] = ()
    cmds: Optional[Tuple[str, ...]] = None
    cmds_post: Tuple[str, ...] = ()
    tags: Optional[Tuple[str, ...]] = None
    image: Optional[str] = None
    bootstrap: bool = False
    debug_pkg: bool = False
    docker: DockerConfig = field(default_factory=DockerConfig)
    conan_install: Tuple[str, ...] = ()
    subdir: str = ""
    script: Tuple[str, ...] = ()
    # unrecognized keys: hashed, never interpreted
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        """Config-file shaped record (camelCase keys) of every field."""
        record: Dict[str, Any] = dict(self.extra)
        record.update(
            {
                "name": self.name,
                "version": self.version,
                "branch": self.branch,
                "commit": self.commit,
                "folder": self.folder,
                "mode": self.mode.value,
                "profiles": list(self.profiles),
                "settings": dict(self.settings),
                "options": dict(self.options),
                "cmdsPre": list(self.cmds_pre),
                "cmds": list(self.cmds) if self.cmds is not None else None,
                "cmdsPost": list(self.cmds_post),
                "tags": list(self.tags) if self.tags is not None else None,
                "image": self.image,
                "bootstrap": self.bootstrap,
                "debugPkg": self.debug_pkg,
                "docker": self.docker.to_record(),
                "conanInstall": list(self.conan_install),
                "subdir": self.subdir,
                "script": list(self.script),
            }
        )
        return record

    @property
    def content_hash(self) -> str:
        return content_hash(self.to_record())

    @property
    def label(self) -> str:
        return f"{self.name}/{self.version}"


@dataclass(frozen=True)
class Job:
    """
    One (instance, profile) build unit, ready to dispatch.

    `context` is the human readable identity plus the content hash; it is
    used as both the dispatch event type and the commit status context.
    """
    instance: Optional[Instance]
    profile: Optional[str]
    image: str
    tags: Tuple[str, ...]
    commands: Commands
    commit: str
    branch: Optional[str] = None
    component: Optional[str] = None
    platform: str = ""
    repository: Optional[str] = None
    docker: Optional[DockerConfig] = None
    content_hash: str = ""
    context: str = ""
    event_type: str = ""

    def __post_init__(self) -> None:
        if not self.event_type and self.context:
            object.__setattr__(self, "event_type", self.context)

    def payload_record(self, with_context: bool = True) -> Dict[str, Any]:
        """
        The client payload sent with the dispatch event.

        Command lists are JSON encoded strings, which is what the runner
        action takes as input.
        """
        record: Dict[str, Any] = {
            "image": self.image,
            "tags": list(self.tags),
            "commit": self.commit,
            "cmds": {k: json.dumps(v) for k, v in self.commands.rendered().items()},
            "component": self.component,
            "branch": self.branch,
            "profile": self.profile,
            "platform": self.platform or None,
            "docker": self.docker.to_record() if self.docker is not None else None,
        }
        if with_context:
            record["context"] = self.context
        return {k: v for k, v in record.items() if v is not None}


class ChangeSet:
    """
    Insertion-ordered set of instances, deduplicated by content hash of the
    full normalized record. Safe to add to from several threads.
    """

    def __init__(self) -> None:
        self._instances: List[Instance] = []
        self._hashes: set[str] = set()
        self._lock = threading.Lock()

    def add(self, instance: Instance) -> bool:
        """Returns True if the instance was new to this set."""
        digest = instance.content_hash
        with self._lock:
            if digest in self._hashes:
                return False
            self._hashes.add(digest)
            self._instances.append(instance)
            return True

    def __contains__(self, instance: object) -> bool:
        if not isinstance(instance, Instance):
            return False
        return instance.content_hash in self._hashes

    def __iter__(self) -> Iterator[Instance]:
        return iter(list(self._instances))

    def __len__(self) -> int:
        return len(self._instances)

    def names(self) -> List[str]:
        return [i.name for i in self._instances]
