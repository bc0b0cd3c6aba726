# modes.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Dict, Protocol

from .config import ConfigStore, is_under
from .dispatch.client import DispatchClient, DispatchReport
from .git_facts.git import RevisionBackend, RevisionDiff
from .matrix import MatrixExpander
from .model import ChangeSet, Instance, is_sha_version
from .resolver import ChangeResolver
from .ui.console import get_console

# local change ---> push ---> matrixci dispatch ---> repository_dispatch ---> runners


class RunMode(str, Enum):
    GIT = "git"
    MANUAL = "manual"
    ALIAS = "alias"


class RunStrategy(Protocol):
    """How a run picks its instances and turns them into events."""

    def find_instances(self) -> ChangeSet: ...

    def dispatch(self, change_set: ChangeSet) -> DispatchReport: ...


@dataclass
class Engine:
    """Collaborators shared by every strategy."""
    store: ConfigStore
    backend: RevisionBackend
    expander: MatrixExpander
    dispatcher: DispatchClient

    @property
    def root(self) -> Path:
        return self.store.root

    def config_files(self) -> list[str]:
        return self.store.find_config_files(self.backend.list_working_files())


def expand_and_dispatch(engine: Engine, change_set: ChangeSet) -> DispatchReport:
    """
    Expand every instance first, then dispatch.

    A broken instance raises during expansion, before any event is sent.
    """
    with get_console().group("Dispatch instances"):
        jobs = engine.expander.expand_all(change_set)
        return engine.dispatcher.dispatch_all(jobs)


# ---------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------

class GitMode:
    """Instances owning files changed between `head` and `last_rev`."""

    def __init__(self, engine: Engine, last_rev: str = "HEAD^", head: str = "HEAD"):
        self.engine = engine
        self.last_rev = last_rev or "HEAD^"
        self.head = head

    def find_instances(self) -> ChangeSet:
        with get_console().group("Git Mode: Create instances from changed files in git"):
            files = RevisionDiff(self.engine.backend, self.engine.root).diff(self.head, self.last_rev)
            resolver = ChangeResolver(self.engine.store, self.engine.backend)
            return resolver.resolve(files, self.head, self.last_rev)

    def dispatch(self, change_set: ChangeSet) -> DispatchReport:
        return expand_and_dispatch(self.engine, change_set)


@dataclass(frozen=True)
class ComponentSelector:
    """
    `<name>/<version>` with `*` wildcards on either side.

        recipes/rabbitmq-broker/*  -> every version under that folder
        gstreamer/*                -> every version of instances named like it
        */1.2.0                    -> every instance at version 1.2.0
    """
    name: str
    version: str

    @classmethod
    def parse(cls, component: str) -> "ComponentSelector":
        component = (component or "").strip()
        if not component:
            raise ValueError("Manual mode needs a component like 'name/version' or 'name/*'")
        name, sep, version = component.rpartition("/")
        if not sep:
            return cls(name=component, version="*")
        return cls(name=name, version=version or "*")

    def matches(self, instance: Instance) -> bool:
        name_ok = (
            self.name in ("", "*")
            or self.name in instance.name
            or fnmatch(instance.name, self.name)
            or is_under(instance.folder, self.name)
        )
        version_ok = self.version == "*" or fnmatch(instance.version or "", self.version)
        return name_ok and version_ok


class ManualMode:
    """Instances picked by an explicit component selector."""

    def __init__(self, engine: Engine, component: str):
        self.engine = engine
        self.selector = ComponentSelector.parse(component)

    def find_instances(self) -> ChangeSet:
        console = get_console()
        change_set = ChangeSet()
        with console.group("Manual Mode: Create instances from manual input"):
            for conf_path in self.engine.config_files():
                for instance in self.engine.store.load(conf_path):
                    if not self.selector.matches(instance):
                        continue
                    if change_set.add(instance):
                        console.print_instance(instance.label, instance.content_hash)
        return change_set

    def dispatch(self, change_set: ChangeSet) -> DispatchReport:
        return expand_and_dispatch(self.engine, change_set)


class AliasMode:
    """One job that creates `name/branch` aliases for SHA-versioned packages."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def find_instances(self) -> ChangeSet:
        console = get_console()
        change_set = ChangeSet()
        with console.group("Alias Mode: Create alias for all package"):
            for conf_path in self.engine.config_files():
                for instance in self.engine.store.load(conf_path):
                    # Only create alias for components with commit sha as version
                    if not is_sha_version(instance.version):
                        continue
                    if change_set.add(instance):
                        console.print_instance(instance.label, instance.content_hash)
        return change_set

    def dispatch(self, change_set: ChangeSet) -> DispatchReport:
        with get_console().group("Dispatch instances"):
            job = self.engine.expander.expand_alias(change_set)
            if job is None:
                return DispatchReport()
            return self.engine.dispatcher.dispatch_all([job])


_FACTORIES: Dict[RunMode, Callable[..., RunStrategy]] = {
    RunMode.GIT: lambda engine, last_rev, component: GitMode(engine, last_rev=last_rev),
    RunMode.MANUAL: lambda engine, last_rev, component: ManualMode(engine, component),
    RunMode.ALIAS: lambda engine, last_rev, component: AliasMode(engine),
}


def select_mode(mode: RunMode | str, engine: Engine, *, last_rev: str = "HEAD^", component: str = "") -> RunStrategy:
    try:
        kind = RunMode(mode or RunMode.GIT.value)
    except ValueError:
        raise ValueError(f"Unsupported mode: {mode}")
    return _FACTORIES[kind](engine, last_rev, component)


def run(strategy: RunStrategy) -> DispatchReport:
    change_set = strategy.find_instances()
    return strategy.dispatch(change_set)
