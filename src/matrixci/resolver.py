# resolver.py
from __future__ import annotations

import posixpath
from pathlib import Path
from typing import Iterable, List, Optional

from .config import ConfigStore, is_under
from .git_facts.git import RevisionBackend
from .model import ChangeSet, Instance
from .ui.console import get_console


class ChangeResolver:
    """
    Maps changed files to the instances that need rebuilding.

    rev_a is the current side (normally HEAD), rev_b the previous one.
    """

    def __init__(self, store: ConfigStore, backend: RevisionBackend):
        self.store = store
        self.backend = backend

    @property
    def root(self) -> Path:
        return self.store.root

    @property
    def config_name(self) -> str:
        return self.store.settings.config_name

    def find_config(self, directory: str) -> Optional[str]:
        """Walk up from `directory` to the repo root looking for a config file."""
        directory = posixpath.normpath(directory or ".")
        while True:
            conf_path = posixpath.normpath(posixpath.join(directory, self.config_name))
            if (self.root / conf_path).is_file():
                return conf_path
            if directory in (".", "", "/"):
                return None
            directory = posixpath.dirname(directory) or "."

    def resolve(
        self,
        changed_files: Iterable[str],
        rev_a: str,
        rev_b: str,
        change_set: Optional[ChangeSet] = None,
    ) -> ChangeSet:
        console = get_console()
        change_set = change_set if change_set is not None else ChangeSet()
        tracked_b: Optional[set[str]] = None

        for file_path in changed_files:
            file_path = posixpath.normpath(file_path)
            file_dir = posixpath.dirname(file_path) or "."
            conf_path = self.find_config(file_dir)
            if conf_path is None:
                console.print_no_config(self.config_name, file_path)
                continue

            if file_path == conf_path:
                if tracked_b is None:
                    tracked_b = set(self.backend.list_tracked_files(rev_b))
                found = self.handle_config_change(conf_path, rev_a, rev_b, conf_path in tracked_b)
            else:
                found = self.handle_file_change(conf_path, file_path, rev_a)

            for instance in found:
                if change_set.add(instance):
                    console.print_instance(instance.label, instance.content_hash)
                else:
                    console.print_debug(f"already selected: {instance.label}")

        return change_set

    def handle_config_change(
        self,
        conf_path: str,
        rev_a: str,
        rev_b: str,
        existed_before: bool,
    ) -> List[Instance]:
        console = get_console()
        conf_new = self.store.load_text(conf_path, self.backend.read_file_at_revision(rev_a, conf_path))

        if not existed_before:
            console.print_config_event("Created", conf_path)
            return conf_new

        console.print_config_event("Changed", conf_path)
        conf_old = self.store.load_text(conf_path, self.backend.read_file_at_revision(rev_b, conf_path))
        hashes_old = {i.content_hash for i in conf_old}
        # covers new instances and instances whose fields changed
        return [i for i in conf_new if i.content_hash not in hashes_old]

    def handle_file_change(self, conf_path: str, file_path: str, rev_a: str) -> List[Instance]:
        conf = self.store.load_text(conf_path, self.backend.read_file_at_revision(rev_a, conf_path))
        file_dir = posixpath.dirname(file_path) or "."
        return [i for i in conf if is_under(file_dir, i.folder)]
