# config.py
from __future__ import annotations

import posixpath
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from .errors import ModeDetectionError, ParseError
from .model import DockerConfig, Instance, Mode
from .settings import Settings

PACKAGE_MANIFEST = "conanfile.py"
CONTAINER_DESCRIPTOR = "Dockerfile"


def is_under(path: str, folder: str) -> bool:
    """True if `folder` is `path` or one of its ancestors (POSIX, repo-relative)."""
    if folder in ("", "."):
        return True
    path = posixpath.normpath(path)
    folder = posixpath.normpath(folder)
    return path == folder or path.startswith(folder + "/")


def _str_tuple(path: str, key: str, value: Any) -> Tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ParseError(path, f"'{key}' must be a list, got {type(value).__name__}")
    return tuple(str(v) for v in value)


def _optional_str_tuple(path: str, key: str, value: Any) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    return _str_tuple(path, key, value)


def _bool(path: str, key: str, value: Any) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ParseError(path, f"'{key}' must be true or false, got {value!r}")
    return value


def _mapping(path: str, key: str, value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ParseError(path, f"'{key}' must be a mapping, got {type(value).__name__}")
    return {str(k): v for k, v in value.items()}


class ConfigStore:
    """
    Loads instance records from config files and applies defaults.

    Paths handed to the store are repo-relative POSIX paths (as git prints
    them); `root` is where they live on disk for mode probing.
    """

    def __init__(self, root: str | Path, settings: Settings):
        self.root = Path(root)
        self.settings = settings

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, path: str) -> List[Instance]:
        """Load a config file from the working tree."""
        try:
            raw = (self.root / path).read_text(encoding="utf-8")
        except OSError as e:
            raise ParseError(path, f"cannot read file ({e.strerror or e})")
        return self.load_text(path, raw)

    def load_text(self, path: str, raw: str) -> List[Instance]:
        """Parse config content (e.g. from another revision) for `path`."""
        try:
            doc = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ParseError(path, str(e))

        # Empty conf file
        if doc is None:
            return []
        if not isinstance(doc, list):
            raise ParseError(path, f"expected a list of instances, got {type(doc).__name__}")

        return [self.normalize(record, path) for record in doc]

    def find_config_files(self, paths: Iterable[str]) -> List[str]:
        return [p for p in paths if posixpath.basename(p) == self.settings.config_name]

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def _config_dir(self, conf_path: str) -> str:
        return posixpath.dirname(posixpath.normpath(conf_path)) or "."

    def _default_name(self, conf_dir: str) -> str:
        if conf_dir == ".":
            return self.root.resolve().name
        return posixpath.basename(conf_dir)

    def resolve_folder(self, conf_dir: str, folder: Any) -> str:
        if folder is None or folder == "":
            return conf_dir
        return posixpath.normpath(posixpath.join(conf_dir, str(folder)))

    def detect_mode(self, folder: str, cmds: Optional[Tuple[str, ...]], name: str | None = None) -> Mode:
        # probing order matters: manifest, then container descriptor, then cmds
        base = self.root / folder
        if (base / PACKAGE_MANIFEST).is_file():
            return Mode.PACKAGE
        if (base / CONTAINER_DESCRIPTOR).is_file():
            return Mode.CONTAINER
        if cmds is not None:
            return Mode.COMMAND
        raise ModeDetectionError(folder, name)

    def normalize(self, record: Any, conf_path: str) -> Instance:
        """
        Apply defaults to one raw record.

        Order is fixed so that both revisions of a config normalize the same
        way: branch/commit, name, version, folder, profiles, mode.
        Passing an already normalized Instance re-applies the defaults to its
        record with the folder kept as resolved, so the result is equal.
        """
        folder_resolved = isinstance(record, Instance)
        if folder_resolved:
            record = record.to_record()
        if record is None:
            record = {}
        if not isinstance(record, Mapping):
            raise ParseError(conf_path, f"instance entries must be mappings, got {type(record).__name__}")

        rec: Dict[str, Any] = {str(k): v for k, v in record.items()}
        conf_dir = self._config_dir(conf_path)

        branch = rec.pop("branch", None)
        if branch is None:
            branch = self.settings.branch
        commit = rec.pop("commit", None)
        if commit is None:
            commit = self.settings.sha

        name = rec.pop("name", None)
        if name is None:
            name = self._default_name(conf_dir)

        version = rec.pop("version", None)
        if version is None:
            version = commit

        folder = rec.pop("folder", None)
        if not (folder_resolved and folder):
            folder = self.resolve_folder(conf_dir, folder)

        profiles = rec.pop("profiles", None)
        profiles = (
            _str_tuple(conf_path, "profiles", profiles)
            if profiles is not None
            else tuple(self.settings.default_profiles)
        )

        cmds = _optional_str_tuple(conf_path, "cmds", rec.pop("cmds", None))

        mode_value = rec.pop("mode", None)
        if mode_value is None:
            mode = self.detect_mode(folder, cmds, str(name))
        else:
            try:
                mode = Mode(str(mode_value))
            except ValueError:
                raise ParseError(conf_path, f"unknown mode '{mode_value}' for instance '{name}'")

        docker = _mapping(conf_path, "docker", rec.pop("docker", None))

        return Instance(
            name=str(name),
            version=str(version) if version is not None else None,
            branch=str(branch) if branch is not None else None,
            commit=str(commit) if commit is not None else None,
            folder=folder,
            mode=mode,
            profiles=profiles,
            settings=_mapping(conf_path, "settings", rec.pop("settings", None)),
            options=_mapping(conf_path, "options", rec.pop("options", None)),
            cmds_pre=_optional_str_tuple(conf_path, "cmdsPre", rec.pop("cmdsPre", None)) or (),
            cmds=cmds,
            cmds_post=_optional_str_tuple(conf_path, "cmdsPost", rec.pop("cmdsPost", None)) or (),
            tags=_optional_str_tuple(conf_path, "tags", rec.pop("tags", None)),
            image=rec.pop("image", None),
            bootstrap=_bool(conf_path, "bootstrap", rec.pop("bootstrap", None)),
            debug_pkg=_bool(conf_path, "debugPkg", rec.pop("debugPkg", None)),
            docker=DockerConfig(
                tag=docker.get("tag"),
                platform=docker.get("platform"),
                dockerfile=docker.get("dockerfile"),
            ),
            conan_install=_optional_str_tuple(conf_path, "conanInstall", rec.pop("conanInstall", None)) or (),
            subdir=str(rec.pop("subdir", None) or ""),
            script=_optional_str_tuple(conf_path, "script", rec.pop("script", None)) or (),
            extra=rec,
        )
