# matrix.py
from __future__ import annotations

import ast
import posixpath
import shlex
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import MissingBranchError, RepositoryRoutingError, UnsupportedPlatformError
from .hashing import content_hash, short_hash
from .model import Command, Commands, DockerConfig, Instance, Job, Mode, is_sha_version
from .settings import Settings
from .ui.console import get_console

ALIAS_EVENT_TYPE = "Create branch alias for all Conan packages"

# modes that run the conan-install / docker command assembly
_INSTALL_MODES = (Mode.CONTAINER, Mode.INSTALL_TARBALL, Mode.INSTALL_SCRIPT)


# ---------------------------------------------------------------------
# Profile resolution
# ---------------------------------------------------------------------
# First match wins within each decision. Profiles look like
# "linux-x86_64", "linux-armv8", "musl-x86_64", "wasi-wasm".

def resolve_image(profile: str, image_base: str, bootstrap: bool = False) -> str:
    image = image_base

    if "musl" in profile:
        image += "alpine"
    elif "linux" in profile or "wasi" in profile:
        image += "bionic"
    elif "windows" in profile:
        image += "windows"
    elif "macos" in profile:
        image += "macos"

    if "x86_64" in profile or "wasm" in profile:
        image += "-x86_64"
    elif "armv8" in profile:
        image += "-armv8"

    # Handle bootstrap packages
    if bootstrap:
        image += "-bootstrap"
    return image


def resolve_tags(profile: str) -> Tuple[str, ...]:
    """Runner scheduling tags for a profile's architecture."""
    if "x86_64" in profile or "wasm" in profile:
        return ("X64", "aws")
    if "armv8" in profile:
        return ("ARM64", "aws")
    return ()


def resolve_platform(profile: str) -> str:
    """
    Parse a profile into a docker/buildx platform string (os/arch).

    Raises UnsupportedPlatformError for windows/macos and for profiles whose
    os or arch cannot be recognized.
    """
    p = profile.lower()
    os_name = ""
    arch = ""
    if "linux" in p:
        os_name = "linux"
    elif "windows" in p:
        raise UnsupportedPlatformError(profile, "Windows builds are not yet supported")
    elif "macos" in p:
        raise UnsupportedPlatformError(profile, "MacOS/Darwin builds are not yet supported")

    if "armv8" in p or "arm64" in p:
        arch = "arm64"
    elif "armv7" in p or "armhf" in p:
        arch = "arm/v7"
    elif "86_64" in p or "86-64" in p:
        arch = "amd64"

    if not os_name:
        raise UnsupportedPlatformError(profile, f"Could not parse profile {profile} to an os.")
    if not arch:
        raise UnsupportedPlatformError(profile, f"Could not parse profile {profile} to an arch.")
    return f"{os_name}/{arch}"


# ---------------------------------------------------------------------
# Package-manager arguments and fixed command sequences
# ---------------------------------------------------------------------

def _conan_value(value: Any) -> str:
    # conanfiles are python: booleans must be True/False
    if value is True:
        return "True"
    if value is False:
        return "False"
    return str(value)


def package_arguments(
    base: str,
    name: str,
    settings: Mapping[str, Any],
    options: Mapping[str, Any],
) -> List[str]:
    args = shlex.split(base) if base else []
    for key, value in settings.items():
        args += ["-s", f"{name}:{key}={_conan_value(value)}"]
    for key, value in options.items():
        args += ["-o", f"{name}:{key}={_conan_value(value)}"]
    return args


def login_commands(settings: Settings) -> List[Command]:
    cmds = [Command.of("conan", "config", "install", "$CONAN_CONFIG_URL", "-sf", "$CONAN_CONFIG_DIR")]
    for remote in (settings.repo_all, settings.repo_internal, settings.repo_public):
        cmds.append(
            Command.of("conan", "user", "$CONAN_LOGIN_USERNAME", "-p", "$CONAN_LOGIN_PASSWORD", "-r", remote)
        )
    return cmds


def pre_commands(profile: str, settings: Settings) -> List[Command]:
    return login_commands(settings) + [
        Command.of("conan", "config", "set", f"general.default_profile={profile}"),
    ]


def post_commands() -> List[Command]:
    return [Command.of("conan", "remove", "--locks"), Command.of("conan", "remove", "*", "-f")]


def upload_command(reference: str, repository: str) -> Command:
    return Command.of("conan", "upload", f"{reference}@", "--all", "-c", "-r", repository)


def _declared(lines: Optional[Iterable[str]]) -> List[Command]:
    return [Command.line(line) for line in (lines or ())]


def _branch(instance: Instance, step: str) -> str:
    """Branch for a rendered `name/branch` reference; never renders None."""
    if not instance.branch:
        raise MissingBranchError(instance.label, step)
    return instance.branch


# ---------------------------------------------------------------------
# Repository routing
# ---------------------------------------------------------------------

def read_license(conanfile: Path) -> Optional[str]:
    """
    Source text of the first `license = ...` assignment in a conanfile,
    or None if there is none.
    """
    source = conanfile.read_text(encoding="utf-8")
    tree = ast.parse(source, filename=str(conanfile))
    for node in ast.walk(tree):
        if isinstance(node, ast.Assign):
            targets = node.targets
        elif isinstance(node, ast.AnnAssign) and node.value is not None:
            targets = [node.target]
        else:
            continue
        if any(isinstance(t, ast.Name) and t.id == "license" for t in targets):
            return ast.get_source_segment(source, node.value) or ""
    return None


class MatrixExpander:
    """Expands instances into one Job per declared profile."""

    def __init__(self, settings: Settings, root: str | Path = "."):
        self.settings = settings
        self.root = Path(root)

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def expand(self, instance: Instance) -> List[Job]:
        """
        All jobs for one instance, in profile order.

        Any resolution error aborts the whole instance; no partial matrix
        is returned.
        """
        if instance.mode == Mode.COMMAND:
            return [self._command_job(instance)]
        if instance.mode == Mode.PACKAGE:
            repository = self.repository_for(instance)
            return [self._package_job(instance, p, repository) for p in instance.profiles]
        if instance.mode in _INSTALL_MODES:
            return [self._install_job(instance, p) for p in instance.profiles]
        raise ValueError(f"Mode '{instance.mode}' is not supported yet.")

    def expand_all(self, instances: Iterable[Instance]) -> List[Job]:
        jobs: List[Job] = []
        for instance in instances:
            jobs.extend(self.expand(instance))
        return jobs

    def expand_alias(self, instances: Iterable[Instance]) -> Optional[Job]:
        """
        One job that points `name/branch` at every package built from a
        commit SHA version. None if there is nothing to alias.
        """
        main: List[Command] = []
        for instance in instances:
            if instance.mode != Mode.PACKAGE or not is_sha_version(instance.version):
                continue
            branch = _branch(instance, "create the branch alias")
            repository = self.repository_for(instance)
            main.append(
                Command.of(
                    "conan", "alias",
                    f"{instance.name}/{instance.version}",
                    f"{instance.name}/{branch}",
                )
            )
            main.append(upload_command(f"{instance.name}/{branch}", repository))

        if not main:
            return None

        job = Job(
            instance=None,
            profile=None,
            image=f"{self.settings.image_base}bionic-x86_64",
            tags=("X64",),
            commands=Commands(pre=tuple(login_commands(self.settings)), main=tuple(main)),
            commit="",
        )
        return self._seal(job, "Alias: */*", event_type=ALIAS_EVENT_TYPE)

    def repository_for(self, instance: Instance) -> str:
        """Upload remote for a package, from the license in its conanfile."""
        conanfile_rel = posixpath.join(instance.folder, "conanfile.py")
        conanfile = self.root / conanfile_rel
        try:
            license_text = read_license(conanfile)
        except OSError as e:
            raise RepositoryRoutingError(conanfile_rel, f"Cannot read conanfile ({e.strerror or e})")
        except SyntaxError as e:
            raise RepositoryRoutingError(conanfile_rel, f"Cannot parse conanfile (line {e.lineno})")

        if not license_text:
            raise RepositoryRoutingError(conanfile_rel, "No license")
        if "Proprietary" in license_text:
            return self.settings.repo_internal
        return self.settings.repo_public

    # -----------------------------------------------------------------
    # Job builders
    # -----------------------------------------------------------------

    def _base_job(self, instance: Instance, profile: Optional[str], image: str, tags: Tuple[str, ...]) -> Dict[str, Any]:
        return dict(
            instance=instance,
            profile=profile,
            image=image,
            tags=tags,
            commit=instance.commit or "",
            branch=instance.branch,
            component=instance.folder,
        )

    def _profile_basics(self, instance: Instance, profile: str) -> Tuple[str, Tuple[str, ...]]:
        image = resolve_image(profile, self.settings.image_base, instance.bootstrap)
        tags = instance.tags if instance.tags is not None else resolve_tags(profile)
        return image, tuple(tags)

    def _arguments(self, instance: Instance) -> List[str]:
        return package_arguments(self.settings.arguments, instance.name, instance.settings, instance.options)

    def _package_job(self, instance: Instance, profile: str, repository: str) -> Job:
        image, tags = self._profile_basics(instance, profile)
        args = self._arguments(instance)
        name, version = instance.name, instance.version

        main = _declared(instance.cmds)
        main.append(Command.of("conan", "create", *args, instance.folder, f"{name}/{version}@"))
        if instance.debug_pkg:
            main.append(Command.of("conan", "create", *args, instance.folder, f"{name}-dbg/{version}@"))
        main.append(upload_command(f"{name}/{version}", repository))
        if instance.debug_pkg:
            main.append(upload_command(f"{name}-dbg/{version}", repository))
        # Upload branch alias for sha commit version
        if is_sha_version(version):
            branch = _branch(instance, "upload the branch alias")
            main.append(upload_command(f"{name}/{branch}", repository))

        job = Job(
            **self._base_job(instance, profile, image, tags),
            commands=Commands(
                pre=tuple(_declared(instance.cmds_pre) + pre_commands(profile, self.settings)),
                main=tuple(main),
                post=tuple(_declared(instance.cmds_post) + post_commands()),
            ),
            platform=self._optional_platform(profile),
            repository=repository,
        )
        return self._seal(job, f"{name}/{instance.branch}: {profile}")

    def _install_job(self, instance: Instance, profile: str) -> Job:
        image, tags = self._profile_basics(instance, profile)
        args = self._arguments(instance)
        folder = instance.folder
        install_dir = posixpath.join(folder, "install")
        # only installs and the tarball name render the branch
        branch = _branch(instance, "install conan packages") if instance.conan_install else instance.branch

        # Conan install all specified packages to install/<pkg>
        main = _declared(instance.cmds)
        for pkg in instance.conan_install:
            main.append(Command.of("mkdir", "-p", install_dir))
            main.append(
                Command.of("conan", "install", *args, f"{pkg}/{branch}@", "-if", posixpath.join(install_dir, pkg))
            )

        if instance.mode == Mode.INSTALL_SCRIPT:
            main.extend(_declared(instance.script))

        # Replace prefix and create tarball
        if instance.conan_install:
            for pkg in instance.conan_install:
                prefix = posixpath.join("/", instance.subdir, pkg)
                env_script = posixpath.join(install_dir, pkg, instance.subdir, "dddq_environment.sh")
                main.append(Command.of("sed", "-i", f"s#PREFIX=.*#PREFIX={prefix}#", env_script))
            main.append(
                Command.of("tar", "-cvjf", posixpath.join(folder, f"{instance.name}-{branch}.tar.bz2"), install_dir)
            )

        docker = None
        if instance.mode == Mode.CONTAINER:
            platform = instance.docker.platform or self._container_platform(instance, profile)
            docker = DockerConfig(
                tag=self._docker_tag(instance, profile),
                platform=platform,
                dockerfile=posixpath.join(
                    folder, instance.docker.dockerfile or posixpath.join("docker", f"{profile}.Dockerfile")
                ),
            )
        else:
            platform = self._optional_platform(profile)

        job = Job(
            **self._base_job(instance, profile, image, tags),
            commands=Commands(
                pre=tuple(_declared(instance.cmds_pre) + pre_commands(profile, self.settings)),
                main=tuple(main),
                post=tuple(_declared(instance.cmds_post) + post_commands()),
            ),
            platform=platform,
            docker=docker,
        )
        return self._seal(job, f"{instance.name}/{instance.branch}: {profile}")

    def _command_job(self, instance: Instance) -> Job:
        job = Job(
            **self._base_job(instance, None, self.settings.command_image, tuple(instance.tags or ())),
            commands=Commands(
                pre=tuple(_declared(instance.cmds_pre)),
                main=tuple(_declared(instance.cmds)),
                post=tuple(_declared(instance.cmds_post)),
            ),
        )
        return self._seal(job, f"{instance.name}/{instance.branch}")

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    def _docker_tag(self, instance: Instance, profile: str) -> str:
        branch = _branch(instance, "tag the container image")
        if instance.docker.tag:
            return f"{instance.docker.tag}:{branch}"
        return f"{self.settings.docker_registry}/{instance.name}/{profile.lower()}:{branch}"

    def _container_platform(self, instance: Instance, profile: str) -> str:
        try:
            return resolve_platform(profile)
        except UnsupportedPlatformError as e:
            e.details["instance"] = instance.label
            raise

    def _optional_platform(self, profile: str) -> str:
        # only container jobs require a platform; others send it when resolvable
        try:
            return resolve_platform(profile)
        except UnsupportedPlatformError:
            get_console().print_debug(f"no platform for profile {profile}")
            return ""

    def _seal(self, job: Job, identity: str, event_type: str = "") -> Job:
        """Attach the content hash and the context derived from it."""
        digest = content_hash(job.payload_record(with_context=False))
        context = f"{identity} ({short_hash(digest)})"
        return replace(job, content_hash=digest, context=context, event_type=event_type or context)
