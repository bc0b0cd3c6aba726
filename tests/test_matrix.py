import json
from dataclasses import replace

import pytest

from conftest import SHA, make_instance, write
from matrixci.errors import MissingBranchError, RepositoryRoutingError, UnsupportedPlatformError
from matrixci.matrix import (
    ALIAS_EVENT_TYPE,
    MatrixExpander,
    package_arguments,
    read_license,
    resolve_image,
    resolve_platform,
    resolve_tags,
)
from matrixci.model import DockerConfig, Mode
from matrixci.settings import Settings


@pytest.fixture
def expander(repo, settings):
    write(repo, "recipes/pkg/conanfile.py", 'class Pkg:\n    license = "MIT"\n')
    return MatrixExpander(settings, repo)


def rendered(job, stage):
    return [c.render() for c in getattr(job.commands, stage)]


@pytest.mark.parametrize(
    "profile, image, tags",
    [
        ("linux-x86_64", "aivero/conan:bionic-x86_64", ("X64", "aws")),
        ("linux-armv8", "aivero/conan:bionic-armv8", ("ARM64", "aws")),
        ("musl-x86_64", "aivero/conan:alpine-x86_64", ("X64", "aws")),
        ("wasi-wasm", "aivero/conan:bionic-x86_64", ("X64", "aws")),
        ("windows-x86_64", "aivero/conan:windows-x86_64", ("X64", "aws")),
        ("sparc", "aivero/conan:", ()),
    ],
)
def test_profile_to_image_and_tags(profile, image, tags):
    assert resolve_image(profile, "aivero/conan:") == image
    assert resolve_tags(profile) == tags


def test_bootstrap_image_suffix():
    assert resolve_image("linux-armv8", "aivero/conan:", bootstrap=True) == "aivero/conan:bionic-armv8-bootstrap"


@pytest.mark.parametrize(
    "profile, platform",
    [
        ("linux-x86_64", "linux/amd64"),
        ("Linux-ARMv8", "linux/arm64"),
        ("linux-armhf", "linux/arm/v7"),
        ("linux-x86-64-gcc", "linux/amd64"),
    ],
)
def test_resolve_platform(profile, platform):
    assert resolve_platform(profile) == platform


@pytest.mark.parametrize("profile", ["windows-x86_64", "macos-armv8", "musl-x86_64", "linux-sparc"])
def test_resolve_platform_unsupported(profile):
    with pytest.raises(UnsupportedPlatformError) as exc:
        resolve_platform(profile)
    assert exc.value.details["profile"] == profile


def test_package_arguments():
    args = package_arguments("--build missing", "gst", {"build_type": "Release"}, {"shared": True, "x": 1})
    assert args == ["--build", "missing", "-s", "gst:build_type=Release", "-o", "gst:shared=True", "-o", "gst:x=1"]


def test_read_license(tmp_path):
    conanfile = write(tmp_path, "conanfile.py", 'class A:\n    name = "a"\n    license = ("LGPL", "Proprietary")\n')
    assert read_license(conanfile) == '("LGPL", "Proprietary")'
    assert read_license(write(tmp_path, "other.py", "x = 1\n")) is None


def test_package_job_commands(expander):
    inst = make_instance(profiles=("linux-x86_64",), settings={"build_type": "Release"}, cmds_pre=("echo hi",))
    [job] = expander.expand(inst)

    assert job.image == "aivero/conan:bionic-x86_64"
    assert job.tags == ("X64", "aws")
    assert job.platform == "linux/amd64"
    assert job.repository == "$CONAN_REPO_PUBLIC"
    assert rendered(job, "pre") == [
        "echo hi",
        "conan config install $CONAN_CONFIG_URL -sf $CONAN_CONFIG_DIR",
        "conan user $CONAN_LOGIN_USERNAME -p $CONAN_LOGIN_PASSWORD -r $CONAN_REPO_ALL",
        "conan user $CONAN_LOGIN_USERNAME -p $CONAN_LOGIN_PASSWORD -r $CONAN_REPO_INTERNAL",
        "conan user $CONAN_LOGIN_USERNAME -p $CONAN_LOGIN_PASSWORD -r $CONAN_REPO_PUBLIC",
        "conan config set general.default_profile=linux-x86_64",
    ]
    assert rendered(job, "main") == [
        "conan create -s pkg:build_type=Release recipes/pkg pkg/1.0@",
        "conan upload pkg/1.0@ --all -c -r $CONAN_REPO_PUBLIC",
    ]
    assert rendered(job, "post") == ["conan remove --locks", "conan remove '*' -f"]


def test_jobs_follow_profile_order(expander):
    jobs = expander.expand(make_instance(profiles=("linux-armv8", "linux-x86_64")))
    assert [j.profile for j in jobs] == ["linux-armv8", "linux-x86_64"]
    assert jobs[0].tags == ("ARM64", "aws")
    assert jobs[0].image.endswith("-armv8")


def test_explicit_tags_win(expander):
    [job] = expander.expand(make_instance(profiles=("linux-armv8",), tags=("gpu",)))
    assert job.tags == ("gpu",)


def test_sha_version_adds_exactly_one_branch_upload(expander):
    [job] = expander.expand(make_instance(version=SHA, profiles=("linux-x86_64",)))
    main = rendered(job, "main")
    assert main.count("conan upload pkg/main@ --all -c -r $CONAN_REPO_PUBLIC") == 1

    [plain] = expander.expand(make_instance(profiles=("linux-x86_64",)))
    assert not any("pkg/main@" in line for line in rendered(plain, "main"))


def test_debug_package(expander):
    [job] = expander.expand(make_instance(profiles=("linux-x86_64",), debug_pkg=True))
    main = rendered(job, "main")
    assert "conan create recipes/pkg pkg-dbg/1.0@" in main
    assert "conan upload pkg-dbg/1.0@ --all -c -r $CONAN_REPO_PUBLIC" in main


def test_extra_arguments_come_first(repo):
    write(repo, "recipes/pkg/conanfile.py", 'license = "MIT"\n')
    expander = MatrixExpander(Settings(ref="refs/heads/main", sha=SHA, arguments="--build=missing"), repo)
    [job] = expander.expand(make_instance(profiles=("linux-x86_64",), options={"shared": False}))
    assert rendered(job, "main")[0] == "conan create --build=missing -o pkg:shared=False recipes/pkg pkg/1.0@"


def test_proprietary_license_routes_internal(repo, settings):
    write(repo, "recipes/pkg/conanfile.py", 'license = "Proprietary"\n')
    assert MatrixExpander(settings, repo).repository_for(make_instance()) == "$CONAN_REPO_INTERNAL"


@pytest.mark.parametrize("source", [None, "name = 'pkg'\n", "license = (\n"])
def test_repository_routing_errors(repo, settings, source):
    if source is not None:
        write(repo, "recipes/pkg/conanfile.py", source)
    with pytest.raises(RepositoryRoutingError) as exc:
        MatrixExpander(settings, repo).expand(make_instance())
    assert exc.value.details["path"] == "recipes/pkg/conanfile.py"


def test_context_is_stable_and_used_as_event_type(expander):
    inst = make_instance()
    first = expander.expand(inst)
    second = expander.expand(inst)

    assert [j.context for j in first] == [j.context for j in second]
    job = first[1]
    assert job.context.startswith("pkg/main: linux-armv8 (")
    assert job.context == f"pkg/main: linux-armv8 ({job.content_hash[:12]})"
    assert job.event_type == job.context


def test_different_profiles_have_different_contexts(expander):
    jobs = expander.expand(make_instance())
    assert len({j.context for j in jobs}) == 2


def test_payload_record_encodes_commands_as_json(expander):
    [job] = expander.expand(make_instance(profiles=("linux-x86_64",)))
    record = job.payload_record()
    assert json.loads(record["cmds"]["post"]) == ["conan remove --locks", "conan remove '*' -f"]
    assert record["context"] == job.context
    assert record["component"] == "recipes/pkg"
    assert record["platform"] == "linux/amd64"
    assert "docker" not in record


def test_container_job(expander):
    inst = make_instance(name="gst-app", folder="apps/gst", mode=Mode.CONTAINER, profiles=("linux-armv8",))
    [job] = expander.expand(inst)
    assert job.docker == DockerConfig(
        tag="ghcr.io/aivero/gst-app/linux-armv8:main",
        platform="linux/arm64",
        dockerfile="apps/gst/docker/linux-armv8.Dockerfile",
    )


def test_container_overrides(expander):
    inst = make_instance(
        mode=Mode.CONTAINER,
        profiles=("linux-x86_64",),
        docker=DockerConfig(tag="registry/pkg", platform="linux/386", dockerfile="Dockerfile"),
    )
    [job] = expander.expand(inst)
    assert job.docker == DockerConfig(tag="registry/pkg:main", platform="linux/386", dockerfile="recipes/pkg/Dockerfile")


def test_container_with_unrecognized_profile_fails(expander):
    inst = make_instance(mode=Mode.CONTAINER, profiles=("linux-x86_64", "sparc"))
    with pytest.raises(UnsupportedPlatformError) as exc:
        expander.expand(inst)
    assert exc.value.details["instance"] == "pkg/1.0"


def test_non_container_job_leaves_platform_empty(expander):
    [job] = expander.expand(make_instance(mode=Mode.INSTALL_TARBALL, profiles=("wasi-wasm",)))
    assert job.platform == ""
    assert "platform" not in job.payload_record()


def test_install_tarball_commands(expander):
    inst = make_instance(
        name="bundle",
        folder="bundles/x",
        mode=Mode.INSTALL_SCRIPT,
        profiles=("linux-x86_64",),
        conan_install=("gst",),
        subdir="opt",
        script=("./package.sh",),
    )
    [job] = expander.expand(inst)
    assert rendered(job, "main") == [
        "mkdir -p bundles/x/install",
        "conan install gst/main@ -if bundles/x/install/gst",
        "./package.sh",
        "sed -i 's#PREFIX=.*#PREFIX=/opt/gst#' bundles/x/install/gst/opt/dddq_environment.sh",
        "tar -cvjf bundles/x/bundle-main.tar.bz2 bundles/x/install",
    ]
    assert job.docker is None


def test_command_mode_is_a_single_job(expander):
    inst = make_instance(name="lint", folder="tools", mode=Mode.COMMAND, cmds=("make lint",), tags=("small",))
    [job] = expander.expand(inst)

    assert job.profile is None
    assert job.image == "node12"
    assert job.tags == ("small",)
    assert rendered(job, "main") == ["make lint"]
    assert rendered(job, "pre") == []
    assert job.context.startswith("lint/main (")


def test_alias_job(expander, repo):
    write(repo, "recipes/priv/conanfile.py", 'license = "Proprietary"\n')
    instances = [
        make_instance(version=SHA),
        make_instance(name="priv", folder="recipes/priv", version=SHA),
        make_instance(name="tagged", version="2.0"),
    ]
    job = expander.expand_alias(instances)

    assert rendered(job, "main") == [
        f"conan alias pkg/{SHA} pkg/main",
        "conan upload pkg/main@ --all -c -r $CONAN_REPO_PUBLIC",
        f"conan alias priv/{SHA} priv/main",
        "conan upload priv/main@ --all -c -r $CONAN_REPO_INTERNAL",
    ]
    assert job.image == "aivero/conan:bionic-x86_64"
    assert job.tags == ("X64",)
    assert job.commit == ""
    assert job.context.startswith("Alias: */* (")
    assert job.event_type == ALIAS_EVENT_TYPE


def test_alias_job_without_sha_versions(expander):
    assert expander.expand_alias([make_instance(version="1.0")]) is None


def test_platform_is_part_of_the_job_hash(expander):
    [job] = expander.expand(make_instance(profiles=("linux-x86_64",)))
    other = expander._seal(replace(job, platform="linux/arm64"), "pkg/main: linux-x86_64")
    assert other.content_hash != job.content_hash


@pytest.mark.parametrize(
    "overrides",
    [
        dict(version=SHA),
        dict(mode=Mode.CONTAINER),
        dict(mode=Mode.INSTALL_TARBALL, conan_install=("gst",)),
    ],
)
def test_unknown_branch_is_never_rendered(expander, overrides):
    inst = make_instance(branch=None, profiles=("linux-x86_64",), **overrides)
    with pytest.raises(MissingBranchError) as exc:
        expander.expand(inst)
    assert exc.value.details["instance"] == inst.label


def test_unknown_branch_is_fine_without_branch_references(expander):
    [job] = expander.expand(make_instance(branch=None, profiles=("linux-x86_64",)))
    assert not any("None" in line for line in rendered(job, "main"))


def test_alias_job_needs_a_branch(expander):
    with pytest.raises(MissingBranchError, match="branch alias"):
        expander.expand_alias([make_instance(version=SHA, branch=None)])
