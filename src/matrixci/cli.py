# cli.py
from __future__ import annotations

import subprocess
import sys
from dataclasses import replace
from pathlib import Path

import click

from .config import ConfigStore
from .dispatch.api_client import GitHubClient
from .dispatch.client import DispatchAPI, DispatchClient
from .errors import CIError
from .git_facts.git import GitBackend, current_ref, head_sha
from .matrix import MatrixExpander
from .modes import Engine, RunMode, run, select_mode
from .settings import Settings
from .ui.console import Console, get_console, set_console


def load_settings(root: str, **overrides) -> Settings:
    """
    Settings from the environment; outside of Actions the ref and sha fall
    back to the local checkout.
    """
    settings = Settings.from_env(**overrides)
    fallback = {}
    try:
        if settings.ref is None:
            fallback["ref"] = current_ref(cwd=root)
        if settings.sha is None:
            fallback["sha"] = head_sha(cwd=root)
    except (subprocess.CalledProcessError, FileNotFoundError):
        get_console().print_debug("not a git checkout, ref/sha left unset")
    return replace(settings, **fallback) if fallback else settings


def build_engine(
    settings: Settings,
    root: str | Path,
    api: DispatchAPI,
    repository: str,
    *,
    workers: int = 1,
    fail_fast: bool = False,
) -> Engine:
    return Engine(
        store=ConfigStore(root, settings),
        backend=GitBackend(root),
        expander=MatrixExpander(settings, root),
        dispatcher=DispatchClient(api, repository, workers=workers, fail_fast=fail_fast),
    )


def _print_ci_error(e: CIError) -> None:
    get_console().print_error(
        e.kind.replace("_", " ").capitalize(),
        e.message,
        details=[f"{k}: {v}" for k, v in e.details.items()],
    )


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full payloads)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: dispatch build jobs for changed instances."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--token", envvar="GITHUB_TOKEN", required=True, help="Token used for dispatch events and statuses")
@click.option("--repository", envvar="GITHUB_REPOSITORY", required=True, help="owner/repo receiving the events")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in RunMode]),
    default=RunMode.GIT.value,
    show_default=True,
    help="How instances are selected",
)
@click.option("--last-rev", default="HEAD^", show_default=True, help="Revision to diff HEAD against (git mode)")
@click.option("--component", default="", help="name/version selector, '*' allowed (manual mode)")
@click.option("--arguments", default="", help="Extra conan arguments for every build")
@click.option("--root", default=".", type=click.Path(exists=True, file_okay=False), help="Repository root")
@click.option("--workers", default=1, type=click.IntRange(min=1), help="Parallel dispatch requests")
@click.option("--fail-fast/--no-fail-fast", default=False, help="Stop dispatching after the first failure")
@click.pass_context
def dispatch(ctx, token, repository, mode, last_rev, component, arguments, root, workers, fail_fast):
    """Find instances to build and dispatch one event per job."""
    console = get_console()

    try:
        settings = load_settings(root, arguments=arguments)
        engine = build_engine(
            settings,
            root,
            GitHubClient(token, settings.api_url),
            repository,
            workers=workers,
            fail_fast=fail_fast,
        )
        strategy = select_mode(mode, engine, last_rev=last_rev, component=component)

        console.print_run_started(
            repository=repository,
            mode=mode,
            revisions=f"HEAD..{last_rev}" if mode == RunMode.GIT.value else None,
        )
        report = run(strategy)
        console.print_results(report.as_dict())

        if report.failed:
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except CIError as e:
        _print_ci_error(e)
        if ctx.obj.get("debug", False):
            import traceback
            traceback.print_exc()
        sys.exit(1)
    except ValueError as e:
        console.print_error("Invalid input", str(e))
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--token", envvar="GITHUB_TOKEN", required=True, help="Token used for commit statuses")
@click.option("--repository", envvar="GITHUB_REPOSITORY", required=True, help="owner/repo of the commit")
@click.option("--commit", required=True, help="Commit SHA the status belongs to")
@click.option("--context", required=True, help="Status context, as sent with the dispatch event")
@click.option("--status", "outcome", required=True, help="Job outcome: success, failure, cancelled, ...")
@click.pass_context
def status(ctx, token, repository, commit, context, outcome):
    """Report the final status of a dispatched job."""
    console = get_console()

    try:
        settings = Settings.from_env()
        client = DispatchClient(GitHubClient(token, settings.api_url), repository)
        client.set_status(commit, context, outcome)
        console.print_info(f"{context}: {'success' if outcome == 'success' else 'failure'}")
    except CIError as e:
        _print_ci_error(e)
        sys.exit(1)
    except ValueError as e:
        console.print_error("Invalid input", str(e))
        sys.exit(1)


if __name__ == "__main__":
    cli()
