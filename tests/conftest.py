from __future__ import annotations

from pathlib import Path

import pytest

from matrixci.dispatch.api_client import APIError
from matrixci.model import Instance, Mode
from matrixci.settings import Settings
from matrixci.ui.console import Console, set_console

SHA = "0123456789abcdef0123456789abcdef01234567"


class FakeBackend:
    """In-memory RevisionBackend. Records every read so tests can assert on them."""

    def __init__(self, changed=None, files=None, tracked=None, working=None):
        self.changed = list(changed or [])
        self.files = dict(files or {})  # (rev, path) -> content
        self.tracked = dict(tracked or {})  # rev -> [paths]
        self.working = list(working or [])
        self.reads = []

    def list_changed_files(self, rev_a, rev_b):
        return list(self.changed)

    def read_file_at_revision(self, rev, path):
        self.reads.append((rev, path))
        return self.files[(rev, path)]

    def list_tracked_files(self, rev):
        return list(self.tracked.get(rev, []))

    def list_working_files(self):
        return list(self.working)


class FakeAPI:
    """Records dispatch events and statuses; fails for event types in `fail_on`."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.events = []
        self.statuses = []

    def create_dispatch_event(self, event):
        if event.event_type in self.fail_on:
            raise APIError(f"API request failed: 422 Unprocessable Entity for {event.event_type}")
        self.events.append(event)

    def create_commit_status(self, status):
        self.statuses.append(status)
        return {}


def write(root: Path, path: str, text: str = "") -> Path:
    target = root / path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text)
    return target


def make_instance(**overrides) -> Instance:
    fields = dict(
        name="pkg",
        version="1.0",
        branch="main",
        commit=SHA,
        folder="recipes/pkg",
        mode=Mode.PACKAGE,
        profiles=("linux-x86_64", "linux-armv8"),
    )
    fields.update(overrides)
    return Instance(**fields)


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def settings():
    return Settings(ref="refs/heads/main", sha=SHA)


@pytest.fixture
def repo(tmp_path):
    return tmp_path


@pytest.fixture
def api():
    return FakeAPI()
