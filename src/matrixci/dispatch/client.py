# dispatch/client.py
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from ..errors import DispatchError
from ..model import Job
from ..ui.console import get_console
from .api_client import APIError
from .models import CommitStatus, DispatchEvent, Payload


class DispatchAPI(Protocol):
    def create_dispatch_event(self, event: DispatchEvent) -> None: ...

    def create_commit_status(self, status: CommitStatus) -> object: ...


def split_repository(repository: str) -> Tuple[str, str]:
    """'owner/repo' -> ('owner', 'repo')"""
    owner, _, repo = repository.partition("/")
    if not owner or not repo or "/" in repo:
        raise ValueError(f"Repository must look like 'owner/repo', got: {repository!r}")
    return owner, repo


@dataclass
class DispatchResult:
    context: str
    status: str  # "ok" | "failed" | "skipped"
    error: Optional[DispatchError] = None


@dataclass
class DispatchReport:
    """Outcome of every job in a run, in job order."""
    results: List[DispatchResult] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(r.status != "ok" for r in self.results)

    @property
    def errors(self) -> List[DispatchError]:
        return [r.error for r in self.results if r.error is not None]

    def as_dict(self) -> Dict[str, str]:
        return {r.context: r.status for r in self.results}


class DispatchClient:
    """
    Turns jobs into repository_dispatch events plus pending commit statuses.

    Every dispatch is joined before dispatch_all returns; failures are
    collected in the report, never dropped. No retries.
    """

    def __init__(
        self,
        api: DispatchAPI,
        repository: str,
        *,
        workers: int = 1,
        fail_fast: bool = False,
    ):
        self.api = api
        self.owner, self.repo = split_repository(repository)
        self.workers = max(1, workers)
        self.fail_fast = fail_fast

    # -----------------------------------------------------------------
    # Request building
    # -----------------------------------------------------------------

    def event_for(self, job: Job) -> DispatchEvent:
        return DispatchEvent(
            owner=self.owner,
            repo=self.repo,
            event_type=job.event_type,
            client_payload=Payload.model_validate(job.payload_record()),
        )

    def status_for(self, commit: str, context: str, state: str = "pending") -> CommitStatus:
        return CommitStatus(owner=self.owner, repo=self.repo, sha=commit, state=state, context=context)

    # -----------------------------------------------------------------
    # Sending
    # -----------------------------------------------------------------

    def dispatch(self, job: Job) -> None:
        """
        Send one event and its pending status.

        Raises:
            DispatchError: naming the job context if either call fails
        """
        event = self.event_for(job)
        get_console().print_event(event.event_type, event.client_payload.model_dump(exclude_none=True))
        try:
            self.api.create_dispatch_event(event)
        except APIError as e:
            raise DispatchError(job.context, f"event: {e}")

        # jobs without a commit (the alias job) get no status
        if not job.commit:
            return
        try:
            self.api.create_commit_status(self.status_for(job.commit, job.context))
        except APIError as e:
            raise DispatchError(job.context, f"status: {e}")

    def _attempt(self, job: Job) -> DispatchResult:
        try:
            self.dispatch(job)
        except DispatchError as e:
            get_console().print_error("Dispatch failed", e.message)
            return DispatchResult(job.context, "failed", e)
        return DispatchResult(job.context, "ok")

    def dispatch_all(self, jobs: Iterable[Job]) -> DispatchReport:
        jobs = list(jobs)
        results: List[Optional[DispatchResult]] = [None] * len(jobs)

        if self.workers == 1:
            failed = False
            for i, job in enumerate(jobs):
                if failed and self.fail_fast:
                    results[i] = DispatchResult(job.context, "skipped")
                    continue
                results[i] = self._attempt(job)
                failed = failed or results[i].status == "failed"
        else:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                futures = {pool.submit(self._attempt, job): i for i, job in enumerate(jobs)}
                for fut in as_completed(futures):
                    i = futures[fut]
                    if fut.cancelled():
                        continue
                    results[i] = fut.result()
                    if results[i].status == "failed" and self.fail_fast:
                        for other in futures:
                            other.cancel()

        # anything left never started
        return DispatchReport(
            [r if r is not None else DispatchResult(jobs[i].context, "skipped") for i, r in enumerate(results)]
        )

    def set_status(self, commit: str, context: str, status: str) -> None:
        """
        Final status for a job context once its build has run.

        Anything other than "success" is reported as a failure.
        """
        state = "success" if status == "success" else "failure"
        try:
            self.api.create_commit_status(self.status_for(commit, context, state))
        except APIError as e:
            raise DispatchError(context, f"status: {e}")
