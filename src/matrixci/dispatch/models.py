# dispatch/models.py
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

# -------------------- Schemas --------------------
# Request bodies for the GitHub repository_dispatch and commit status APIs.


class CommandsPayload(BaseModel):
    pre: str = "[]"   # JSON encoded list of command lines
    main: str = "[]"
    post: str = "[]"


class DockerPayload(BaseModel):
    tag: Optional[str] = None
    platform: Optional[str] = None
    dockerfile: Optional[str] = None


class Payload(BaseModel):
    image: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    commit: str
    context: str
    cmds: CommandsPayload
    component: Optional[str] = None
    branch: Optional[str] = None
    profile: Optional[str] = None
    platform: Optional[str] = None  # os/arch, absent when unresolved
    docker: Optional[DockerPayload] = None


class DispatchEvent(BaseModel):
    owner: str
    repo: str
    event_type: str = Field(min_length=1)
    client_payload: Payload

    def body(self) -> dict:
        return {
            "event_type": self.event_type,
            "client_payload": self.client_payload.model_dump(exclude_none=True),
        }


StatusState = Literal["error", "failure", "pending", "success"]


class CommitStatus(BaseModel):
    owner: str
    repo: str
    sha: str = Field(min_length=1)
    state: StatusState
    context: str

    def body(self) -> dict:
        return {"state": self.state, "context": self.context}
