"""
Event-log data contracts.

A ``ProposalEvent`` is one immutable fact about a proposal or one of its
linked pull requests. Pull requests and proposals are read views assembled
by the event store; nothing here owns mutable state.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eips_insight.utils.dates import ensure_utc, parse_timestamp


class Repo(str, Enum):
    """Proposal repositories tracked by the engine."""
    EIP = "eip"
    ERC = "erc"
    RIP = "rip"

    @classmethod
    def parse(cls, value: "str | Repo") -> "Repo":
        """Accept ``eip``, ``EIPs``, ``ercs`` and friends."""
        if isinstance(value, Repo):
            return value
        normalized = str(value).strip().lower()
        if normalized.endswith("s"):
            normalized = normalized[:-1]
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown repository {value!r}; expected one of eip, erc, rip")

    @property
    def plural(self) -> str:
        return f"{self.value}s"

    @property
    def prefix(self) -> str:
        return self.value.upper()

    def pull_request_url(self, pr_number: int) -> str:
        return f"https://github.com/ethereum/{self.prefix}s/pull/{pr_number}"


class EventKind(str, Enum):
    CREATED = "created"
    STATUS_CHANGE = "status_change"
    CATEGORY_CHANGE = "category_change"
    DEADLINE_CHANGE = "deadline_change"
    PR_OPENED = "pr_opened"
    PR_REVIEW = "pr_review"
    PR_COMMENT = "pr_comment"
    PR_MERGED = "pr_merged"
    PR_CLOSED = "pr_closed"
    COMMIT = "commit"
    DRAFT_TOGGLED = "draft_toggled"


class ActorRole(str, Enum):
    EDITOR = "editor"
    AUTHOR = "author"
    BOT = "bot"
    OTHER = "other"


class ReviewState(str, Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    COMMENTED = "commented"
    DISMISSED = "dismissed"


class ProposalEvent(BaseModel):
    """A single timestamped fact from the event log."""
    model_config = ConfigDict(frozen=True)

    event_id: int = 0
    proposal_number: Optional[int] = None
    repo: Repo = Repo.EIP
    kind: EventKind
    occurred_at: datetime
    actor: Optional[str] = None
    actor_role: Optional[ActorRole] = None
    pr_number: Optional[int] = None
    from_value: Optional[str] = None
    to_value: Optional[str] = None
    review_state: Optional[ReviewState] = None
    draft: Optional[bool] = None
    title: Optional[str] = None
    commit_sha: Optional[str] = None

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _coerce_utc(cls, v):
        return parse_timestamp(v)

    @field_validator("repo", mode="before")
    @classmethod
    def _coerce_repo(cls, v):
        return Repo.parse(v)

    @property
    def sort_key(self):
        """Authoritative ordering: timestamp, then insertion order."""
        return (self.occurred_at, self.event_id)


class PullRequestRecord(BaseModel):
    """A pull request together with its PR-scoped events."""
    pr_number: int
    repo: Repo = Repo.EIP
    title: Optional[str] = None
    author: Optional[str] = None
    state: str = "open"
    created_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    draft: bool = False
    num_commits: int = 0
    num_files: int = 0
    num_comments: int = 0
    linked_proposals: List[int] = Field(default_factory=list)
    events: List[ProposalEvent] = Field(default_factory=list)

    @field_validator("created_at", "merged_at", "closed_at", mode="before")
    @classmethod
    def _coerce_optional_utc(cls, v):
        if v is None or v == "":
            return None
        return parse_timestamp(v)

    @field_validator("repo", mode="before")
    @classmethod
    def _coerce_repo(cls, v):
        return Repo.parse(v)

    @property
    def is_open(self) -> bool:
        return self.merged_at is None and self.closed_at is None and self.state == "open"

    def open_at(self, moment: datetime) -> bool:
        """Whether the PR existed and was neither merged nor closed at ``moment``."""
        moment = ensure_utc(moment)
        if self.created_at is None or self.created_at > moment:
            return False
        if self.merged_at is not None and self.merged_at <= moment:
            return False
        if self.closed_at is not None and self.closed_at <= moment:
            return False
        return True


class ProposalRecord(BaseModel):
    """Current snapshot of a proposal's header fields."""
    proposal_number: int
    repo: Repo = Repo.EIP
    title: Optional[str] = None
    author: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    deadline: Optional[str] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @field_validator("created_at", "last_updated", mode="before")
    @classmethod
    def _coerce_optional_utc(cls, v):
        if v is None or v == "":
            return None
        return parse_timestamp(v)

    @field_validator("repo", mode="before")
    @classmethod
    def _coerce_repo(cls, v):
        return Repo.parse(v)

    @property
    def display_title(self) -> str:
        return self.title or f"{self.repo.prefix}-{self.proposal_number}"
