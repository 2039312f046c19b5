from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from eips_insight.data_models.events import ProposalEvent, PullRequestRecord, Repo


class GovernanceState(str, Enum):
    """Waiting-responsibility classification of a pull request."""
    WAITING_ON_EDITOR = "WAITING_ON_EDITOR"
    WAITING_ON_AUTHOR = "WAITING_ON_AUTHOR"
    STALLED = "STALLED"
    DRAFT = "DRAFT"
    NO_STATE = "NO_STATE"
    MERGED = "MERGED"
    CLOSED = "CLOSED"

    @property
    def is_terminal(self) -> bool:
        return self in (GovernanceState.MERGED, GovernanceState.CLOSED)


# Non-terminal states in canonical display order
OPEN_GOVERNANCE_STATES = (
    GovernanceState.WAITING_ON_EDITOR,
    GovernanceState.WAITING_ON_AUTHOR,
    GovernanceState.STALLED,
    GovernanceState.DRAFT,
    GovernanceState.NO_STATE,
)

GOVERNANCE_STATE_LABELS: Dict[GovernanceState, str] = {
    GovernanceState.WAITING_ON_EDITOR: "Waiting on Editor",
    GovernanceState.WAITING_ON_AUTHOR: "Waiting on Author",
    GovernanceState.STALLED: "Stalled",
    GovernanceState.DRAFT: "Draft",
    GovernanceState.NO_STATE: "No State",
    GovernanceState.MERGED: "Merged",
    GovernanceState.CLOSED: "Closed",
}


class GovernanceAssessment(BaseModel):
    """Classification of one pull request at a point in time."""
    pr_number: Optional[int] = None
    repo: Optional[Repo] = None
    state: GovernanceState
    as_of: datetime
    waiting_since: Optional[datetime] = None
    days_waiting: int = 0
    last_actor: Optional[str] = None
    last_event_type: Optional[str] = None

    @computed_field
    @property
    def responsible_party(self) -> str:
        if self.state == GovernanceState.WAITING_ON_AUTHOR:
            return "Author"
        if self.state == GovernanceState.WAITING_ON_EDITOR:
            return "Editor"
        return "Unknown"


class AttentionItem(GovernanceAssessment):
    """An open pull request on the needs-attention listing."""
    url: str

    @computed_field
    @property
    def last_event(self) -> str:
        return self.last_event_type or "No recent activity"


class UnifiedTimelineEntry(BaseModel):
    """One row of the merged proposal lifecycle."""
    date: str
    type: str
    title: str
    description: str
    color: str
    pr_number: Optional[int] = None
    meta: Optional[str] = None


class ProposalTimeline(BaseModel):
    proposal_number: int
    repo: Repo
    title: Optional[str] = None
    author: Optional[str] = None
    current_status: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    deadline: Optional[str] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    status_events: List[ProposalEvent] = Field(default_factory=list)
    category_events: List[ProposalEvent] = Field(default_factory=list)
    deadline_events: List[ProposalEvent] = Field(default_factory=list)
    linked_prs: List[PullRequestRecord] = Field(default_factory=list)
    entries: List[UnifiedTimelineEntry] = Field(default_factory=list)


class TrendingScore(BaseModel):
    """Activity score for one proposal over a lookback window."""
    proposal_number: int
    repo: Repo = Repo.EIP
    title: Optional[str] = None
    status: Optional[str] = None
    score: int
    reason_text: str
    last_activity: Optional[datetime] = None
    pr_event_count: int = 0
    comment_count: int = 0
    had_status_change: bool = False


class WaitingBucket(BaseModel):
    state: GovernanceState
    label: str
    count: int
    median_wait_days: Optional[int] = None
    oldest_pr_number: Optional[int] = None
    oldest_wait_days: Optional[int] = None


class WaitingTimelineBucket(BaseModel):
    bucket: str
    waiting_on_author: int = 0
    waiting_on_editor: int = 0


class MonthSnapshot(BaseModel):
    month: str
    open_prs: int = 0
    new_prs: int = 0
    merged_prs: int = 0
    closed_unmerged: int = 0
    net_delta: int = 0
    governance_states: Dict[str, int] = Field(default_factory=dict)


class YearSnapshot(BaseModel):
    year: int
    months: List[MonthSnapshot] = Field(default_factory=list)
    new_prs: int = 0
    merged_prs: int = 0
    closed_unmerged: int = 0
    open_at_year_end: int = 0


class FunnelStage(BaseModel):
    stage: str
    count: int
    percentage: float


class DailyActivity(BaseModel):
    date: str
    value: int


class HeatmapRow(BaseModel):
    repo: Repo
    proposal_number: int
    title: str
    total_activity: int
    daily_activity: List[DailyActivity] = Field(default_factory=list)
