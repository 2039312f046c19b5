"""Presentation lookup table for timeline entries.

Kept apart from the merger so the UI palette can change without touching
ordering or description logic.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional

CYAN = "#22d3ee"
BLUE = "#60a5fa"
AMBER = "#fbbf24"
EMERALD = "#34d399"
VIOLET = "#a78bfa"
SLATE = "#94a3b8"
RED = "#ef4444"

STATUS_COLORS: Dict[str, str] = {
    "Draft": CYAN,
    "Review": BLUE,
    "Last Call": AMBER,
    "Final": EMERALD,
    "Living": VIOLET,
    "Stagnant": SLATE,
    "Withdrawn": RED,
}


@dataclass(frozen=True)
class TimelinePalette:
    status_colors: Dict[str, str] = field(default_factory=lambda: dict(STATUS_COLORS))
    fallback: str = SLATE
    created: str = CYAN
    category: str = VIOLET
    deadline: str = AMBER
    pr_open: str = CYAN
    pr_merged: str = EMERALD
    pr_closed: str = SLATE
    review: str = BLUE
    comment: str = SLATE
    commit: str = SLATE
    draft: str = VIOLET

    def status(self, to_status: Optional[str]) -> str:
        return self.status_colors.get(to_status or "", self.fallback)

    def pr_opened(self, merged: bool, open_: bool) -> str:
        if merged:
            return self.pr_merged
        if open_:
            return self.pr_open
        return self.pr_closed


DEFAULT_PALETTE = TimelinePalette()
