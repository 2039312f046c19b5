"""
Pure lifecycle computations: governance classification, timeline merging,
trending scores and the rollups built on top of them.

Everything in this package is side-effect free over an immutable event
snapshot; I/O lives in ``eips_insight.services``.
"""
from eips_insight.lifecycle.governance import assess, classify
from eips_insight.lifecycle.roles import RoleDirectory
from eips_insight.lifecycle.timeline import merge
from eips_insight.lifecycle.trending import rank, score, window_events

__all__ = [
    "assess",
    "classify",
    "merge",
    "rank",
    "RoleDirectory",
    "score",
    "window_events",
]
