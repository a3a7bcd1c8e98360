"""Selectors for the claims kernel (read side)."""

from claims_kernel.selectors.dashboard_selector import (
    ApplicationStats,
    DashboardAggregator,
    DashboardSnapshot,
    SystemStats,
    UserStats,
)
from claims_kernel.selectors.timeline_selector import ReviewTimeline, TimelineEntry

__all__ = [
    "ApplicationStats",
    "DashboardAggregator",
    "DashboardSnapshot",
    "ReviewTimeline",
    "SystemStats",
    "TimelineEntry",
    "UserStats",
]
