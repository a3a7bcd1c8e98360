"""
Module: claims_kernel.selectors.dashboard_selector
Responsibility: Read-only reporting snapshot: application counts per
    status with claimed/approved totals, user counts per role, the most
    recent applications and users, and gateway/system facts.
Architecture position: Kernel > Selectors.  Reads through the injected
    PersistenceGateway; MUST NOT import from services/.

Invariants enforced:
    - Never writes: only count/find calls are issued.
    - Every status and every role appears in the breakdowns, with zero
      when nothing matches, so consumers never test for missing keys.
    - Totals are derived from the applications at query time.

Failure modes:
    - Any gateway error (including NotConnectedError) propagates; counts
      are never silently reported as zero.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from claims_kernel.db.gateway import PersistenceGateway
from claims_kernel.domain.claims import (
    REVIEWER_ROLES,
    ActorRole,
    Application,
    ApplicationStatus,
    User,
)
from claims_kernel.domain.clock import Clock, SystemClock
from claims_kernel.domain.money import sum_amounts
from claims_kernel.logging_config import get_logger

logger = get_logger("selectors.dashboard")


@dataclass(frozen=True)
class ApplicationStats:
    total: int
    by_status: dict[str, int]
    total_claimed: Decimal
    total_approved: Decimal
    recent: tuple[Application, ...]


@dataclass(frozen=True)
class UserStats:
    total: int
    active: int
    by_role: dict[str, int]
    reviewers: int
    recent: tuple[User, ...]


@dataclass(frozen=True)
class SystemStats:
    provider: str
    connected: bool
    transactions: bool
    raw_query: bool
    environment: str
    uptime_seconds: float
    generated_at: datetime


@dataclass(frozen=True)
class DashboardSnapshot:
    application_stats: ApplicationStats
    user_stats: UserStats
    system_stats: SystemStats


class DashboardAggregator:
    """
    Builds dashboard snapshots.

    Contract:
        ``snapshot`` is a pure read; calling it twice without intervening
        writes returns equal statistics (apart from the system timing
        fields).
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        clock: Clock | None = None,
        environment: str = "development",
        recent_limit: int = 5,
        started_at: datetime | None = None,
    ):
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._environment = environment
        self._recent_limit = recent_limit
        self._started_at = started_at or self._clock.now()

    def application_stats(self) -> ApplicationStats:
        applications = self._gateway.applications
        by_status = {
            status.value: applications.count({"status": status})
            for status in ApplicationStatus
        }
        everything = applications.find_all()
        recent = applications.find_all(
            order_by=(("submitted_at", True), ("reference_number", True)),
            limit=self._recent_limit,
        )
        return ApplicationStats(
            total=applications.count(),
            by_status=by_status,
            total_claimed=sum_amounts(a.total_amount_claimed for a in everything),
            total_approved=sum_amounts(a.total_amount_approved for a in everything),
            recent=tuple(recent),
        )

    def user_stats(self) -> UserStats:
        users = self._gateway.users
        by_role = {role.value: users.count({"role": role}) for role in ActorRole}
        recent = users.find_all(
            order_by=(("created_at", True), ("email", False)),
            limit=self._recent_limit,
        )
        return UserStats(
            total=users.count(),
            active=users.count({"is_active": True}),
            by_role=by_role,
            reviewers=sum(by_role[role.value] for role in REVIEWER_ROLES),
            recent=tuple(recent),
        )

    def system_stats(self) -> SystemStats:
        now = self._clock.now()
        return SystemStats(
            provider=self._gateway.provider,
            connected=self._gateway.is_connected(),
            transactions=self._gateway.capabilities.transactions,
            raw_query=self._gateway.capabilities.raw_query,
            environment=self._environment,
            uptime_seconds=(now - self._started_at).total_seconds(),
            generated_at=now,
        )

    def snapshot(self) -> DashboardSnapshot:
        result = DashboardSnapshot(
            application_stats=self.application_stats(),
            user_stats=self.user_stats(),
            system_stats=self.system_stats(),
        )
        logger.debug(
            "dashboard_snapshot_built",
            extra={
                "applications": result.application_stats.total,
                "users": result.user_stats.total,
            },
        )
        return result
