"""
Read-side analytics over recorded usage events.

Every rollup is scoped to one tenant and a lookback window in days. Events
are bucketed by UTC day (YYYY-MM-DD). Analytics is best-effort: a failure
while reading the store is logged and answered with the empty result shape
of the requested kind, never raised.
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from ..config import AppConfig, get_config
from ..constants import (
    AUTHENTICATION_EVENT_TYPES,
    TOTP_EVENT_TYPES,
    AnalyticsKind,
    BackupCodeUsageThresholds,
    BusinessHours,
    EventType,
    SuspiciousActivityThresholds,
)
from ..context.operation_context import operation
from ..db.db_base import ensure_utc, utc_now
from ..db.db_usage_models import UsageEvent
from ..exceptions import ErrorCode, ValidationError
from ..schemas.usage_schemas import UsageEventRead
from ..utils.logger import ContextAwareLogger
from ..utils.user_agent_utils import classify_user_agent
from .base_service import SessionManagedService
from .usage_service import UsageService

AnalyticsResult = Dict[str, Any]

AUTH_EVENT_VALUES = tuple(event_type.value for event_type in AUTHENTICATION_EVENT_TYPES)
TOTP_EVENT_VALUES = tuple(event_type.value for event_type in TOTP_EVENT_TYPES)


def empty_result(kind: Union[AnalyticsKind, str]) -> AnalyticsResult:
    """Zeroed result shape for a rollup kind."""
    kind = AnalyticsKind(kind)
    if kind == AnalyticsKind.BUSINESS_STATS:
        return {
            "stats": [],
            "summary": {
                "total_events": 0,
                "successful_events": 0,
                "failed_events": 0,
                "success_rate": "0%",
            },
        }
    if kind == AnalyticsKind.TOTP_STATS:
        return {
            "stats": [],
            "summary": {
                "setup_success_rate": "N/A",
                "validation_success_rate": "N/A",
                "total_setups": 0,
                "total_validations": 0,
                "total_backup_codes_used": 0,
            },
        }
    if kind == AnalyticsKind.FAILURE_ANALYTICS:
        return {"failures": [], "total_events": 0, "total_failures": 0, "failure_rate": "0%"}
    if kind == AnalyticsKind.USER_STATS:
        return {
            "total_attempts": 0,
            "successful_attempts": 0,
            "failed_attempts": 0,
            "success_rate": "0%",
            "attempts_by_day": [],
        }
    if kind == AnalyticsKind.SUSPICIOUS_ACTIVITY:
        return {"suspicious_users": [], "suspicious_users_count": 0, "recent_events": []}
    if kind == AnalyticsKind.DEVICE_BREAKDOWN:
        return {"device_types": {}, "browsers": {}, "detailed_breakdown": []}
    if kind == AnalyticsKind.BACKUP_CODE_USAGE:
        return {
            "backup_code_stats": [],
            "totp_validations": 0,
            "backup_code_uses": 0,
            "backup_to_totp_ratio": "0%",
            "frequent_backup_users": [],
        }
    return {
        "day_over_day": [],
        "business_hours": {
            "business_hours_count": 0,
            "off_hours_count": 0,
            "business_hours_percentage": "0%",
        },
    }


def format_percent(numerator: int, denominator: int, empty: str = "0%") -> str:
    if not denominator:
        return empty
    return f"{numerator / denominator * 100:.2f}%"


def format_percent_change(current: int, previous: int) -> str:
    """Signed percent change, e.g. "+50.00%"; "N/A" when there is no baseline."""
    if previous <= 0:
        return "N/A"
    change = round((current - previous) / previous * 100, 2)
    if change == 0:
        return "0.00%"
    return f"{change:+.2f}%"


def _day(timestamp: datetime) -> str:
    return ensure_utc(timestamp).strftime("%Y-%m-%d")


class AnalyticsService(SessionManagedService):
    """Tenant-scoped rollups over usage events."""

    def __init__(
        self,
        session: Optional[Session] = None,
        usage_service: Optional[UsageService] = None,
        config: Optional[AppConfig] = None,
        logger: Optional[ContextAwareLogger] = None,
    ):
        super().__init__(session=session, logger=logger)
        self.usage_service = usage_service or UsageService(session=self.session)
        self.config = config or get_config()

    # ==================== PLUMBING ====================

    def _resolve_period(self, period_days: Optional[int], default: int) -> int:
        if period_days is None:
            return default
        if not isinstance(period_days, int) or isinstance(period_days, bool):
            raise ValidationError(
                "period_days must be an integer",
                field="period_days",
                error_code=ErrorCode.TYPE_MISMATCH,
                value=period_days,
            )
        if period_days < 1 or period_days > self.config.analytics.max_period_days:
            raise ValidationError(
                f"period_days must be between 1 and {self.config.analytics.max_period_days}",
                field="period_days",
                error_code=ErrorCode.VALIDATION_FAILED,
                value=period_days,
            )
        return period_days

    def _load_events(
        self,
        tenant_id: str,
        since: datetime,
        event_types: Optional[Iterable[str]] = None,
        external_user_id: Optional[str] = None,
    ) -> List[UsageEvent]:
        query = self.session.query(UsageEvent).filter(
            UsageEvent.tenant_id == tenant_id, UsageEvent.timestamp >= since
        )
        if event_types is not None:
            query = query.filter(UsageEvent.event_type.in_(list(event_types)))
        if external_user_id is not None:
            query = query.filter(UsageEvent.external_user_id == external_user_id)
        return query.order_by(UsageEvent.timestamp.asc()).all()

    def _run(
        self,
        kind: AnalyticsKind,
        tenant_id: str,
        period_days: int,
        compute: Callable[[datetime], AnalyticsResult],
        external_user_id: Optional[str] = None,
    ) -> AnalyticsResult:
        """Compute a rollup, degrading to the empty shape on failure, then record the access."""
        since = utc_now() - timedelta(days=period_days)
        try:
            result = compute(since)
            degraded = False
        except Exception as e:
            try:
                self.session.rollback()
            except Exception as rollback_error:
                self.logger.warning(
                    "Rollback after failed analytics read also failed",
                    extra={"error": str(rollback_error)},
                )
            self.logger.error(
                f"Error computing {kind.value}, returning empty result",
                extra={
                    "tenant_id": tenant_id,
                    "kind": kind.value,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            result = empty_result(kind)
            degraded = True

        self.usage_service.record_event(
            tenant_id=tenant_id,
            event_type=EventType.ANALYTICS_ACCESS,
            success=not degraded,
            external_user_id=external_user_id,
            details={"kind": kind.value, "period_days": period_days},
        )
        result["period_days"] = period_days
        return result

    # ==================== ROLLUPS ====================

    @operation()
    def get_business_stats(self, tenant_id: str, period_days: Optional[int] = None) -> AnalyticsResult:
        """
        Per (event_type, success) daily counts plus an authentication success summary.

        The summary success rate is "100%" when there were no authentication events.
        """
        period = self._resolve_period(period_days, self.config.analytics.default_period_days)

        def compute(since: datetime) -> AnalyticsResult:
            events = self._load_events(tenant_id, since)

            daily: Dict[tuple, Counter] = defaultdict(Counter)
            for event in events:
                daily[(event.event_type, bool(event.success))][_day(event.timestamp)] += 1

            stats = [
                {
                    "event_type": event_type,
                    "success": success,
                    "daily_counts": [
                        {"date": day, "count": count} for day, count in sorted(counts.items())
                    ],
                    "total_count": sum(counts.values()),
                }
                for (event_type, success), counts in daily.items()
            ]
            stats.sort(key=lambda row: (row["event_type"], not row["success"]))

            auth_events = [e for e in events if e.event_type in AUTH_EVENT_VALUES]
            successful = sum(1 for e in auth_events if e.success)
            return {
                "stats": stats,
                "summary": {
                    "total_events": len(auth_events),
                    "successful_events": successful,
                    "failed_events": len(auth_events) - successful,
                    "success_rate": format_percent(successful, len(auth_events), empty="100%"),
                },
            }

        return self._run(AnalyticsKind.BUSINESS_STATS, tenant_id, period, compute)

    @operation()
    def get_totp_stats(self, tenant_id: str, period_days: Optional[int] = None) -> AnalyticsResult:
        """Daily setup, validation and backup-code counts with success-rate summary."""
        period = self._resolve_period(period_days, self.config.analytics.default_period_days)

        def compute(since: datetime) -> AnalyticsResult:
            events = self._load_events(tenant_id, since, TOTP_EVENT_VALUES)

            counts: Counter = Counter(
                (_day(e.timestamp), e.event_type, bool(e.success)) for e in events
            )
            stats = [
                {"date": day, "event_type": event_type, "success": success, "count": count}
                for (day, event_type, success), count in sorted(
                    counts.items(), key=lambda item: (item[0][0], item[0][1], not item[0][2])
                )
            ]

            def total(event_type: EventType, success_only: bool = False) -> int:
                return sum(
                    1
                    for e in events
                    if e.event_type == event_type.value and (e.success or not success_only)
                )

            setups = total(EventType.TOTP_SETUP)
            validations = total(EventType.TOTP_VALIDATION)
            return {
                "stats": stats,
                "summary": {
                    "setup_success_rate": format_percent(
                        total(EventType.TOTP_SETUP, True), setups, empty="N/A"
                    ),
                    "validation_success_rate": format_percent(
                        total(EventType.TOTP_VALIDATION, True), validations, empty="N/A"
                    ),
                    "total_setups": setups,
                    "total_validations": validations,
                    "total_backup_codes_used": total(EventType.BACKUP_CODE_USED),
                },
            }

        return self._run(AnalyticsKind.TOTP_STATS, tenant_id, period, compute)

    @operation()
    def get_failure_stats(self, tenant_id: str, period_days: Optional[int] = None) -> AnalyticsResult:
        """Failures by (event_type, day) and the overall failure rate across all events."""
        period = self._resolve_period(period_days, self.config.analytics.default_period_days)

        def compute(since: datetime) -> AnalyticsResult:
            events = self._load_events(tenant_id, since)
            failed = [e for e in events if not e.success]

            counts: Counter = Counter((_day(e.timestamp), e.event_type) for e in failed)
            return {
                "failures": [
                    {"date": day, "event_type": event_type, "count": count}
                    for (day, event_type), count in sorted(counts.items())
                ],
                "total_events": len(events),
                "total_failures": len(failed),
                "failure_rate": format_percent(len(failed), len(events)),
            }

        return self._run(AnalyticsKind.FAILURE_ANALYTICS, tenant_id, period, compute)

    @operation()
    def get_user_totp_stats(
        self, tenant_id: str, external_user_id: str, period_days: Optional[int] = None
    ) -> AnalyticsResult:
        """TOTP validation history of one external user."""
        period = self._resolve_period(period_days, self.config.analytics.default_period_days)

        def compute(since: datetime) -> AnalyticsResult:
            attempts = self._load_events(
                tenant_id,
                since,
                (EventType.TOTP_VALIDATION.value,),
                external_user_id=external_user_id,
            )
            successful = sum(1 for e in attempts if e.success)

            by_day: Counter = Counter((_day(e.timestamp), bool(e.success)) for e in attempts)
            return {
                "external_user_id": external_user_id,
                "total_attempts": len(attempts),
                "successful_attempts": successful,
                "failed_attempts": len(attempts) - successful,
                "success_rate": format_percent(successful, len(attempts)),
                "attempts_by_day": [
                    {"date": day, "success": success, "count": count}
                    for (day, success), count in sorted(
                        by_day.items(), key=lambda item: (item[0][0], not item[0][1])
                    )
                ],
            }

        result = self._run(
            AnalyticsKind.USER_STATS, tenant_id, period, compute, external_user_id=external_user_id
        )
        result.setdefault("external_user_id", external_user_id)
        return result

    @operation()
    def get_suspicious_activity(
        self, tenant_id: str, period_days: Optional[int] = None
    ) -> AnalyticsResult:
        """
        Flag users whose authentication attempts look abusive.

        A user is flagged when any of these holds: more than 5 failed
        attempts, more than 3 distinct source IPs, or a failure rate above 40%.
        The flagged users' most recent authentication events are returned as
        evidence, newest first and capped at 20.
        """
        period = self._resolve_period(period_days, self.config.analytics.default_period_days)

        def compute(since: datetime) -> AnalyticsResult:
            events = self._load_events(tenant_id, since, AUTH_EVENT_VALUES)

            per_user: Dict[Optional[str], Dict[str, Any]] = {}
            for event in events:
                activity = per_user.setdefault(
                    event.external_user_id, {"total": 0, "failed": 0, "ips": set()}
                )
                activity["total"] += 1
                if not event.success:
                    activity["failed"] += 1
                if event.ip_address:
                    activity["ips"].add(event.ip_address)

            suspicious_users = []
            for user_id, activity in per_user.items():
                reasons = []
                if activity["failed"] > SuspiciousActivityThresholds.MAX_FAILED_ATTEMPTS:
                    reasons.append("high_failures")
                if len(activity["ips"]) > SuspiciousActivityThresholds.MAX_DISTINCT_IPS:
                    reasons.append("multiple_ips")
                if (
                    activity["total"] > 0
                    and activity["failed"] / activity["total"]
                    > SuspiciousActivityThresholds.MAX_FAILURE_RATE
                ):
                    reasons.append("high_failure_rate")
                if reasons:
                    suspicious_users.append(
                        {
                            "external_user_id": user_id,
                            "total_attempts": activity["total"],
                            "failed_attempts": activity["failed"],
                            "unique_ips": sorted(activity["ips"]),
                            "reasons": reasons,
                        }
                    )
            suspicious_users.sort(
                key=lambda user: (-user["failed_attempts"], str(user["external_user_id"]))
            )

            flagged = {user["external_user_id"] for user in suspicious_users}
            evidence = [e for e in reversed(events) if e.external_user_id in flagged]
            return {
                "suspicious_users": suspicious_users,
                "suspicious_users_count": len(suspicious_users),
                "recent_events": [
                    UsageEventRead.model_validate(e).model_dump(mode="json")
                    for e in evidence[: SuspiciousActivityThresholds.RECENT_EVENTS_LIMIT]
                ],
            }

        return self._run(AnalyticsKind.SUSPICIOUS_ACTIVITY, tenant_id, period, compute)

    @operation()
    def get_device_breakdown(self, tenant_id: str, period_days: Optional[int] = None) -> AnalyticsResult:
        """Counts by device type and browser family, classified from recorded user agents."""
        period = self._resolve_period(period_days, self.config.analytics.default_period_days)

        def compute(since: datetime) -> AnalyticsResult:
            events = [e for e in self._load_events(tenant_id, since) if e.user_agent]

            groups: Dict[tuple, Dict[str, Any]] = {}
            for event in events:
                key = classify_user_agent(event.user_agent)
                group = groups.setdefault(key, {"count": 0, "success_count": 0, "users": set()})
                group["count"] += 1
                if event.success:
                    group["success_count"] += 1
                if event.external_user_id:
                    group["users"].add(event.external_user_id)

            detailed = [
                {
                    "device_type": device_type,
                    "browser": browser,
                    "count": group["count"],
                    "success_count": group["success_count"],
                    "users": sorted(group["users"]),
                }
                for (device_type, browser), group in groups.items()
            ]
            detailed.sort(key=lambda row: (-row["count"], row["device_type"], row["browser"]))

            device_types: Counter = Counter()
            browsers: Counter = Counter()
            for row in detailed:
                device_types[row["device_type"]] += row["count"]
                browsers[row["browser"]] += row["count"]

            return {
                "device_types": dict(device_types),
                "browsers": dict(browsers),
                "detailed_breakdown": detailed,
            }

        return self._run(AnalyticsKind.DEVICE_BREAKDOWN, tenant_id, period, compute)

    @operation()
    def get_backup_code_usage(
        self, tenant_id: str, period_days: Optional[int] = None
    ) -> AnalyticsResult:
        """Backup-code usage per day, its ratio to TOTP validations, and the heaviest users."""
        period = self._resolve_period(period_days, self.config.analytics.default_period_days)

        def compute(since: datetime) -> AnalyticsResult:
            events = self._load_events(tenant_id, since, AUTH_EVENT_VALUES)
            backup_events = [e for e in events if e.event_type == EventType.BACKUP_CODE_USED.value]
            totp_count = len(events) - len(backup_events)

            daily: Dict[tuple, Dict[str, Any]] = {}
            for event in backup_events:
                key = (_day(event.timestamp), bool(event.success))
                row = daily.setdefault(key, {"count": 0, "users": set()})
                row["count"] += 1
                if event.external_user_id:
                    row["users"].add(event.external_user_id)

            per_user: Counter = Counter(
                e.external_user_id for e in backup_events if e.external_user_id
            )
            frequent = [
                {"external_user_id": user_id, "backup_use_count": count}
                for user_id, count in sorted(per_user.items(), key=lambda item: (-item[1], item[0]))
                if count > BackupCodeUsageThresholds.MIN_USES
            ][: BackupCodeUsageThresholds.TOP_USERS]

            return {
                "backup_code_stats": [
                    {
                        "date": day,
                        "success": success,
                        "count": row["count"],
                        "unique_users": sorted(row["users"]),
                    }
                    for (day, success), row in sorted(
                        daily.items(), key=lambda item: (item[0][0], not item[0][1])
                    )
                ],
                "totp_validations": totp_count,
                "backup_code_uses": len(backup_events),
                "backup_to_totp_ratio": format_percent(len(backup_events), totp_count),
                "frequent_backup_users": frequent,
            }

        return self._run(AnalyticsKind.BACKUP_CODE_USAGE, tenant_id, period, compute)

    @operation()
    def get_time_comparisons(
        self, tenant_id: str, period_days: Optional[int] = None
    ) -> AnalyticsResult:
        """
        Day-over-day authentication volume and business-hours split.

        Each day with activity is compared with the previous day that had
        activity. Business hours are 09:00 to 16:59 UTC.
        """
        period = self._resolve_period(
            period_days, self.config.analytics.default_time_comparison_days
        )

        def compute(since: datetime) -> AnalyticsResult:
            events = self._load_events(tenant_id, since, AUTH_EVENT_VALUES)

            days: Dict[str, List[int]] = {}
            business_hours = off_hours = 0
            for event in events:
                timestamp = ensure_utc(event.timestamp)
                hourly = days.setdefault(_day(timestamp), [0] * 24)
                hourly[timestamp.hour] += 1
                if BusinessHours.START_HOUR <= timestamp.hour < BusinessHours.END_HOUR:
                    business_hours += 1
                else:
                    off_hours += 1

            ordered = sorted(days)
            day_over_day = []
            for previous_day, current_day in zip(ordered, ordered[1:]):
                current_total = sum(days[current_day])
                previous_total = sum(days[previous_day])
                day_over_day.append(
                    {
                        "date": current_day,
                        "total_count": current_total,
                        "previous_day_count": previous_total,
                        "percent_change": format_percent_change(current_total, previous_total),
                        "hourly_breakdown": days[current_day],
                    }
                )

            return {
                "day_over_day": day_over_day,
                "business_hours": {
                    "business_hours_count": business_hours,
                    "off_hours_count": off_hours,
                    "business_hours_percentage": format_percent(
                        business_hours, business_hours + off_hours
                    ),
                },
            }

        return self._run(AnalyticsKind.TIME_COMPARISONS, tenant_id, period, compute)

    # ==================== DISPATCH ====================

    def get_analytics(
        self,
        tenant_id: str,
        kind: Union[AnalyticsKind, str],
        period_days: Optional[int] = None,
        external_user_id: Optional[str] = None,
    ) -> AnalyticsResult:
        """
        Compute the rollup named by kind.

        Args:
            tenant_id: Tenant to report on
            kind: AnalyticsKind or its string value
            period_days: Lookback window; per-kind default when omitted
            external_user_id: Required for user_stats

        Raises:
            ValidationError: If the kind is unknown, period_days is out of range,
                or user_stats is requested without external_user_id
        """
        try:
            kind = AnalyticsKind(kind)
        except ValueError as e:
            raise ValidationError(
                f"Unknown analytics kind: {kind}",
                field="kind",
                error_code=ErrorCode.INVALID_FORMAT,
                cause=e,
            )

        if kind == AnalyticsKind.USER_STATS:
            if not external_user_id:
                raise ValidationError(
                    "external_user_id is required for user_stats",
                    field="external_user_id",
                    error_code=ErrorCode.MISSING_REQUIRED,
                )
            return self.get_user_totp_stats(tenant_id, external_user_id, period_days)

        handlers = {
            AnalyticsKind.BUSINESS_STATS: self.get_business_stats,
            AnalyticsKind.TOTP_STATS: self.get_totp_stats,
            AnalyticsKind.FAILURE_ANALYTICS: self.get_failure_stats,
            AnalyticsKind.SUSPICIOUS_ACTIVITY: self.get_suspicious_activity,
            AnalyticsKind.DEVICE_BREAKDOWN: self.get_device_breakdown,
            AnalyticsKind.BACKUP_CODE_USAGE: self.get_backup_code_usage,
            AnalyticsKind.TIME_COMPARISONS: self.get_time_comparisons,
        }
        return handlers[kind](tenant_id, period_days)
