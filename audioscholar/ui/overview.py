"""A Rich-powered console overview of users, recordings and their status."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..services.analytics import (
    ActivityStats,
    AnalyticsOverview,
    AnalyticsService,
    ContentEngagement,
    UserDistribution,
)
from ..services.recordings import format_duration
from ..services.status import UPLOAD_TIMEOUT_SECONDS, StatusBadge, describe_status
from ..services.storage import AudioScholarRepository, RecordingRecord


BADGE_ICONS: Dict[str, str] = {
    "check-circle": "✅",
    "alert-triangle": "⚠️",
    "loader": "⏳",
    "upload-cloud": "☁️",
    "clock": "🕒",
}


@dataclass
class RecordingOverview:
    record: RecordingRecord
    badge: StatusBadge


@dataclass
class OverviewSnapshot:
    overview: AnalyticsOverview
    activity: ActivityStats
    distribution: UserDistribution
    engagement: List[ContentEngagement]
    recordings: List[RecordingOverview]


def collect_overview(
    repository: AudioScholarRepository,
    *,
    now: Optional[datetime] = None,
    limit: int = 50,
    timeout_seconds: int = UPLOAD_TIMEOUT_SECONDS,
) -> OverviewSnapshot:
    """Aggregate analytics and the most recent recordings into one snapshot."""

    analytics = AnalyticsService(repository)
    records = sorted(
        repository.iter_all_recordings(),
        key=lambda record: record.upload_timestamp or "",
        reverse=True,
    )[:limit]
    recordings = [
        RecordingOverview(
            record=record,
            badge=describe_status(
                record.status,
                record.failure_reason,
                record.upload_timestamp,
                now,
                timeout_seconds=timeout_seconds,
            ),
        )
        for record in records
    ]
    return OverviewSnapshot(
        overview=analytics.get_overview(),
        activity=analytics.get_activity(),
        distribution=analytics.get_user_distribution(),
        engagement=analytics.get_content_engagement(),
        recordings=recordings,
    )


def format_badge(badge: StatusBadge) -> Text:
    icon = BADGE_ICONS.get(badge.icon, "")
    return Text(f"{icon} {badge.label}".strip(), style=f"bold {badge.color}")


def _format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


class OverviewUI:
    """Render the admin overview using Rich widgets."""

    def __init__(
        self,
        repository: AudioScholarRepository,
        *,
        console: Optional[Console] = None,
        now: Optional[datetime] = None,
        timeout_seconds: int = UPLOAD_TIMEOUT_SECONDS,
    ) -> None:
        self._repository = repository
        self._console = console or Console()
        self._now = now
        self._timeout_seconds = timeout_seconds

    def run(self) -> None:
        snapshot = collect_overview(
            self._repository, now=self._now, timeout_seconds=self._timeout_seconds
        )
        console = self._console

        console.rule("[bold magenta]AudioScholar Overview")
        console.print(
            Columns(
                [self._build_totals_panel(snapshot), self._build_distribution_panel(snapshot)],
                expand=True,
                equal=True,
            )
        )

        if not snapshot.recordings:
            console.print(
                Panel(
                    "No recordings have been uploaded yet.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        console.print(self._build_recordings_table(snapshot.recordings))
        if snapshot.engagement:
            console.print(self._build_engagement_table(snapshot.engagement))

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    def _build_totals_panel(self, snapshot: OverviewSnapshot) -> Panel:
        overview = snapshot.overview
        table = Table.grid(padding=(0, 2))
        table.add_column(style="bold")
        table.add_column(justify="right")
        table.add_row("Users", str(overview.total_users))
        table.add_row("Recordings", str(overview.total_recordings))
        table.add_row("Storage", _format_bytes(overview.total_storage_bytes))
        table.add_row("Audio length", format_duration(overview.total_duration_seconds))
        table.add_row("New users (30 days)", str(sum(snapshot.activity.new_users_last_30_days.values())))
        table.add_row(
            "New recordings (30 days)",
            str(sum(snapshot.activity.new_recordings_last_30_days.values())),
        )
        return Panel(table, title="Totals", border_style="cyan", box=box.ROUNDED)

    def _build_distribution_panel(self, snapshot: OverviewSnapshot) -> Panel:
        table = Table(box=box.SIMPLE_HEAVY, expand=True)
        table.add_column("Group", style="bold")
        table.add_column("Value")
        table.add_column("Users", justify="right")
        for provider, count in sorted(snapshot.distribution.users_by_provider.items()):
            table.add_row("Provider", provider, str(count))
        for role, count in sorted(snapshot.distribution.users_by_role.items()):
            table.add_row("Role", role, str(count))
        return Panel(table, title="Users", border_style="cyan", box=box.ROUNDED)

    def _build_recordings_table(self, recordings: List[RecordingOverview]) -> Table:
        table = Table(title="Recordings", box=box.ROUNDED, expand=True)
        table.add_column("Title", style="bold")
        table.add_column("Owner", style="dim")
        table.add_column("Duration", justify="right")
        table.add_column("Favorites", justify="right")
        table.add_column("Status")
        for item in recordings:
            record = item.record
            table.add_row(
                record.title or record.file_name,
                record.user_id,
                record.duration or "-",
                str(record.favorite_count),
                format_badge(item.badge),
            )
        return table

    def _build_engagement_table(self, engagement: List[ContentEngagement]) -> Table:
        table = Table(title="Most favorited", box=box.SIMPLE, expand=True)
        table.add_column("Recording")
        table.add_column("Favorites", justify="right")
        for item in engagement:
            table.add_row(item.title or item.recording_id, str(item.favorite_count))
        return table


__all__ = [
    "BADGE_ICONS",
    "OverviewSnapshot",
    "OverviewUI",
    "RecordingOverview",
    "collect_overview",
    "format_badge",
]
