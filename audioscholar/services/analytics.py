"""Aggregate statistics for the admin dashboard."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from .storage import AudioScholarRepository


LOGGER = logging.getLogger(__name__)

ROLE_USER = "ROLE_USER"
ACTIVITY_WINDOW_DAYS = 30
TOP_CONTENT_LIMIT = 10


@dataclass
class AnalyticsOverview:
    total_users: int
    total_recordings: int
    total_storage_bytes: int
    total_duration_seconds: int


@dataclass
class ActivityStats:
    new_users_last_30_days: Dict[str, int] = field(default_factory=dict)
    new_recordings_last_30_days: Dict[str, int] = field(default_factory=dict)


@dataclass
class UserDistribution:
    users_by_provider: Dict[str, int] = field(default_factory=dict)
    users_by_role: Dict[str, int] = field(default_factory=dict)


@dataclass
class ContentEngagement:
    recording_id: str
    title: Optional[str]
    favorite_count: int


def parse_duration(text: Optional[str]) -> int:
    """Return whole seconds for ``HH:MM:SS``, ``MM:SS`` or a raw seconds value.

    Blank or unparsable input counts as zero.
    """

    if text is None or not str(text).strip():
        return 0
    value = str(text).strip()
    parts = value.split(":")
    try:
        if len(parts) == 3:
            return int(parts[0]) * 3600 + int(parts[1]) * 60 + int(parts[2])
        if len(parts) == 2:
            return int(parts[0]) * 60 + int(parts[1])
        return int(float(value))
    except (ValueError, OverflowError):
        return 0


def _date_key(timestamp: str) -> Optional[str]:
    try:
        parsed = datetime.fromisoformat(timestamp)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).date().isoformat()


class AnalyticsService:
    """Compute admin analytics straight from the repository tables."""

    def __init__(
        self,
        repository: AudioScholarRepository,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._repository = repository
        self._now = now

    def get_overview(self) -> AnalyticsOverview:
        LOGGER.info("Fetching overview stats")
        recordings = self._repository.iter_all_recordings()
        return AnalyticsOverview(
            total_users=self._repository.count_users(),
            total_recordings=self._repository.count_recordings(),
            total_storage_bytes=sum(max(recording.file_size, 0) for recording in recordings),
            total_duration_seconds=sum(parse_duration(recording.duration) for recording in recordings),
        )

    def get_activity(self) -> ActivityStats:
        LOGGER.info("Fetching activity stats")
        today = self._now().astimezone(timezone.utc).date()
        window_start = datetime.combine(
            today - timedelta(days=ACTIVITY_WINDOW_DAYS), datetime.min.time(), tzinfo=timezone.utc
        )
        since = window_start.isoformat()

        stats = ActivityStats()
        for user in self._repository.iter_users_since(since):
            key = _date_key(user.created_at)
            if key is not None:
                stats.new_users_last_30_days[key] = stats.new_users_last_30_days.get(key, 0) + 1
        for recording in self._repository.iter_recordings_since(since):
            key = _date_key(recording.created_at)
            if key is not None:
                stats.new_recordings_last_30_days[key] = (
                    stats.new_recordings_last_30_days.get(key, 0) + 1
                )
        return stats

    def get_user_distribution(self) -> UserDistribution:
        LOGGER.info("Fetching user distribution stats")
        distribution = UserDistribution()
        for user in self._repository.iter_all_users():
            provider = user.provider or "unknown"
            distribution.users_by_provider[provider] = distribution.users_by_provider.get(provider, 0) + 1
            roles = [role for role in user.roles if role] or [ROLE_USER]
            for role in roles:
                distribution.users_by_role[role] = distribution.users_by_role.get(role, 0) + 1
        return distribution

    def get_content_engagement(self) -> List[ContentEngagement]:
        LOGGER.info("Fetching content engagement stats")
        return [
            ContentEngagement(
                recording_id=recording.id,
                title=recording.title,
                favorite_count=recording.favorite_count,
            )
            for recording in self._repository.top_recordings_by_favorites(TOP_CONTENT_LIMIT)
        ]


__all__ = [
    "ActivityStats",
    "AnalyticsOverview",
    "AnalyticsService",
    "ContentEngagement",
    "UserDistribution",
    "parse_duration",
]
