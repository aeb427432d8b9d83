from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from audioscholar.services.status import (
    any_needs_polling,
    describe_status,
    elapsed_since_upload,
    needs_polling,
)


NOW = datetime(2024, 5, 31, 12, 0, tzinfo=timezone.utc)
RECENT = (NOW - timedelta(minutes=2)).isoformat()
STALE = (NOW - timedelta(minutes=15)).isoformat()


@pytest.mark.parametrize(
    ("status", "label", "color", "icon", "spinning"),
    [
        ("COMPLETED", "Completed", "green", "check-circle", False),
        ("complete", "Completed", "green", "check-circle", False),
        ("COMPLETED_WITH_WARNINGS", "Completed w/ Warn", "yellow", "alert-triangle", False),
        ("SUMMARY_FAILED", "Failed", "red", "alert-triangle", False),
        ("TRANSCRIBING", "Processing", "yellow", "loader", True),
        ("UPLOADED", "Uploading", "blue", "upload-cloud", True),
        ("SOMETHING_NEW", "Unknown", "gray", "clock", False),
        (None, "Unknown", "gray", "clock", False),
    ],
)
def test_describe_status_badges(status, label, color, icon, spinning) -> None:
    badge = describe_status(status, upload_timestamp=RECENT, now=NOW)

    assert (badge.label, badge.color, badge.icon, badge.spinning) == (label, color, icon, spinning)


def test_failed_badge_title_includes_reason() -> None:
    badge = describe_status("FAILED", "Transcription failed: boom", RECENT, NOW)

    assert badge.title == "Failed: Transcription failed: boom (Backend: FAILED)"


def test_stale_upload_is_reported_as_processing_upload() -> None:
    badge = describe_status("UPLOAD_IN_PROGRESS", upload_timestamp=STALE, now=NOW)

    assert badge.label == "Processing Upload"
    assert badge.icon == "clock"
    assert not badge.spinning
    assert badge.title == (
        "Upload received 15 mins ago, processing initiated. Status: UPLOAD_IN_PROGRESS"
    )


def test_elapsed_since_upload_accepts_several_timestamp_shapes() -> None:
    epoch = NOW.timestamp() - 60

    assert elapsed_since_upload(epoch, NOW) == pytest.approx(60)
    assert elapsed_since_upload({"seconds": epoch, "nanos": 0}, NOW) == pytest.approx(60)
    assert elapsed_since_upload(NOW - timedelta(seconds=60), NOW) == pytest.approx(60)
    assert elapsed_since_upload("2024-05-31T11:59:00Z", NOW) == pytest.approx(60)
    assert elapsed_since_upload(None, NOW) == 0
    assert elapsed_since_upload("not a date", NOW) == 0


def test_needs_polling_rules() -> None:
    assert needs_polling("TRANSCRIBING", RECENT, NOW)
    assert needs_polling("UPLOADED", RECENT, NOW)
    assert not needs_polling("UPLOADED", STALE, NOW)
    assert not needs_polling("COMPLETED", RECENT, NOW)
    assert needs_polling(None, None, NOW)


def test_any_needs_polling_accepts_mappings() -> None:
    finished = {"status": "COMPLETED", "uploadTimestamp": RECENT}
    running = {"status": "SUMMARIZING", "uploadTimestamp": RECENT}

    assert not any_needs_polling([finished], NOW)
    assert any_needs_polling([finished, running], NOW)
    assert not any_needs_polling([], NOW)
