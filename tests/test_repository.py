from __future__ import annotations

import threading

from audioscholar.services.storage import AudioScholarRepository


def _add_user(repository: AudioScholarRepository, user_id: str = "user-1", email: str = "ada@example.com") -> str:
    return repository.add_user(user_id, email, first_name="Ada", last_name="Lovelace")


def test_repository_user_and_session_cycle(repository: AudioScholarRepository) -> None:
    user_id = _add_user(repository)

    user = repository.get_user(user_id)
    assert user is not None
    assert user.roles == ["ROLE_USER"]
    assert not user.is_admin
    assert repository.find_user_by_email("ADA@example.com").id == user_id

    repository.update_user_profile(user_id, display_name="Countess", profile_image_url="http://img")
    repository.set_user_roles(user_id, ["ROLE_USER", "ROLE_ADMIN"])
    updated = repository.get_user(user_id)
    assert updated.display_name == "Countess"
    assert updated.first_name == "Ada"
    assert updated.profile_image_url == "http://img"
    assert updated.is_admin

    repository.create_session(user_id, "token-a")
    repository.create_session(user_id, "token-b")
    assert repository.get_session_user("token-a").id == user_id

    repository.delete_sessions_for_user(user_id, keep="token-b")
    assert repository.get_session_user("token-a") is None
    assert repository.get_session_user("token-b") is not None

    repository.delete_session("token-b")
    assert repository.get_session_user("token-b") is None


def test_repository_users_are_paged_in_insertion_order(repository: AudioScholarRepository) -> None:
    for index in range(5):
        _add_user(repository, f"user-{index}", f"user{index}@example.com")

    first_page = repository.iter_users(2)
    second_page = repository.iter_users(2, start_after=first_page[-1].id)

    assert [user.id for user in first_page] == ["user-0", "user-1"]
    assert [user.id for user in second_page] == ["user-2", "user-3"]
    assert repository.iter_users(2, start_after="missing") == []
    assert repository.count_users() == 5


def test_recordings_are_listed_newest_first_with_cursor(repository: AudioScholarRepository) -> None:
    user_id = _add_user(repository)
    for index in range(5):
        repository.add_recording(
            f"rec-{index}",
            user_id,
            file_name=f"lecture-{index}.mp3",
            audio_path=f"uploads/{user_id}/rec-{index}/lecture.mp3",
        )

    first_page = repository.iter_recordings_for_user(user_id, page_size=2)
    assert [record.id for record in first_page] == ["rec-4", "rec-3"]

    second_page = repository.iter_recordings_for_user(user_id, page_size=2, last_id="rec-3")
    assert [record.id for record in second_page] == ["rec-2", "rec-1"]

    assert repository.iter_recordings_for_user(user_id, last_id="missing") == []
    assert repository.iter_recordings_for_user("someone-else") == []


def test_recording_status_and_favorites(repository: AudioScholarRepository) -> None:
    owner = _add_user(repository)
    fan = _add_user(repository, "user-2", "grace@example.com")
    repository.add_recording("rec-1", owner, file_name="a.mp3", audio_path="a.mp3", title="Intro")

    repository.update_recording_status("rec-1", "FAILED", failure_reason="boom")
    record = repository.get_recording("rec-1")
    assert record.status == "FAILED"
    assert record.failure_reason == "boom"

    assert repository.add_favorite(fan, "rec-1") is True
    assert repository.add_favorite(fan, "rec-1") is False
    assert repository.add_favorite(owner, "rec-1") is True
    assert repository.get_recording("rec-1").favorite_count == 2

    assert repository.remove_favorite(fan, "rec-1") is True
    assert repository.remove_favorite(fan, "rec-1") is False
    assert repository.get_recording("rec-1").favorite_count == 1
    assert [record.id for record in repository.top_recordings_by_favorites()] == ["rec-1"]


def test_summary_upsert_keeps_id_and_deletion_cascades(repository: AudioScholarRepository) -> None:
    user_id = _add_user(repository)
    repository.add_recording("rec-1", user_id, file_name="a.mp3", audio_path="a.mp3")

    first_id = repository.upsert_summary(
        "sum-1", "rec-1", formatted_summary_text="First", key_points=["one"]
    )
    second_id = repository.upsert_summary(
        "sum-2", "rec-1", formatted_summary_text="Second", topics=["Physics"]
    )
    assert first_id == second_id == "sum-1"

    summary = repository.get_summary_for_recording("rec-1")
    assert summary.formatted_summary_text == "Second"
    assert summary.topics == ["Physics"]

    repository.update_summary("sum-1", glossary=[{"term": "Force", "definition": "A push"}])
    assert repository.get_summary("sum-1").glossary == [{"term": "Force", "definition": "A push"}]

    repository.add_note("note-1", user_id, "rec-1", "remember this", ["exam"])
    assert [note.id for note in repository.iter_notes_for_recording("rec-1")] == ["note-1"]

    assert repository.remove_recording("rec-1") is True
    assert repository.remove_recording("rec-1") is False
    assert repository.get_summary("sum-1") is None
    assert repository.get_note("note-1") is None


def test_repository_emits_db_events(repository: AudioScholarRepository) -> None:
    events = []
    repository.configure_event_emitter(lambda event_type, message, **kwargs: events.append(event_type))

    _add_user(repository)

    assert "DB_QUERY" in events


def test_concurrent_inserts_keep_every_recording_reachable(repository: AudioScholarRepository) -> None:
    user_id = _add_user(repository)
    workers = 12
    barrier = threading.Barrier(workers)
    errors = []

    def insert(index: int) -> None:
        barrier.wait()
        try:
            repository.add_recording(
                f"rec-{index}", user_id, file_name="a.mp3", audio_path=f"rec-{index}/a.mp3"
            )
        except Exception as error:  # pragma: no cover - reported below
            errors.append(error)

    threads = [threading.Thread(target=insert, args=(index,)) for index in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    seen = []
    last_id = None
    while True:
        page = repository.iter_recordings_for_user(user_id, page_size=5, last_id=last_id)
        if not page:
            break
        seen.extend(record.id for record in page)
        last_id = page[-1].id
    assert sorted(seen) == sorted(f"rec-{index}" for index in range(workers))
