"""Tests for ProgressTracker: chunked backfill lifecycle and the Project cache."""
import json
from datetime import date

import pytest
from sqlmodel import Session

from adsync.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidRangeError,
    NotFoundError,
    TerminalStateError,
)
from adsync.models.project import Project
from adsync.models.sync import SyncProgressRecord
from adsync.sync.markers import DateRangeChunk, EntityChunk, decode_marker
from adsync.sync.progress import ProgressTracker

START = date(2025, 1, 1)
END = date(2025, 3, 31)


@pytest.fixture(name="tracker")
def tracker_fixture(engine):
    return ProgressTracker(engine)


def _project(engine, project_id) -> Project:
    with Session(engine) as s:
        return s.get(Project, project_id)


class TestStartBackfill:
    def test_creates_pending_record(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 3)
        record = tracker.get(record_id)
        assert record.status == "pending"
        assert record.completed_chunks == 0
        assert record.total_chunks == 3
        assert record.records_synced == 0
        assert record.sync_type == "historical_backfill"

    def test_sets_project_cache(self, tracker, engine, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 3)
        project = _project(engine, seeded_project.id)
        assert project.webhook_status == "importing_history"
        cache = json.loads(project.sync_progress_json)
        assert cache["record_id"] == record_id
        assert cache["message"] == "0/3 chunks"

    def test_resync_type_marks_project_syncing(self, tracker, engine, seeded_project):
        tracker.start_backfill(seeded_project.id, START, END, 1, sync_type="resync")
        assert _project(engine, seeded_project.id).webhook_status == "syncing"

    def test_reversed_range_rejected(self, tracker, seeded_project):
        with pytest.raises(InvalidRangeError):
            tracker.start_backfill(seeded_project.id, END, START, 3)

    def test_zero_chunks_rejected(self, tracker, seeded_project):
        with pytest.raises(InvalidRangeError):
            tracker.start_backfill(seeded_project.id, START, END, 0)

    def test_second_active_record_conflicts(self, tracker, seeded_project):
        tracker.start_backfill(seeded_project.id, START, END, 3)
        with pytest.raises(ConflictError):
            tracker.start_backfill(seeded_project.id, START, END, 3)

    def test_new_record_allowed_after_terminal(self, tracker, seeded_project):
        first = tracker.start_backfill(seeded_project.id, START, END, 1)
        tracker.fail_backfill(first, "boom")
        second = tracker.start_backfill(seeded_project.id, START, END, 1)
        assert second != first

    def test_unique_index_blocks_concurrent_insert(self, engine, seeded_project):
        """A writer that skipped the pre-check still cannot add a second active row."""
        from sqlalchemy.exc import IntegrityError

        with Session(engine) as s:
            s.add(SyncProgressRecord(
                project_id=seeded_project.id, period_start=START, period_end=END, total_chunks=2,
            ))
            s.commit()
        with Session(engine) as s:
            s.add(SyncProgressRecord(
                project_id=seeded_project.id, period_start=START, period_end=END,
                total_chunks=2, status="syncing",
            ))
            with pytest.raises(IntegrityError):
                s.commit()

    def test_other_projects_unaffected(self, tracker, make_project):
        a = make_project("A")
        b = make_project("B")
        tracker.start_backfill(a.id, START, END, 2)
        tracker.start_backfill(b.id, START, END, 2)
        assert tracker.has_active(a.id)
        assert tracker.has_active(b.id)


class TestAdvanceChunk:
    def test_three_chunk_backfill_end_to_end(self, tracker, engine, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 3)
        for records in (100, 150, 80):
            record = tracker.advance_chunk(record_id, records)

        assert record.status == "completed"
        assert record.completed_chunks == 3
        assert record.records_synced == 330
        assert record.completed_at is not None
        assert record.started_at is not None

        project = _project(engine, seeded_project.id)
        assert project.webhook_status == "idle"
        assert project.sync_progress_json is None
        assert tracker.current_progress(seeded_project.id) is None

    def test_first_advance_claims_pending_record(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 3)
        record = tracker.advance_chunk(record_id, 10)
        assert record.status == "syncing"
        assert record.completed_chunks == 1

    def test_progress_summary_tracks_chunks(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 3)
        tracker.advance_chunk(record_id, 10)
        summary = tracker.current_progress(seeded_project.id)
        assert summary.message == "1/3 chunks"
        assert summary.records_synced == 10

    def test_advance_after_completion_rejected(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 1)
        tracker.advance_chunk(record_id, 5)
        with pytest.raises(TerminalStateError):
            tracker.advance_chunk(record_id, 5)
        assert tracker.get(record_id).completed_chunks == 1

    def test_negative_records_rejected(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 2)
        with pytest.raises(InvalidArgumentError):
            tracker.advance_chunk(record_id, -1)
        assert tracker.get(record_id).completed_chunks == 0

    def test_unknown_record(self, tracker):
        with pytest.raises(NotFoundError):
            tracker.advance_chunk("missing", 1)

    def test_advance_clears_current_chunk(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 2)
        tracker.set_current_chunk(record_id, DateRangeChunk(since=START, until=date(2025, 1, 30)))
        record = tracker.advance_chunk(record_id, 1)
        assert record.current_chunk_json is None


class TestClaimAndMarkers:
    def test_claim_moves_to_syncing(self, tracker, engine, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 2)
        record = tracker.claim(record_id)
        assert record.status == "syncing"
        assert record.started_at is not None

    def test_claim_twice_keeps_started_at(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 2)
        first = tracker.claim(record_id).started_at
        assert tracker.claim(record_id).started_at == first

    def test_set_current_chunk_round_trips(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 2)
        tracker.set_current_chunk(record_id, EntityChunk(entity_type="ad_set", entity_id="as-9"))
        marker = decode_marker(tracker.get(record_id).current_chunk_json)
        assert marker.entity_id == "as-9"


class TestFailBackfill:
    def test_marks_failed(self, tracker, engine, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 3)
        record = tracker.fail_backfill(record_id, "rate limited")
        assert record.status == "failed"
        assert record.error_message == "rate limited"
        assert _project(engine, seeded_project.id).webhook_status == "idle"

    def test_same_message_is_idempotent(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 3)
        tracker.fail_backfill(record_id, "rate limited")
        record = tracker.fail_backfill(record_id, "rate limited")
        assert record.status == "failed"

    def test_different_message_rejected(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 3)
        tracker.fail_backfill(record_id, "rate limited")
        with pytest.raises(TerminalStateError):
            tracker.fail_backfill(record_id, "token expired")

    def test_completed_record_cannot_fail(self, tracker, seeded_project):
        record_id = tracker.start_backfill(seeded_project.id, START, END, 1)
        tracker.advance_chunk(record_id, 0)
        with pytest.raises(TerminalStateError):
            tracker.fail_backfill(record_id, "late error")

    def test_unknown_record(self, tracker):
        with pytest.raises(NotFoundError):
            tracker.fail_backfill("missing", "x")


class TestReads:
    def test_current_progress_none_when_idle(self, tracker, seeded_project):
        assert tracker.current_progress(seeded_project.id) is None

    def test_history_includes_terminal_records(self, tracker, seeded_project):
        first = tracker.start_backfill(seeded_project.id, START, END, 1)
        tracker.fail_backfill(first, "boom")
        second = tracker.start_backfill(seeded_project.id, START, END, 1)
        ids = {r.id for r in tracker.history(seeded_project.id)}
        assert ids == {first, second}

    def test_get_unknown(self, tracker):
        with pytest.raises(NotFoundError):
            tracker.get("missing")
