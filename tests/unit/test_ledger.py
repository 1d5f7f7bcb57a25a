"""Tests for the monthly import ledger."""
from datetime import date

import pytest

from adsync.errors import InvalidArgumentError, NotFoundError, TerminalStateError
from adsync.sync.ledger import MonthlyImportLedger, next_month, validate_month


@pytest.fixture(name="ledger")
def ledger_fixture(engine):
    return MonthlyImportLedger(engine)


class TestScheduleMonth:
    def test_creates_pending_row(self, ledger, seeded_project):
        record = ledger.schedule_month(seeded_project.id, 2025, 1)
        assert record.status == "pending"
        assert record.retry_count == 0
        assert (record.year, record.month) == (2025, 1)

    def test_same_month_twice_returns_same_row(self, ledger, seeded_project):
        first = ledger.schedule_month(seeded_project.id, 2025, 1)
        second = ledger.schedule_month(seeded_project.id, 2025, 1)
        assert first.id == second.id
        assert len(ledger.months(seeded_project.id)) == 1

    def test_in_flight_row_left_alone(self, ledger, seeded_project):
        record = ledger.schedule_month(seeded_project.id, 2025, 1)
        ledger.mark_started(record.id)
        again = ledger.schedule_month(seeded_project.id, 2025, 1)
        assert again.status == "importing"
        assert again.retry_count == 0

    def test_errored_row_is_rearmed(self, ledger, seeded_project):
        record = ledger.schedule_month(seeded_project.id, 2025, 1)
        ledger.mark_started(record.id)
        ledger.mark_error(record.id, "token expired")

        again = ledger.schedule_month(seeded_project.id, 2025, 1)
        assert again.id == record.id
        assert again.status == "pending"
        assert again.retry_count == 1
        assert again.error_message is None

    def test_completed_row_is_rearmed(self, ledger, seeded_project):
        record = ledger.schedule_month(seeded_project.id, 2025, 2)
        ledger.mark_completed(record.id, 40)
        again = ledger.schedule_month(seeded_project.id, 2025, 2)
        assert again.status == "pending"
        assert again.retry_count == 1

    @pytest.mark.parametrize("month", [0, 13, -1])
    def test_invalid_month(self, ledger, seeded_project, month):
        with pytest.raises(InvalidArgumentError):
            ledger.schedule_month(seeded_project.id, 2025, month)
        assert ledger.months(seeded_project.id) == []


class TestTransitions:
    def test_started_then_completed(self, ledger, seeded_project):
        record = ledger.schedule_month(seeded_project.id, 2025, 1)
        started = ledger.mark_started(record.id)
        assert started.status == "importing"
        assert started.started_at is not None

        done = ledger.mark_completed(record.id, 512)
        assert done.status == "completed"
        assert done.records_count == 512
        assert done.completed_at is not None

    def test_completed_row_is_frozen(self, ledger, seeded_project):
        record = ledger.schedule_month(seeded_project.id, 2025, 1)
        ledger.mark_completed(record.id, 1)
        with pytest.raises(TerminalStateError):
            ledger.mark_error(record.id, "late")
        with pytest.raises(TerminalStateError):
            ledger.mark_started(record.id)

    def test_negative_count_rejected(self, ledger, seeded_project):
        record = ledger.schedule_month(seeded_project.id, 2025, 1)
        with pytest.raises(InvalidArgumentError):
            ledger.mark_completed(record.id, -5)

    def test_unknown_record(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.mark_started("missing")


class TestReads:
    def test_summary_counts_scheduled_months_only(self, ledger, seeded_project):
        a = ledger.schedule_month(seeded_project.id, 2024, 11)
        b = ledger.schedule_month(seeded_project.id, 2024, 12)
        ledger.schedule_month(seeded_project.id, 2025, 1)
        ledger.mark_completed(a.id, 10)
        ledger.mark_completed(b.id, 20)

        summary = ledger.summary(seeded_project.id)
        assert summary.completed_months == 2
        assert summary.total_months == 3

    def test_summary_empty(self, ledger, seeded_project):
        summary = ledger.summary(seeded_project.id)
        assert (summary.completed_months, summary.total_months) == (0, 0)

    def test_stats(self, ledger, seeded_project):
        a = ledger.schedule_month(seeded_project.id, 2025, 1)
        b = ledger.schedule_month(seeded_project.id, 2025, 2)
        ledger.schedule_month(seeded_project.id, 2025, 3)
        ledger.mark_completed(a.id, 100)
        ledger.mark_error(b.id, "boom")

        stats = ledger.stats(seeded_project.id)
        assert stats.total == 3
        assert stats.completed == 1
        assert stats.error == 1
        assert stats.pending == 1
        assert stats.total_records == 100
        assert stats.progress_pct == pytest.approx(100 / 3)

    def test_months_ordered_and_grouped(self, ledger, seeded_project):
        ledger.schedule_month(seeded_project.id, 2025, 2)
        ledger.schedule_month(seeded_project.id, 2024, 12)
        ledger.schedule_month(seeded_project.id, 2025, 1)

        assert [(m.year, m.month) for m in ledger.months(seeded_project.id)] == [
            (2024, 12), (2025, 1), (2025, 2),
        ]
        grouped = ledger.months_by_year(seeded_project.id)
        assert sorted(grouped) == [2024, 2025]
        assert len(grouped[2025]) == 2

    def test_failed_months(self, ledger, seeded_project):
        a = ledger.schedule_month(seeded_project.id, 2025, 1)
        ledger.schedule_month(seeded_project.id, 2025, 2)
        ledger.mark_error(a.id, "boom")
        assert [m.id for m in ledger.failed_months(seeded_project.id)] == [a.id]


class TestMonthHelpers:
    def test_validate_month_accepts_range(self):
        validate_month(2025, 1)
        validate_month(2025, 12)

    def test_next_month_within_year(self):
        assert next_month(2025, 1, date(2025, 6, 1)) == (2025, 2)

    def test_next_month_rolls_year(self):
        assert next_month(2024, 12, date(2025, 6, 1)) == (2025, 1)

    def test_next_month_stops_at_current_month(self):
        assert next_month(2025, 6, date(2025, 6, 15)) is None

    def test_next_month_reaches_current_month(self):
        assert next_month(2025, 5, date(2025, 6, 15)) == (2025, 6)
