"""
Record builder, aggregation and report rendering.
"""

import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from inspection_rules import (
    InspectionRecord,
    Message,
    TransferState,
    aggregate,
    build_records,
    render_diagnostics,
    render_report,
)


def _msg(now, text, days_ago=1):
    return Message(timestamp=now - timedelta(days=days_ago), text=text)


class TestBuildRecords:

    def test_end_to_end_record(self, now, small_table):
        records = build_records([_msg(now, "#Clean ABC Trucking LLC unit-1, not transferred")], small_table, now)
        assert len(records) == 1
        rec = records[0]
        assert rec.category == "Clean"
        assert rec.company == "ABC Trucking LLC"
        assert rec.transfer_state is TransferState.NOT_TRANSFERRED
        assert rec.unit_codes == "1"
        assert rec.timestamp == now - timedelta(days=1)

    def test_requires_leading_hash(self, now, small_table):
        messages = [
            _msg(now, "Clean ABC Trucking #clean transferred"),
            _msg(now, "hello #hos"),
            _msg(now, "ABC Trucking LLC unit 1"),
        ]
        assert build_records(messages, small_table, now) == []

    def test_leading_whitespace_trimmed(self, now, small_table):
        records = build_records([_msg(now, "   #hos KEL TRANS  \n")], small_table, now)
        assert records[0].category == "HOS"
        assert records[0].snippet == "#hos KEL TRANS"

    def test_empty_bodies_skipped(self, now, small_table):
        messages = [_msg(now, ""), _msg(now, "   \n\t"), _msg(now, None)]
        assert build_records(messages, small_table, now) == []

    def test_old_messages_excluded(self, now, small_table):
        messages = [
            _msg(now, "#clean ABC Trucking LLC transferred", days_ago=8),
            _msg(now, "#clean ABC Trucking LLC transferred", days_ago=30),
        ]
        assert build_records(messages, small_table, now) == []

    def test_window_boundary_included(self, now, small_table):
        records = build_records([_msg(now, "#clean", days_ago=7)], small_table, now)
        assert len(records) == 1

    def test_custom_window(self, now, small_table):
        messages = [_msg(now, "#clean", days_ago=2), _msg(now, "#hos", days_ago=0.5)]
        records = build_records(messages, small_table, now, window=timedelta(days=1))
        assert [r.category for r in records] == ["HOS"]

    def test_input_order_preserved(self, now, small_table):
        messages = [_msg(now, "#hos", 1), _msg(now, "#clean", 3), _msg(now, "#ticket", 2)]
        records = build_records(messages, small_table, now)
        assert [r.category for r in records] == ["HOS", "Clean", "Ticket"]

    def test_snippet_truncated(self, now, small_table):
        records = build_records([_msg(now, "#clean " + "x" * 300)], small_table, now)
        assert len(records[0].snippet) == 200
        assert records[0].snippet.startswith("#clean x")

    def test_every_record_within_window(self, now, small_table):
        messages = [_msg(now, f"#clean day {d}", days_ago=d) for d in range(0, 14)]
        since = now - timedelta(days=7)
        records = build_records(messages, small_table, now)
        assert len(records) == 8
        assert all(r.timestamp >= since and r.snippet.startswith("#") for r in records)


def _records(now, table, texts):
    return build_records([_msg(now, t) for t in texts], table, now)


class TestAggregate:

    def test_counts_sum_to_total(self, now, small_table):
        texts = ["#clean", "#hos", "#clean", "#ticket x", "#violation", "#clean"]
        stats = aggregate(_records(now, small_table, texts))
        assert stats.total == 6
        assert sum(stats.by_category.values()) == 6
        assert sum(stats.by_company.values()) == 6
        assert sum(stats.by_transfer_state.values()) == 6
        assert stats.by_category["Clean"] == 3

    def test_no_preseeded_keys(self, now, small_table):
        stats = aggregate(_records(now, small_table, ["#clean ABC Trucking LLC transferred"]))
        assert dict(stats.by_transfer_state) == {"Transferred": 1}
        assert "Unknown" not in stats.by_company
        assert stats.unknown_company == []
        assert stats.unknown_transfer == []

    def test_unknown_diagnostics_in_order(self, now, small_table):
        texts = [
            "#clean mystery one transferred",
            "#clean ABC Trucking LLC",
            "#hos mystery two",
        ]
        stats = aggregate(_records(now, small_table, texts))
        assert [r.snippet for r in stats.unknown_company] == [texts[0], texts[2]]
        assert [r.snippet for r in stats.unknown_transfer] == [texts[1], texts[2]]

    def test_empty(self):
        stats = aggregate([])
        assert stats.total == 0
        assert not stats.by_category


class TestRender:

    def test_sorted_by_count(self, now, small_table):
        stats = aggregate(_records(now, small_table, ["#a", "#a", "#b"]))
        report = render_report(stats, now - timedelta(days=7), now)
        assert "  A: 2" in report
        assert "  B: 1" in report
        assert report.index("  A: 2") < report.index("  B: 1")

    def test_ties_keep_first_seen_order(self, now, small_table):
        stats = aggregate(_records(now, small_table, ["#b", "#a", "#c", "#c"]))
        report = render_report(stats, now - timedelta(days=7), now)
        assert report.index("  C: 2") < report.index("  B: 1") < report.index("  A: 1")

    def test_full_layout(self, small_table):
        end = datetime(2026, 10, 19, 20, 0, tzinfo=timezone.utc)
        start = end - timedelta(days=7)
        records = build_records(
            [Message(end - timedelta(hours=2), "#Clean ABC Trucking LLC unit-1, transferred")],
            small_table, end,
        )
        report = render_report(aggregate(records), start, end)
        assert report == (
            "📊 WEEKLY INSPECTION REPORT\n"
            "📅 10/12/2026 - 10/19/2026\n"
            "\n"
            "📈 Total Inspections: 1\n"
            "\n"
            "📋 By Category:\n"
            "  Clean: 1\n"
            "\n"
            "🏢 Companies (1):\n"
            "  ABC Trucking LLC: 1\n"
            "\n"
            "📤 Transfer Status:\n"
            "  Transferred: 1"
        )

    def test_company_count_annotation(self, now, small_table):
        texts = ["#clean ABC Trucking", "#clean KEL TRANS", "#clean nobody", "#hos ABC Trucking"]
        report = render_report(aggregate(_records(now, small_table, texts)), now - timedelta(days=7), now)
        assert "🏢 Companies (3):" in report
        assert "  ABC Trucking LLC: 2" in report

    def test_diagnostics_not_in_report(self, now, small_table):
        stats = aggregate(_records(now, small_table, ["#clean mystery carrier"]))
        report = render_report(stats, now - timedelta(days=7), now)
        diagnostics = render_diagnostics(stats)
        assert "mystery carrier" not in report
        assert "1 inspections with Unknown company" in diagnostics
        assert "Text: #clean mystery carrier" in diagnostics
        assert "Unknown transfer state" in diagnostics

    def test_no_diagnostics_when_resolved(self, now, small_table):
        stats = aggregate(_records(now, small_table, ["#clean ABC Trucking transferred"]))
        assert render_diagnostics(stats) == ""

    def test_records_are_immutable(self, now, small_table):
        rec = _records(now, small_table, ["#clean"])[0]
        assert isinstance(rec, InspectionRecord)
        with pytest.raises(dataclasses.FrozenInstanceError):
            rec.company = "x"
