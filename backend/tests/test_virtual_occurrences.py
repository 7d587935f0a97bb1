from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskcycle.services.virtual_occurrences import (
    calculate_virtual_occurrences,
    expand_recurring_tasks,
    hide_templates_with_instances_today,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


NOW = utc(2025, 1, 1, 10, 0)


@pytest.fixture()
def daily_template(make_task):
    return make_task(
        name="Stretch",
        recurrence_type="daily",
        due_date=utc(2025, 1, 1, 9, 0),
    )


def test_occurrences_are_capped_at_six(daily_template):
    rows = list(expand_recurring_tasks([daily_template], max_days=30, now=NOW))

    assert len(rows) == 6
    assert [row["due_date"] for row in rows] == [utc(2025, 1, day, 9, 0) for day in range(1, 7)]
    assert [row["virtual_id"] for row in rows][:2] == ["1_occurrence_0", "1_occurrence_1"]
    assert all(row["is_virtual_occurrence"] for row in rows)
    assert [row["occurrence_index"] for row in rows] == list(range(6))


def test_occurrences_stay_inside_window(daily_template):
    rows = list(expand_recurring_tasks([daily_template], max_days=3, now=NOW))
    assert [row["due_date"] for row in rows] == [
        utc(2025, 1, 1, 9, 0),
        utc(2025, 1, 2, 9, 0),
        utc(2025, 1, 3, 9, 0),
    ]


def test_occurrences_stop_at_end_date(make_task):
    template = make_task(
        recurrence_type="daily",
        due_date=utc(2025, 1, 1, 9, 0),
        recurrence_end_date=utc(2025, 1, 2, 9, 0),
    )
    rows = list(expand_recurring_tasks([template], max_days=30, now=NOW))
    assert [row["due_date"] for row in rows] == [utc(2025, 1, 1, 9, 0), utc(2025, 1, 2, 9, 0)]


def test_non_templates_pass_through_unchanged(make_task):
    plain = make_task(name="Call the bank", due_date=utc(2025, 1, 2))
    instance = make_task(recurrence_type="daily", recurring_parent_id=99)

    rows = list(expand_recurring_tasks([plain, instance], now=NOW))

    assert rows[0] is plain
    assert rows[1] is instance


def test_done_template_kept_when_filtering_completed(make_task):
    template = make_task(recurrence_type="daily", status="done", due_date=utc(2025, 1, 1))
    for status_filter in ("completed", "done"):
        assert list(expand_recurring_tasks([template], status_filter=status_filter, now=NOW)) == [
            template
        ]


def test_done_template_starts_from_next_occurrence(make_task):
    template = make_task(recurrence_type="daily", status="done", due_date=utc(2025, 1, 1, 9, 0))
    rows = list(expand_recurring_tasks([template], max_days=30, now=NOW))
    assert rows[0]["due_date"] == utc(2025, 1, 2, 9, 0)


def test_done_completion_based_template_starts_after_completion(make_task):
    template = make_task(
        recurrence_type="daily",
        status="done",
        completion_based=True,
        due_date=utc(2024, 12, 20, 9, 0),
        completed_at=utc(2025, 1, 1, 8, 0),
    )
    rows = list(expand_recurring_tasks([template], max_days=30, now=NOW))
    assert rows[0]["due_date"] == utc(2025, 1, 2, 8, 0)


def test_overdue_template_is_caught_up_to_today(make_task):
    template = make_task(recurrence_type="daily", due_date=utc(2024, 12, 25, 9, 0))
    rows = list(expand_recurring_tasks([template], max_days=2, now=NOW))
    assert [row["due_date"] for row in rows] == [utc(2025, 1, 1, 9, 0), utc(2025, 1, 2, 9, 0)]


def test_template_without_due_date_starts_today(make_task):
    template = make_task(recurrence_type="daily")
    rows = list(expand_recurring_tasks([template], max_days=2, now=NOW))
    assert [row["due_date"] for row in rows] == [utc(2025, 1, 1), utc(2025, 1, 2)]


def test_degenerate_template_yields_nothing(make_task):
    weekly = make_task(recurrence_type="weekly", due_date=utc(2025, 1, 1, 9, 0))
    monthly = make_task(recurrence_type="monthly", recurrence_month_day=0, due_date=utc(2025, 1, 1))
    assert list(expand_recurring_tasks([weekly, monthly], max_days=30, now=NOW)) == []


def test_unmatchable_weekday_set_is_bounded(make_task):
    template = make_task(recurrence_type="weekly", recurrence_weekdays=[9], due_date=utc(2025, 1, 1))
    rows = list(expand_recurring_tasks([template], max_days=365, now=NOW))
    assert 0 < len(rows) <= 6


def test_expansion_does_not_touch_the_template(daily_template):
    list(expand_recurring_tasks([daily_template], max_days=30, now=NOW))
    assert daily_template.due_date == utc(2025, 1, 1, 9, 0)
    assert not hasattr(daily_template, "is_virtual_occurrence")


def test_calculate_virtual_occurrences_includes_matching_anchor(make_task):
    template = make_task(recurrence_type="weekly", recurrence_weekdays=[1, 3, 5])
    dates = calculate_virtual_occurrences(template, 7, utc(2025, 1, 1), now=NOW)
    assert dates == [utc(2025, 1, 1), utc(2025, 1, 3), utc(2025, 1, 6)]


def test_today_hides_template_with_instance_in_users_day(make_task):
    now = utc(2025, 1, 1, 20, 0)
    template = make_task(id=1, recurrence_type="daily", due_date=utc(2025, 1, 1, 3, 0))
    # 2025-01-02 03:00 UTC is the morning of Jan 2 in Tokyo
    instance = make_task(id=2, recurring_parent_id=1, due_date=utc(2025, 1, 2, 3, 0))
    other = make_task(id=3, name="Unrelated")

    in_tokyo = hide_templates_with_instances_today([template, instance, other], "Asia/Tokyo", now=now)
    in_utc = hide_templates_with_instances_today([template, instance, other], "UTC", now=now)

    assert [task.id for task in in_tokyo] == [2, 3]
    assert [task.id for task in in_utc] == [1, 2, 3]


def test_today_with_unknown_timezone_uses_utc(make_task):
    now = utc(2025, 1, 1, 20, 0)
    template = make_task(id=1, recurrence_type="daily")
    instance = make_task(id=2, recurring_parent_id=1, due_date=utc(2025, 1, 1, 8, 0))

    rows = hide_templates_with_instances_today([template, instance], "Not/AZone", now=now)
    assert [task.id for task in rows] == [2]


def test_window_is_counted_from_start_of_today(make_task):
    template = make_task(recurrence_type="daily", due_date=utc(2025, 1, 1, 23, 0))
    late_now = utc(2025, 1, 1, 22, 0)
    rows = list(expand_recurring_tasks([template], max_days=1, now=late_now))
    assert [row["due_date"] for row in rows] == [utc(2025, 1, 1, 23, 0)]
    assert rows[0]["due_date"] - late_now < timedelta(days=1)
