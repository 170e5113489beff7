"""Tests for smart snooze options and category inference."""

from datetime import timedelta

import pytest

from conftest import utc
from reminders.snooze import (
    CUSTOM_TARGET,
    MAX_SNOOZE_OPTIONS,
    get_smart_snooze_options,
    infer_reminder_category,
    is_meds_category,
)

# 2026-01-07 is a Wednesday
WEDNESDAY_10 = utc(2026, 1, 7, 10, 0)


def targets(options):
    return {option.id: option.target for option in options}


class TestSmartSnoozeOptions:
    def test_base_options_on_a_weekday(self):
        options = get_smart_snooze_options(WEDNESDAY_10)
        assert [o.id for o in options] == ["later-today", "tomorrow", "this-weekend", "next-week", "custom"]
        t = targets(options)
        assert t["later-today"] == utc(2026, 1, 7, 20, 0)
        assert t["tomorrow"] == utc(2026, 1, 8, 9, 0)
        assert t["this-weekend"] == utc(2026, 1, 10, 10, 0)
        assert t["next-week"] == utc(2026, 1, 12, 9, 0)
        assert t["custom"] == CUSTOM_TARGET

    def test_later_today_rolls_to_tomorrow_morning(self):
        t = targets(get_smart_snooze_options(utc(2026, 1, 7, 21, 0)))
        assert t["later-today"] == utc(2026, 1, 8, 9, 0)

    @pytest.mark.parametrize("now, expected", [
        (utc(2026, 1, 10, 9, 0), utc(2026, 1, 10, 10, 0)),   # Saturday morning: today
        (utc(2026, 1, 10, 11, 0), utc(2026, 1, 11, 10, 0)),  # Saturday after 10:00: Sunday
        (utc(2026, 1, 11, 11, 0), utc(2026, 1, 17, 10, 0)),  # Sunday after 10:00: next Saturday
    ])
    def test_this_weekend(self, now, expected):
        assert targets(get_smart_snooze_options(now))["this-weekend"] == expected

    def test_next_week_from_monday_is_seven_days(self):
        monday = utc(2026, 1, 12, 8, 0)
        assert targets(get_smart_snooze_options(monday))["next-week"] == utc(2026, 1, 19, 9, 0)

    def test_next_week_from_sunday_is_tomorrow(self):
        sunday = utc(2026, 1, 11, 8, 0)
        assert targets(get_smart_snooze_options(sunday))["next-week"] == utc(2026, 1, 12, 9, 0)

    def test_before_due_options(self):
        due = utc(2026, 1, 17, 15, 0)
        t = targets(get_smart_snooze_options(WEDNESDAY_10, due_at=due))
        assert t["before-due-3-days"] == utc(2026, 1, 14, 9, 0)
        assert t["before-due-1-day"] == utc(2026, 1, 16, 9, 0)

    def test_before_due_requires_enough_lead_time(self):
        due = utc(2026, 1, 8, 15, 0)
        ids = [o.id for o in get_smart_snooze_options(WEDNESDAY_10, due_at=due)]
        assert "before-due-3-days" not in ids
        # due - 1 day at 09:00 is already in the past
        assert "before-due-1-day" not in ids

    def test_meds_options_and_cap(self):
        due = utc(2026, 1, 17, 15, 0)
        options = get_smart_snooze_options(WEDNESDAY_10, category="Meds", due_at=due)
        assert len(options) == MAX_SNOOZE_OPTIONS
        assert options[-1].id == "custom"
        t = targets(options)
        assert t["in-1-hour"] == WEDNESDAY_10 + timedelta(hours=1)
        assert "in-2-hours" not in t

    def test_meds_options_without_due(self):
        ids = [o.id for o in get_smart_snooze_options(WEDNESDAY_10, category="health")]
        assert ids[-3:] == ["in-1-hour", "in-2-hours", "custom"]

    def test_all_targets_in_future(self):
        for now in (utc(2026, 1, 10, 23, 59), utc(2026, 1, 11, 10, 0), WEDNESDAY_10):
            for option in get_smart_snooze_options(now, "meds", now + timedelta(days=5)):
                if option.id != "custom":
                    assert option.target > now

    def test_as_dict(self):
        option = get_smart_snooze_options(WEDNESDAY_10)[0]
        assert option.as_dict() == {"id": "later-today", "label": "Later today", "target": "2026-01-07T20:00:00+00:00"}


class TestCategories:
    @pytest.mark.parametrize("category, expected", [
        ("Medication", True), ("health-check", True), ("doctor", True), ("bills", False), (None, False), ("  ", False),
    ])
    def test_is_meds_category(self, category, expected):
        assert is_meds_category(category) is expected

    def test_explicit_category_wins(self):
        assert infer_reminder_category("Pay invoice", None, " Car ") == "car"

    @pytest.mark.parametrize("title, notes, expected", [
        ("Plata factura curent", None, "bills"),
        ("Doctor appointment", None, "meds"),
        ("Reinnoire ITP", None, "car"),
        ("Revizie centrala", None, "home"),
        ("Call grandma", "", None),
        (None, None, None),
    ])
    def test_inferred_from_text(self, title, notes, expected):
        assert infer_reminder_category(title, notes) == expected
