"""
tests/test_awards.py — Award Tier & Month Window Unit Tests
============================================================
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import utc
from selectstart.engine.awards import (
    AwardRecord,
    AwardTier,
    ChallengeSystem,
    SHADOW_CEILING,
    TierProgress,
    apply_ceiling,
    classify,
    earned_ids_in_window,
    earned_in_window,
    month_start,
    next_month_start,
    parse_period_key,
    period_key,
)
from selectstart.services.ra_models import GameProgress


REQUIRED = ["1", "2", "3", "4", "5", "6", "7", "8", "9", "10"]


class TestClassify:

    def test_all_required_earned_is_mastery(self):
        assert classify(REQUIRED, REQUIRED, 10, 6) is AwardTier.MASTERY

    def test_extra_earned_ids_still_mastery(self):
        assert classify(REQUIRED, REQUIRED + ["99"], 10, 6) is AwardTier.MASTERY

    def test_threshold_reached_is_beaten(self):
        assert classify(REQUIRED, REQUIRED[:6], 10, 6) is AwardTier.BEATEN

    def test_below_threshold_is_participation(self):
        assert classify(REQUIRED, REQUIRED[:5], 10, 6) is AwardTier.PARTICIPATION

    def test_nothing_earned(self):
        assert classify(REQUIRED, [], 10, 6) is AwardTier.NONE

    def test_total_required_is_fallback_win_condition(self):
        assert classify([], ["a", "b", "c"], 3, 0) is AwardTier.BEATEN
        assert classify([], ["a", "b"], 3, 0) is AwardTier.PARTICIPATION

    def test_no_win_condition_caps_at_participation(self):
        assert classify([], ["a", "b", "c"], 0, 0) is AwardTier.PARTICIPATION

    def test_empty_required_never_mastery(self):
        assert classify([], ["a"], 0, 1) is AwardTier.BEATEN

    def test_earned_subset_monotone(self):
        smaller = classify(REQUIRED, REQUIRED[:3], 10, 6)
        larger = classify(REQUIRED, REQUIRED[:7], 10, 6)
        assert larger >= smaller


class TestCeiling:

    def test_shadow_mastery_is_capped(self):
        tier = classify(REQUIRED, REQUIRED, 10, 6)
        assert apply_ceiling(tier, SHADOW_CEILING) is AwardTier.BEATEN

    def test_lower_tiers_pass_through(self):
        assert apply_ceiling(AwardTier.PARTICIPATION, SHADOW_CEILING) is AwardTier.PARTICIPATION

    def test_tiers_are_ordered(self):
        assert AwardTier.NONE < AwardTier.PARTICIPATION < AwardTier.BEATEN < AwardTier.MASTERY


class TestMonthWindow:

    def test_inside_month(self):
        assert earned_in_window(utc(2025, 6, 15, 12), utc(2025, 6, 1))

    def test_grace_day_counts(self):
        assert earned_in_window(utc(2025, 5, 31, 23, 59), utc(2025, 6, 1))
        assert earned_in_window(utc(2025, 5, 31, 0, 0), utc(2025, 6, 1))

    def test_two_days_before_does_not_count(self):
        assert not earned_in_window(utc(2025, 5, 30, 23, 59), utc(2025, 6, 1))

    def test_next_month_does_not_count(self):
        assert not earned_in_window(utc(2025, 7, 1, 0, 0), utc(2025, 6, 1))

    def test_none_never_counts(self):
        assert not earned_in_window(None, utc(2025, 6, 1))

    def test_naive_datetimes_are_utc(self):
        assert earned_in_window(datetime(2025, 6, 3, 8), utc(2025, 6, 1))

    def test_offset_datetimes_are_converted(self):
        # 2025-06-01 01:00 +02:00 is 2025-05-31 23:00 UTC (grace day)
        tz = timezone(timedelta(hours=2))
        assert earned_in_window(datetime(2025, 6, 1, 1, tzinfo=tz), utc(2025, 6, 1))

    def test_december_rollover(self):
        assert next_month_start(utc(2025, 12, 10)) == utc(2026, 1, 1)
        assert earned_in_window(utc(2025, 12, 31, 23), utc(2025, 12, 1))
        assert not earned_in_window(utc(2026, 1, 1), utc(2025, 12, 1))

    def test_january_grace_day_is_new_years_eve(self):
        assert earned_in_window(utc(2025, 12, 31, 12), utc(2026, 1, 1))

    def test_mid_month_start_is_normalised(self):
        assert month_start(utc(2025, 6, 17, 9)) == utc(2025, 6, 1)
        assert earned_in_window(utc(2025, 6, 2), utc(2025, 6, 17))


class TestPeriodKeys:

    @pytest.mark.parametrize(
        "dt, key",
        [(utc(2025, 6, 17), "2025-06"), (utc(2025, 12, 1), "2025-12"), (utc(999, 1, 1), "0999-01")],
    )
    def test_period_key(self, dt, key):
        assert period_key(dt) == key

    def test_parse_period_key(self):
        assert parse_period_key("2025-06") == utc(2025, 6, 1)


class TestEarnedIdsInWindow:

    def test_filters_by_window(self):
        progress = GameProgress.model_validate({
            "ID": 1,
            "Achievements": {
                "1": {"ID": 1, "DateEarned": "2025-06-05 10:00:00"},
                "2": {"ID": 2, "DateEarned": "2025-05-31 10:00:00"},
                "3": {"ID": 3, "DateEarned": "2025-05-10 10:00:00"},
                "4": {"ID": 4},
                "5": {"ID": 5, "DateEarnedHardcore": "2025-06-20 10:00:00"},
            },
        })
        assert earned_ids_in_window(progress, utc(2025, 6, 1)) == {"1", "2", "5"}


class TestAwardRecord:

    def test_for_system(self):
        record = AwardRecord(
            monthly=TierProgress(AwardTier.BEATEN, 6),
            shadow=TierProgress(AwardTier.PARTICIPATION, 1),
        )
        assert record.for_system(ChallengeSystem.MONTHLY).tier is AwardTier.BEATEN
        assert record.for_system(ChallengeSystem.SHADOW).achieved_count == 1

    def test_defaults_to_none(self):
        assert AwardRecord().monthly.tier is AwardTier.NONE
