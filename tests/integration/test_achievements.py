"""
Integration tests for achievement triggers and statistic counters
"""

from datetime import datetime, timedelta

import pytest

from models import StatType, UserAchievement, UserStat
from services.achievements import (
    assign_achievement,
    award_for_stat,
    create_achievement,
    earn_achievement,
    evaluate_triggers,
    get_user_achievements,
)
from services.stats import event_total, get_stat, get_user_stats, increment_stat, rebuild_stat, record_login
from utils.error_handling import InvalidInput

T0 = datetime(2026, 4, 1, 8, 0, 0)


@pytest.fixture
def login_ladder(test_db):
    return [
        create_achievement(test_db, "First login", trigger_type=StatType.LOGIN_COUNT, trigger_value=1),
        create_achievement(test_db, "Regular", trigger_type=StatType.LOGIN_COUNT, trigger_value=5),
        create_achievement(test_db, "Devotee", trigger_type=StatType.LOGIN_COUNT, trigger_value=50),
    ]


class TestEvaluateTriggers:
    def test_earns_every_threshold_reached(self, test_db, make_user, login_ladder):
        user = make_user()

        earned = evaluate_triggers(test_db, user.id, StatType.LOGIN_COUNT, 7, now=T0)

        assert {row.achievement_id for row in earned} == {login_ladder[0].id, login_ladder[1].id}
        assert all(row.earned_at == T0 for row in earned)

    def test_earns_at_most_once(self, test_db, make_user, login_ladder):
        user = make_user()
        evaluate_triggers(test_db, user.id, StatType.LOGIN_COUNT, 1, now=T0)

        again = evaluate_triggers(test_db, user.id, StatType.LOGIN_COUNT, 1, now=T0 + timedelta(days=1))

        assert again == []
        row = get_user_achievements(test_db, user.id, earned_only=True)[0]
        assert row.earned_at == T0

    def test_lower_value_never_unearns(self, test_db, make_user, login_ladder):
        user = make_user()
        evaluate_triggers(test_db, user.id, StatType.LOGIN_COUNT, 5, now=T0)

        assert evaluate_triggers(test_db, user.id, StatType.LOGIN_COUNT, 0) == []
        assert len(get_user_achievements(test_db, user.id, earned_only=True)) == 2

    def test_other_stat_types_ignored(self, test_db, make_user, login_ladder):
        user = make_user()
        assert evaluate_triggers(test_db, user.id, StatType.LESSONS_COMPLETED, 100) == []

    def test_inactive_achievement_not_earned(self, test_db, make_user):
        user = make_user()
        create_achievement(test_db, "Retired", trigger_type=StatType.LOGIN_COUNT, trigger_value=1, active=False)

        assert evaluate_triggers(test_db, user.id, StatType.LOGIN_COUNT, 10) == []

    def test_repeated_award_in_one_transaction(self, test_db, make_user, login_ladder):
        user = make_user()

        first = award_for_stat(test_db, user.id, StatType.LOGIN_COUNT, 1, now=T0)
        second = award_for_stat(test_db, user.id, StatType.LOGIN_COUNT, 1, now=T0)
        test_db.commit()

        assert len(first) == 1
        assert second == []
        assert test_db.query(UserAchievement).filter(UserAchievement.user_id == user.id).count() == 1


class TestManualAchievements:
    def test_assign_then_earn(self, test_db, make_user):
        user = make_user()
        achievement = create_achievement(test_db, "Helper")

        assigned = assign_achievement(test_db, user.id, achievement.id)
        assert assigned.earned is False

        earned = earn_achievement(test_db, user.id, achievement.id, now=T0)
        assert earned.earned is True
        assert earned.earned_at == T0

        again = earn_achievement(test_db, user.id, achievement.id, now=T0 + timedelta(hours=2))
        assert again.earned_at == T0

    def test_negative_trigger_value_rejected(self, test_db):
        with pytest.raises(InvalidInput):
            create_achievement(test_db, "Broken", trigger_type=StatType.LOGIN_COUNT, trigger_value=-1)


class TestCounters:
    def test_login_counter_feeds_triggers(self, test_db, make_user, login_ladder):
        user = make_user()

        for _ in range(5):
            record_login(test_db, user.id)

        assert get_stat(test_db, user.id, StatType.LOGIN_COUNT) == 5
        assert len(get_user_achievements(test_db, user.id, earned_only=True)) == 2

    def test_idempotency_key(self, test_db, make_user):
        user = make_user()

        assert increment_stat(test_db, user.id, "quizzes_passed", idempotency_key="quiz:1") == 1
        assert increment_stat(test_db, user.id, "quizzes_passed", idempotency_key="quiz:1") == 1
        assert increment_stat(test_db, user.id, "quizzes_passed", idempotency_key="quiz:2") == 2
        assert event_total(test_db, user.id, "quizzes_passed") == 2

    def test_value_is_fold_of_events(self, test_db, make_user):
        user = make_user()
        for delta in (1, 3, 2):
            increment_stat(test_db, user.id, "points", delta=delta)

        assert get_stat(test_db, user.id, "points") == event_total(test_db, user.id, "points") == 6
        assert get_user_stats(test_db, user.id) == {"points": 6}

    def test_non_positive_delta_rejected(self, test_db, make_user):
        user = make_user()
        with pytest.raises(InvalidInput):
            increment_stat(test_db, user.id, "points", delta=0)

    def test_evaluate_false_skips_triggers(self, test_db, make_user, login_ladder):
        user = make_user()

        increment_stat(test_db, user.id, StatType.LOGIN_COUNT, evaluate=False)

        assert get_user_achievements(test_db, user.id, earned_only=True) == []

    def test_rebuild_repairs_drift(self, test_db, make_user):
        user = make_user()
        increment_stat(test_db, user.id, "points", delta=4)
        row = test_db.query(UserStat).filter(UserStat.user_id == user.id).one()
        row.value = 99
        test_db.commit()

        assert rebuild_stat(test_db, user.id, "points") == 4
        assert get_stat(test_db, user.id, "points") == 4
