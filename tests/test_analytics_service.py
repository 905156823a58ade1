"""Tests for per-user usage statistics."""

from datetime import date

from adiva.services.analytics_service import UserAnalyticsService


class TestRecordExchange:
    def test_same_day_and_model_share_a_row(self, app, make_user):
        user_id = make_user()
        with app.app_context():
            UserAnalyticsService.record_exchange(user_id, "gpt-5-nano", 30, today=date(2026, 3, 2))
            UserAnalyticsService.record_exchange(user_id, "gpt-5-nano", 10, today=date(2026, 3, 2))
            UserAnalyticsService.record_exchange(user_id, "gpt-4o-mini", 5, today=date(2026, 3, 2))

            summary = UserAnalyticsService.get_summary(user_id, today=date(2026, 3, 2))
            daily = summary["analytics"]["dailyStats"]
            assert daily == [{
                "date": "2026-03-02", "messagesSent": 3, "messagesReceived": 3, "tokensUsed": 45,
            }]
            usage = {m["model"]: (m["count"], m["tokensUsed"]) for m in summary["analytics"]["modelUsage"]}
            assert usage == {"gpt-5-nano": (2, 40), "gpt-4o-mini": (1, 5)}
            assert summary["insights"]["favoriteModel"] == "gpt-5-nano"

    def test_users_are_counted_separately(self, app, make_user):
        first = make_user()
        second = make_user(email="second@example.com")
        with app.app_context():
            UserAnalyticsService.record_exchange(first, "gpt-5-nano", 10)
            summary = UserAnalyticsService.get_summary(second)
            assert summary["analytics"]["totalStats"]["totalMessages"] == 0
            assert summary["analytics"]["totalStats"]["averageTokensPerMessage"] == 0


class TestSummaryWindow:
    def test_daily_stats_cover_recent_days_but_totals_cover_everything(self, app, make_user):
        user_id = make_user()
        with app.app_context():
            for day in (date(2026, 1, 1), date(2026, 2, 25), date(2026, 3, 1)):
                UserAnalyticsService.record_exchange(user_id, "gpt-5-nano", 10, today=day)

            summary = UserAnalyticsService.get_summary(user_id, days=30, today=date(2026, 3, 2))
            assert [d["date"] for d in summary["analytics"]["dailyStats"]] == ["2026-02-25", "2026-03-01"]
            assert summary["analytics"]["totalStats"]["activeDays"] == 3
            assert summary["analytics"]["totalStats"]["totalMessages"] == 6
            assert summary["insights"]["messagesThisWeek"] == 2
