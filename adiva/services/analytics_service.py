from datetime import date, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from adiva.extensions import db
from adiva.models import UserDailyStats, UserModelUsage, utcnow
from adiva.utils.logger import logger

RECENT_DAYS = 30


@retry(
    retry=retry_if_exception_type(IntegrityError),
    stop=stop_after_attempt(3),
    reraise=True
)
def _increment(model, keys: Dict[str, Any], amounts: Dict[str, int], extra: Optional[Dict[str, Any]] = None):
    """
    Add `amounts` to the counters of the row matching `keys`, creating it on first use.

    A concurrent first insert loses on the unique key; the retry then
    increments the winner's row.
    """
    extra = extra or {}
    values = {name: getattr(model, name) + amount for name, amount in amounts.items()}
    values.update(extra)

    result = db.session.execute(
        update(model)
        .where(*(getattr(model, name) == value for name, value in keys.items()))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.add(model(**keys, **amounts, **extra))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise


class UserAnalyticsService:
    """Per-user usage statistics, recorded while the analytics toggle is on."""

    @staticmethod
    def record_exchange(user_id: int, model: str, tokens: int, today: Optional[date] = None) -> None:
        """Count one user message and one assistant reply."""
        now = utcnow()
        today = today or now.date()
        _increment(
            UserDailyStats,
            {"user_id": user_id, "date": today},
            {"messages_sent": 1, "messages_received": 1, "tokens_used": tokens},
        )
        _increment(
            UserModelUsage,
            {"user_id": user_id, "model": model},
            {"count": 1, "tokens_used": tokens},
            {"last_used": now},
        )
        logger.debug(f"Recorded exchange for user {user_id} on {model} ({tokens} tokens)")

    @staticmethod
    def get_summary(user_id: int, days: int = RECENT_DAYS, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Totals, per-model usage and the last `days` of daily stats for a user.

        Returns:
            dict with "analytics" and "insights" keys
        """
        today = today or utcnow().date()

        sent, received, tokens, active_days = db.session.execute(
            select(
                func.coalesce(func.sum(UserDailyStats.messages_sent), 0),
                func.coalesce(func.sum(UserDailyStats.messages_received), 0),
                func.coalesce(func.sum(UserDailyStats.tokens_used), 0),
                func.count(UserDailyStats.id),
            ).where(UserDailyStats.user_id == user_id)
        ).one()

        daily = db.session.execute(
            select(UserDailyStats)
            .filter_by(user_id=user_id)
            .where(UserDailyStats.date > today - timedelta(days=days))
            .order_by(UserDailyStats.date)
        ).scalars().all()

        models = db.session.execute(
            select(UserModelUsage)
            .filter_by(user_id=user_id)
            .order_by(UserModelUsage.count.desc(), UserModelUsage.model)
        ).scalars().all()

        week_start = today - timedelta(days=6)
        return {
            "analytics": {
                "totalStats": {
                    "totalMessages": sent + received,
                    "totalTokens": tokens,
                    "activeDays": active_days,
                    "averageTokensPerMessage": round(tokens / received) if received else 0,
                },
                "modelUsage": [usage.to_dict() for usage in models],
                "dailyStats": [stats.to_dict() for stats in daily],
            },
            "insights": {
                "favoriteModel": models[0].model if models else None,
                "messagesThisWeek": sum(
                    stats.messages_sent for stats in daily if stats.date >= week_start
                ),
            },
        }
