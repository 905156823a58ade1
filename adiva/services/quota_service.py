from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from adiva.extensions import db
from adiva.models import GuestUsage, utcnow
from adiva.utils.logger import logger


@dataclass
class QuotaDecision:
    """Outcome of a guest quota check; derived, never stored."""
    allowed: bool
    guest_id: str
    usage: GuestUsage
    max_chats: int


class GuestQuotaGate:
    """
    Admits or denies guest chat requests against guestLimits.maxChats.

    Every mutation is a single conditional UPDATE so concurrent requests for
    the same guest cannot both take the last slot.
    """

    def __init__(self, ttl_days: int = 30, clock: Callable[[], datetime] = utcnow):
        self.ttl = timedelta(days=ttl_days)
        self.clock = clock

    def _load(self, guest_id: str) -> Optional[GuestUsage]:
        return db.session.execute(
            select(GuestUsage)
            .filter_by(guest_id=guest_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _touch(self, guest_id: str, now: datetime) -> bool:
        """Refresh last_seen_at and push expires_at forward; never backward."""
        expiry = now + self.ttl
        result = db.session.execute(
            update(GuestUsage)
            .where(GuestUsage.guest_id == guest_id)
            .values(
                last_seen_at=now,
                expires_at=case((GuestUsage.expires_at < expiry, expiry), else_=GuestUsage.expires_at),
            )
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount > 0

    @retry(
        retry=retry_if_exception_type(IntegrityError),
        stop=stop_after_attempt(3),
        reraise=True
    )
    def get_or_create(self, guest_id: str) -> GuestUsage:
        """
        Fetch the usage record for a guest, creating it on first contact.

        A concurrent first request that wins the insert makes ours fail on the
        unique guest_id; the retry then finds and touches the winner's row.
        """
        now = self.clock()
        if not self._touch(guest_id, now):
            db.session.add(GuestUsage(
                guest_id=guest_id,
                chat_count=0,
                last_seen_at=now,
                expires_at=now + self.ttl,
            ))
            try:
                db.session.commit()
                logger.info(f"Created guest usage record for {guest_id}")
            except IntegrityError:
                db.session.rollback()
                raise
        return self._load(guest_id)

    def check_and_consume(self, guest_id: str, policy) -> QuotaDecision:
        """
        Consume one chat slot for a guest if any remain.

        Args:
            guest_id: Identifier from the guest cookie
            policy: PolicySettings carrying guest_max_chats

        Returns:
            QuotaDecision; chat_count is untouched when allowed is False
        """
        max_chats = policy.guest_max_chats
        self.get_or_create(guest_id)

        result = db.session.execute(
            update(GuestUsage)
            .where(GuestUsage.guest_id == guest_id, GuestUsage.chat_count < max_chats)
            .values(chat_count=GuestUsage.chat_count + 1, last_seen_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        allowed = result.rowcount == 1

        usage = self._load(guest_id)
        if not allowed:
            logger.info(f"Guest {guest_id} reached chat limit ({usage.chat_count}/{max_chats})")
        return QuotaDecision(allowed=allowed, guest_id=guest_id, usage=usage, max_chats=max_chats)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete usage records whose expiry has passed."""
        result = db.session.execute(
            delete(GuestUsage)
            .where(GuestUsage.expires_at <= (now or self.clock()))
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        logger.info(f"Purged {result.rowcount} expired guest usage records")
        return result.rowcount
