"""
Usage cap enforcement.

Two kinds of limits:

- Daily caps on repeatable sources (games): one DailyUsage row per
  user/source/reward-day. The cap check and the increment are the same
  conditional UPDATE, so two concurrent plays cannot both squeeze under
  the cap.
- One-shot sources (deals, receipts): a SourceUsage row whose unique
  constraint is the guard.

Nothing here commits. Callers run these inside their own unit of work.
"""
from datetime import date
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import update, and_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DailyUsage, SourceUsage
from ..utils.exceptions import DailyCapReachedError, AlreadyUsedError, AlreadyProcessedError
from ..utils.reward_day import reward_today
from .reward_sources import RewardSource
from .reward_calculator import RewardQuote


class UsageCapEnforcer:
    """Gate between a quote and the ledger."""

    # ==================== Daily caps ====================

    def get_daily_usage(self, user_id: int, source_type: str, source_id: str,
                        day: date = None) -> Optional[DailyUsage]:
        day = day or reward_today()
        return DailyUsage.query.filter_by(
            user_id=user_id,
            source_type=source_type,
            source_id=str(source_id),
            usage_date=day,
        ).populate_existing().first()

    def remaining_today(self, user_id: int, source: RewardSource, day: date = None) -> Optional[dict]:
        """What is left under the source's cap today, or None if uncapped."""
        cap = source.daily_cap()
        if cap is None:
            return None
        usage = self.get_daily_usage(user_id, source.source_type, source.source_id, day)
        points_used = usage.points_earned if usage else 0
        cashback_used = Decimal(str(usage.cashback_earned)) if usage else Decimal('0')
        return {
            'points': max(cap.max_points - points_used, 0) if cap.max_points else None,
            'cashback': float(max(cap.max_cashback - cashback_used, Decimal('0'))) if cap.max_cashback else None,
        }

    def _ensure_daily_row(self, user_id: int, source: RewardSource, day: date) -> None:
        if self.get_daily_usage(user_id, source.source_type, source.source_id, day):
            return
        try:
            with db.session.begin_nested():
                db.session.add(DailyUsage(
                    user_id=user_id,
                    source_type=source.source_type,
                    source_id=source.source_id,
                    usage_date=day,
                    points_earned=0,
                    cashback_earned=Decimal('0'),
                    claims=0,
                ))
        except IntegrityError:
            # A concurrent claim created today's row first; the UPDATE below still applies
            current_app.logger.debug(
                f"Daily usage row for user {user_id} {source.source_type}:{source.source_id} already exists"
            )

    def consume_daily(self, user_id: int, source: RewardSource, quote: RewardQuote,
                      day: date = None) -> bool:
        """
        Count ``quote`` against today's cap.

        Returns False when the source is uncapped (nothing tracked).

        Raises:
            DailyCapReachedError: counters + quote would exceed the cap
        """
        cap = source.daily_cap()
        if cap is None:
            return False

        day = day or reward_today()
        self._ensure_daily_row(user_id, source, day)

        guards = [
            DailyUsage.user_id == user_id,
            DailyUsage.source_type == source.source_type,
            DailyUsage.source_id == source.source_id,
            DailyUsage.usage_date == day,
        ]
        if cap.max_points:
            guards.append(DailyUsage.points_earned + quote.points <= cap.max_points)
        if cap.max_cashback:
            guards.append(DailyUsage.cashback_earned + quote.cashback <= cap.max_cashback)

        result = db.session.execute(
            update(DailyUsage)
            .where(and_(*guards))
            .values(
                points_earned=DailyUsage.points_earned + quote.points,
                cashback_earned=DailyUsage.cashback_earned + quote.cashback,
                claims=DailyUsage.claims + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current_app.logger.info(
                f"Daily cap reached: user {user_id} {source.source_type}:{source.source_id} on {day}"
            )
            raise DailyCapReachedError(source.source_type, source.source_id)
        return True

    # ==================== One-shot sources ====================

    def has_used(self, user_id: int, source_type: str, source_id) -> bool:
        return db.session.query(
            SourceUsage.query.filter_by(
                user_id=user_id, source_type=source_type, source_id=str(source_id)
            ).exists()
        ).scalar()

    def claim_once(self, user_id: int, source_type: str, source_id,
                   purchase_amount: Decimal = None) -> SourceUsage:
        """
        Mark a one-shot source used.

        The pre-check gives a clean error in the common case. A concurrent
        duplicate is still stopped by the unique constraint at flush time,
        and the IntegrityError propagates to the unit of work.

        Raises:
            AlreadyUsedError: deal already used
            AlreadyProcessedError: receipt already submitted
        """
        if self.has_used(user_id, source_type, source_id):
            raise self.duplicate_error(source_type, source_id)

        usage = SourceUsage(
            user_id=user_id,
            source_type=source_type,
            source_id=str(source_id),
            purchase_amount=purchase_amount,
        )
        db.session.add(usage)
        db.session.flush()
        return usage

    @staticmethod
    def duplicate_error(source_type: str, source_id):
        if source_type == 'receipt':
            return AlreadyProcessedError(source_id)
        return AlreadyUsedError(source_type, source_id)
