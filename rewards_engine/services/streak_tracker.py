"""
Daily login streaks.

A claim on day D continues the streak only if the previous claim was on
D-1 in the reward timezone; any gap restarts it at 1. Streaks never
reset on a schedule: a stale last_claim_date is simply not "yesterday".
"""
from datetime import date
from typing import Optional, Tuple

from flask import current_app

from ..extensions import db
from ..models import DailyRewardRecord, RewardStreak
from ..utils.exceptions import AlreadyClaimedError, NotEligibleError
from ..utils.reward_day import reward_today, previous_day
from .reward_sources import DailyLoginSource
from .reward_calculator import RewardCalculator, RewardQuote

_calculator = RewardCalculator()


def reward_for_streak(streak: int) -> RewardQuote:
    """Points 10 + 5 per full 5 days, cashback $0.10 + $0.05 per full 7 days."""
    return _calculator.quote(DailyLoginSource(streak=streak), is_vip=False)


class StreakTracker:

    def get_record(self, user_id: int, day: date) -> Optional[DailyRewardRecord]:
        return DailyRewardRecord.query.filter_by(user_id=user_id, reward_date=day).first()

    def get_streak(self, user_id: int) -> Optional[RewardStreak]:
        return RewardStreak.query.filter_by(user_id=user_id).first()

    @staticmethod
    def next_streak(streak: Optional[RewardStreak], today: date) -> int:
        if streak and streak.last_claim_date == previous_day(today):
            return (streak.current_streak or 0) + 1
        return 1

    @staticmethod
    def effective_streak(streak: Optional[RewardStreak], today: date) -> int:
        """Streak as the user sees it today: broken streaks read as 0."""
        if not streak or not streak.last_claim_date:
            return 0
        if streak.last_claim_date in (today, previous_day(today)):
            return streak.current_streak
        return 0

    def preview(self, user_id: int, today: date = None) -> dict:
        """Whether today is claimed and what the next claim pays. Read-only."""
        today = today or reward_today()
        streak = self.get_streak(user_id)
        record = self.get_record(user_id, today)

        if record:
            next_value = record.streak + 1
        else:
            next_value = self.next_streak(streak, today)

        return {
            'date': today.isoformat(),
            'claimed_today': record is not None,
            'today': record.to_dict() if record else None,
            'current_streak': self.effective_streak(streak, today),
            'longest_streak': streak.longest_streak if streak else 0,
            'next_streak': next_value,
            'next_reward': reward_for_streak(next_value).to_dict(),
        }

    def record_claim(self, user_id: int, today: date = None) -> Tuple[DailyRewardRecord, RewardStreak, RewardQuote]:
        """
        Create today's record and advance the streak, without committing.

        The DailyRewardRecord insert is flushed first so a concurrent claim
        for the same day fails on the unique constraint before anything else
        is written.

        Raises:
            AlreadyClaimedError: today already has a record
            NotEligibleError: today is earlier than the last claimed day
        """
        today = today or reward_today()
        if self.get_record(user_id, today):
            raise AlreadyClaimedError(today)

        streak = self.get_streak(user_id)
        if streak and streak.last_claim_date and today < streak.last_claim_date:
            raise NotEligibleError('date_before_last_claim')
        new_value = self.next_streak(streak, today)
        quote = reward_for_streak(new_value)

        record = DailyRewardRecord(
            user_id=user_id,
            reward_date=today,
            points=quote.points,
            cashback=quote.cashback,
            streak=new_value,
        )
        db.session.add(record)
        db.session.flush()

        if streak is None:
            streak = RewardStreak(user_id=user_id, current_streak=0, longest_streak=0)
            db.session.add(streak)
        streak.current_streak = new_value
        streak.longest_streak = max(streak.longest_streak or 0, new_value)
        streak.last_claim_date = today

        current_app.logger.debug(f"Streak for user {user_id} on {today}: {new_value}")
        return record, streak, quote
