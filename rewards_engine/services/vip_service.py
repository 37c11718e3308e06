"""
VIP membership service.

Payment capture lives in the payment processor. This service only owns
the membership window, its status lifecycle and the usage mirror.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import VIPMembership, VIPStatus, VIPPlan
from ..utils.exceptions import (
    VIPMembershipNotFoundError,
    InvalidStatusTransitionError,
    ValidationError,
)

PLAN_DURATIONS = {
    VIPPlan.MONTHLY.value: timedelta(days=30),
    VIPPlan.QUARTERLY.value: timedelta(days=90),
    VIPPlan.YEARLY.value: timedelta(days=365),
}

PLAN_PRICES = {
    VIPPlan.MONTHLY.value: Decimal('9.99'),
    VIPPlan.QUARTERLY.value: Decimal('24.99'),
    VIPPlan.YEARLY.value: Decimal('89.99'),
}

STATUS_TRANSITIONS = {
    VIPStatus.PENDING.value: {VIPStatus.ACTIVE.value, VIPStatus.CANCELLED.value},
    VIPStatus.ACTIVE.value: {VIPStatus.SUSPENDED.value, VIPStatus.CANCELLED.value, VIPStatus.EXPIRED.value},
    VIPStatus.SUSPENDED.value: {VIPStatus.ACTIVE.value, VIPStatus.CANCELLED.value},
    VIPStatus.EXPIRED.value: {VIPStatus.ACTIVE.value},
    VIPStatus.CANCELLED.value: {VIPStatus.ACTIVE.value},
}

# Source type -> usage mirror counter
USAGE_COUNTERS = {
    'challenge': 'challenges_completed',
    'game': 'games_played',
    'receipt': 'receipts_scanned',
    'deal': 'deals_used',
}


class VIPService:
    """Service for VIP membership operations."""

    def get_membership(self, user_id: int) -> Optional[VIPMembership]:
        return VIPMembership.query.filter_by(user_id=user_id).first()

    def require_membership(self, user_id: int) -> VIPMembership:
        membership = self.get_membership(user_id)
        if not membership:
            raise VIPMembershipNotFoundError(user_id)
        return membership

    def is_active(self, user_id: int, now: datetime = None) -> bool:
        membership = self.get_membership(user_id)
        return bool(membership and membership.is_active(now))

    def multiplier_for(self, user_id: int, now: datetime = None) -> Optional[Decimal]:
        """The membership's multiplier if active right now, else None."""
        membership = self.get_membership(user_id)
        if membership and membership.is_active(now):
            return Decimal(str(membership.multiplier))
        return None

    # ==================== Lifecycle ====================

    def _set_status(self, membership: VIPMembership, new_status: str) -> None:
        if new_status not in STATUS_TRANSITIONS.get(membership.status, set()):
            raise InvalidStatusTransitionError('VIP membership', membership.status, new_status)
        membership.status = new_status

    def subscribe(
        self,
        user_id: int,
        plan: str = VIPPlan.MONTHLY.value,
        price: Decimal = None,
        auto_renew: bool = True,
        payment_confirmed: bool = True,
        now: datetime = None,
    ) -> VIPMembership:
        """
        Start (or restart) a membership.

        With payment_confirmed=False the membership is created pending and
        becomes active through activate() once the processor confirms.
        """
        if plan not in PLAN_DURATIONS:
            raise ValidationError(f"Unknown VIP plan '{plan}'", field='plan')
        now = now or datetime.utcnow()

        membership = self.get_membership(user_id)
        if membership and membership.is_active(now):
            raise InvalidStatusTransitionError('VIP membership', membership.status, VIPStatus.ACTIVE.value)

        if membership is None:
            membership = VIPMembership(
                user_id=user_id,
                multiplier=current_app.config.get('VIP_MULTIPLIER', Decimal('1.5')),
            )
            db.session.add(membership)
            membership.status = VIPStatus.PENDING.value
        elif membership.status != VIPStatus.PENDING.value and not payment_confirmed:
            membership.status = VIPStatus.PENDING.value

        membership.plan = plan
        membership.price = price if price is not None else PLAN_PRICES[plan]
        membership.auto_renew = auto_renew
        membership.start_date = now
        membership.end_date = now + PLAN_DURATIONS[plan]
        membership.cancelled_at = None
        membership.cancelled_by = None
        membership.cancellation_reason = None

        if payment_confirmed and membership.status != VIPStatus.ACTIVE.value:
            self._set_status(membership, VIPStatus.ACTIVE.value)

        db.session.commit()
        current_app.logger.info(
            f"VIP {plan} membership for user {user_id}: {membership.status} until {membership.end_date}"
        )
        return membership

    def activate(self, user_id: int, now: datetime = None) -> VIPMembership:
        """Payment confirmed (pending) or suspension lifted (suspended)."""
        membership = self.require_membership(user_id)
        now = now or datetime.utcnow()
        self._set_status(membership, VIPStatus.ACTIVE.value)
        if membership.end_date < now:
            membership.start_date = now
            membership.end_date = now + PLAN_DURATIONS.get(membership.plan, PLAN_DURATIONS['monthly'])
        db.session.commit()
        return membership

    def renew(self, user_id: int, end_date: datetime = None, now: datetime = None) -> VIPMembership:
        """
        Extend the window by one plan period from whichever is later, now or
        the current end date. An explicit end_date overrides the period.
        """
        membership = self.require_membership(user_id)
        now = now or datetime.utcnow()

        if membership.status != VIPStatus.ACTIVE.value:
            self._set_status(membership, VIPStatus.ACTIVE.value)
            if membership.end_date < now:
                membership.start_date = now

        if end_date is None:
            end_date = max(now, membership.end_date) + PLAN_DURATIONS.get(membership.plan, PLAN_DURATIONS['monthly'])
        elif end_date <= now:
            raise ValidationError('Renewal end date must be in the future', field='end_date')

        membership.end_date = end_date
        db.session.commit()
        current_app.logger.info(f"VIP membership for user {user_id} renewed until {end_date}")
        return membership

    def cancel(self, user_id: int, reason: str = None, cancelled_by: str = 'user') -> VIPMembership:
        membership = self.require_membership(user_id)
        self._set_status(membership, VIPStatus.CANCELLED.value)
        membership.auto_renew = False
        membership.cancelled_at = datetime.utcnow()
        membership.cancelled_by = cancelled_by
        membership.cancellation_reason = reason
        db.session.commit()
        current_app.logger.info(f"VIP membership for user {user_id} cancelled by {cancelled_by}: {reason}")
        return membership

    def suspend(self, user_id: int, reason: str = None) -> VIPMembership:
        membership = self.require_membership(user_id)
        self._set_status(membership, VIPStatus.SUSPENDED.value)
        membership.cancellation_reason = reason
        db.session.commit()
        current_app.logger.warning(f"VIP membership for user {user_id} suspended: {reason}")
        return membership

    def expire_lapsed(self, now: datetime = None) -> int:
        """Mark every active membership past its end date expired."""
        now = now or datetime.utcnow()
        count = VIPMembership.query.filter(
            VIPMembership.status == VIPStatus.ACTIVE.value,
            VIPMembership.end_date < now,
        ).update({'status': VIPStatus.EXPIRED.value}, synchronize_session=False)
        db.session.commit()
        if count:
            current_app.logger.info(f"Expired {count} lapsed VIP memberships")
        return count

    # ==================== Usage mirror ====================

    def record_usage(self, user_id: int, source_type: str, points: int, cashback: Decimal) -> bool:
        """
        Increment the usage mirror inside the caller's unit of work.

        Only active memberships are counted; returns whether a row matched.
        """
        values = {
            'total_points_earned': VIPMembership.total_points_earned + points,
            'total_cashback_earned': VIPMembership.total_cashback_earned + cashback,
        }
        counter = USAGE_COUNTERS.get(source_type)
        if counter:
            column = getattr(VIPMembership, counter)
            values[counter] = column + 1

        result = db.session.execute(
            update(VIPMembership)
            .where(
                VIPMembership.user_id == user_id,
                VIPMembership.status == VIPStatus.ACTIVE.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def usage_summary(self, user_id: int, now: datetime = None) -> Dict[str, Any]:
        """
        What the membership has been worth: the share of VIP-period cashback
        that came from the multiplier, against the plan price.
        """
        membership = self.require_membership(user_id)
        multiplier = Decimal(str(membership.multiplier))
        earned = Decimal(str(membership.total_cashback_earned or 0))
        vip_bonus = (earned - earned / multiplier).quantize(Decimal('0.01'))
        price = Decimal(str(membership.price or 0))

        return {
            'membership': membership.to_dict(),
            'days_until_expiry': max(membership.days_until_expiry(now), 0),
            'vip_bonus_cashback': float(vip_bonus),
            'price': float(price),
            'roi_percent': float((vip_bonus / price * 100).quantize(Decimal('0.1'))) if price > 0 else None,
        }
