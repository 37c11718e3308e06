"""
VIP membership model.

Subscription capture happens in the payment processor; this table only
tracks the membership window that decides whether the reward multiplier
applies, plus an audit mirror of what the member earned while VIP.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from ..extensions import db


class VIPStatus(str, Enum):
    ACTIVE = 'active'
    EXPIRED = 'expired'
    CANCELLED = 'cancelled'
    PENDING = 'pending'
    SUSPENDED = 'suspended'


class VIPPlan(str, Enum):
    MONTHLY = 'monthly'
    QUARTERLY = 'quarterly'
    YEARLY = 'yearly'


class VIPMembership(db.Model):
    """
    VIP membership for an account.

    The usage_* columns are a derived mirror, incremented in the same
    transaction as the wallet credit. They are never read back to compute
    a balance.
    """
    __tablename__ = 'vip_memberships'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, unique=True)

    plan = db.Column(db.String(20), nullable=False, default=VIPPlan.MONTHLY.value)
    status = db.Column(db.String(20), nullable=False, default=VIPStatus.PENDING.value)
    start_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    end_date = db.Column(db.DateTime, nullable=False)
    auto_renew = db.Column(db.Boolean, default=True)

    multiplier = db.Column(db.Numeric(4, 2), nullable=False, default=Decimal('1.5'))
    price = db.Column(db.Numeric(10, 2))

    # Usage mirror
    total_cashback_earned = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    total_points_earned = db.Column(db.Integer, default=0, nullable=False)
    challenges_completed = db.Column(db.Integer, default=0, nullable=False)
    games_played = db.Column(db.Integer, default=0, nullable=False)
    receipts_scanned = db.Column(db.Integer, default=0, nullable=False)
    deals_used = db.Column(db.Integer, default=0, nullable=False)

    # Cancellation
    cancelled_at = db.Column(db.DateTime)
    cancelled_by = db.Column(db.String(100))
    cancellation_reason = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('multiplier >= 1', name='multiplier_floor'),
        db.Index('ix_vip_memberships_status_end', 'status', 'end_date'),
    )

    def __repr__(self):
        return f'<VIPMembership user={self.user_id} {self.status} until {self.end_date}>'

    def is_active(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        return (
            self.status == VIPStatus.ACTIVE.value
            and self.start_date <= now <= self.end_date
        )

    def days_until_expiry(self, now: datetime = None) -> int:
        now = now or datetime.utcnow()
        remaining = self.end_date - now
        # Partial days round up, like a calendar countdown
        return remaining.days + (1 if remaining.seconds or remaining.microseconds else 0)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'plan': self.plan,
            'status': self.status,
            'is_active': self.is_active(),
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'auto_renew': self.auto_renew,
            'multiplier': float(self.multiplier),
            'usage': {
                'total_cashback_earned': float(self.total_cashback_earned or 0),
                'total_points_earned': self.total_points_earned or 0,
                'challenges_completed': self.challenges_completed or 0,
                'games_played': self.games_played or 0,
                'receipts_scanned': self.receipts_scanned or 0,
                'deals_used': self.deals_used or 0,
            },
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'cancellation_reason': self.cancellation_reason,
        }
