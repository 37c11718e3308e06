"""
Reward claim, usage cap and daily streak models.

Each table here doubles as an idempotency guard: the unique constraints
are what make a second concurrent claim lose, not a find-then-insert.
"""
from datetime import datetime
from decimal import Decimal
from ..extensions import db


class RewardClaim(db.Model):
    """
    One applied (or pending) reward.

    Unique on (user_id, idempotency_key): the key is the date, deal id,
    receipt id or completion id the caller supplied.
    """
    __tablename__ = 'reward_claims'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    idempotency_key = db.Column(db.String(150), nullable=False)

    source_type = db.Column(db.String(30), nullable=False)  # game, challenge, deal, receipt, daily_login, manual
    source_id = db.Column(db.String(100))

    points = db.Column(db.Integer, default=0, nullable=False)
    cashback = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    status = db.Column(db.String(20), default='completed', nullable=False)  # pending, completed, failed

    transaction_reference = db.Column(db.String(64))  # WalletTransaction.reference_id, if cashback > 0
    description = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    settled_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'idempotency_key', name='uq_reward_claims_user_key'),
    )

    def __repr__(self):
        return f'<RewardClaim {self.idempotency_key} user={self.user_id} {self.points}pts ${self.cashback}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'idempotency_key': self.idempotency_key,
            'source_type': self.source_type,
            'source_id': self.source_id,
            'points': self.points,
            'cashback': float(self.cashback or 0),
            'status': self.status,
            'transaction_reference': self.transaction_reference,
            'description': self.description,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class DailyUsage(db.Model):
    """
    Per-day consumption of a capped, repeatable source (games).

    Keyed by the reference-timezone date, so there is nothing to reset:
    no row for today means nothing earned today.
    """
    __tablename__ = 'daily_usage'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    source_type = db.Column(db.String(30), nullable=False)
    source_id = db.Column(db.String(100), nullable=False)
    usage_date = db.Column(db.Date, nullable=False)

    points_earned = db.Column(db.Integer, default=0, nullable=False)
    cashback_earned = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    claims = db.Column(db.Integer, default=0, nullable=False)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'source_type', 'source_id', 'usage_date',
                            name='uq_daily_usage_user_source_date'),
    )

    def to_dict(self):
        return {
            'source_type': self.source_type,
            'source_id': self.source_id,
            'usage_date': self.usage_date.isoformat(),
            'points_earned': self.points_earned,
            'cashback_earned': float(self.cashback_earned or 0),
            'claims': self.claims,
        }


class SourceUsage(db.Model):
    """One-shot usage flag for deals and receipts."""
    __tablename__ = 'source_usage'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    source_type = db.Column(db.String(30), nullable=False)  # deal, receipt
    source_id = db.Column(db.String(100), nullable=False)
    purchase_amount = db.Column(db.Numeric(12, 2))
    used_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'source_type', 'source_id', name='uq_source_usage_user_source'),
    )

    def to_dict(self):
        return {
            'source_type': self.source_type,
            'source_id': self.source_id,
            'purchase_amount': float(self.purchase_amount) if self.purchase_amount is not None else None,
            'used_at': self.used_at.isoformat() if self.used_at else None,
        }


class DailyRewardRecord(db.Model):
    """Daily login reward; one per user per reference-timezone calendar day."""
    __tablename__ = 'daily_rewards'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    reward_date = db.Column(db.Date, nullable=False)

    points = db.Column(db.Integer, default=0, nullable=False)
    cashback = db.Column(db.Numeric(10, 2), default=Decimal('0'), nullable=False)
    streak = db.Column(db.Integer, default=1, nullable=False)

    claimed_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'reward_date', name='uq_daily_rewards_user_date'),
    )

    def __repr__(self):
        return f'<DailyRewardRecord user={self.user_id} {self.reward_date} streak={self.streak}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'date': self.reward_date.isoformat(),
            'points': self.points,
            'cashback': float(self.cashback or 0),
            'streak': self.streak,
            'claimed_at': self.claimed_at.isoformat() if self.claimed_at else None,
        }


class RewardStreak(db.Model):
    """Consecutive-day daily reward streak for an account."""
    __tablename__ = 'reward_streaks'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, unique=True)

    current_streak = db.Column(db.Integer, default=0, nullable=False)
    longest_streak = db.Column(db.Integer, default=0, nullable=False)
    last_claim_date = db.Column(db.Date)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'current_streak': self.current_streak,
            'longest_streak': self.longest_streak,
            'last_claim_date': self.last_claim_date.isoformat() if self.last_claim_date else None,
        }
