"""
Account model.

One row per app user. The identity layer owns authentication; this table
only holds what the rewards economy needs: reward totals and the profile
fields that reward-source eligibility rules look at.
"""
from datetime import datetime
from decimal import Decimal
from ..extensions import db


class Account(db.Model):
    """
    Per-user reward totals.

    total_points / total_cashback / total_earnings are only ever changed by
    the rewards engine, through atomic UPDATE statements.
    """
    __tablename__ = 'accounts'

    id = db.Column(db.Integer, primary_key=True)  # userId from the identity layer
    email = db.Column(db.String(255))
    name = db.Column(db.String(200))
    status = db.Column(db.String(20), default='active', nullable=False)  # active, suspended, closed

    # Reward totals
    total_points = db.Column(db.Integer, default=0, nullable=False)
    total_cashback = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    total_earnings = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)

    # Eligibility profile
    age_range = db.Column(db.String(20))  # under_18, 18_24, 25_34, 35_44, 45_54, 55_plus
    gender = db.Column(db.String(20))     # male, female, other
    location_enabled = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    wallet = db.relationship('Wallet', backref='account', uselist=False)
    vip_membership = db.relationship('VIPMembership', backref='account', uselist=False)

    __table_args__ = (
        db.CheckConstraint('total_points >= 0', name='points_non_negative'),
        db.CheckConstraint('total_cashback >= 0', name='cashback_non_negative'),
        db.CheckConstraint('total_earnings >= 0', name='earnings_non_negative'),
    )

    def __repr__(self):
        return f'<Account {self.id}: {self.total_points} pts ${self.total_cashback}>'

    @property
    def is_vip_active(self) -> bool:
        """Derived from the VIP membership window, never stored."""
        return bool(self.vip_membership and self.vip_membership.is_active())

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'status': self.status,
            'total_points': self.total_points,
            'total_cashback': float(self.total_cashback or 0),
            'total_earnings': float(self.total_earnings or 0),
            'is_vip_active': self.is_vip_active,
            'age_range': self.age_range,
            'gender': self.gender,
            'location_enabled': bool(self.location_enabled),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
