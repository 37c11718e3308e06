"""
Wallet and wallet transaction journal models.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from ..extensions import db


class TransactionType(str, Enum):
    """Direction of a journal entry."""
    CREDIT = 'credit'
    DEBIT = 'debit'


class TransactionStatus(str, Enum):
    """Journal entry status. Only pending -> completed|failed is allowed."""
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


class Wallet(db.Model):
    """
    Cashback wallet, one per account.

    Balances are never written by read-modify-write: WalletLedger issues a
    single UPDATE with the arithmetic and guards in SQL. The CHECK
    constraints below are the last line of defence for the invariants.

    Pending credits (unverified receipts) are held inside ``balance`` and
    also counted in ``pending_balance``, so available = balance - pending.
    """
    __tablename__ = 'wallets'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, unique=True)

    balance = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    pending_balance = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    total_earned = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    total_withdrawn = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)

    minimum_withdrawal = db.Column(db.Numeric(10, 2), default=Decimal('10.00'), nullable=False)
    currency = db.Column(db.String(3), default='USD')
    is_active = db.Column(db.Boolean, default=True)

    last_transaction_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('balance >= 0', name='balance_non_negative'),
        db.CheckConstraint('pending_balance >= 0', name='pending_non_negative'),
        db.CheckConstraint('balance >= pending_balance', name='balance_covers_pending'),
        db.CheckConstraint('total_earned >= 0', name='earned_non_negative'),
        db.CheckConstraint('total_withdrawn >= 0', name='withdrawn_non_negative'),
        db.CheckConstraint('minimum_withdrawal >= 1', name='minimum_withdrawal_floor'),
    )

    def __repr__(self):
        return f'<Wallet user={self.user_id} ${self.balance} (pending ${self.pending_balance})>'

    def get_available(self) -> Decimal:
        return Decimal(self.balance or 0) - Decimal(self.pending_balance or 0)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'balance': float(self.balance or 0),
            'pending_balance': float(self.pending_balance or 0),
            'available_balance': float(self.get_available()),
            'total_earned': float(self.total_earned or 0),
            'total_withdrawn': float(self.total_withdrawn or 0),
            'minimum_withdrawal': float(self.minimum_withdrawal or 0),
            'currency': self.currency,
            'last_transaction_at': self.last_transaction_at.isoformat() if self.last_transaction_at else None,
        }


class WalletTransaction(db.Model):
    """
    Append-only journal of every wallet-affecting event.

    Immutable once created; the only permitted change is the status
    transition pending -> completed|failed (TransactionJournal enforces it).
    """
    __tablename__ = 'wallet_transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, index=True)

    type = db.Column(db.String(10), nullable=False)  # credit, debit
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    description = db.Column(db.String(500))
    status = db.Column(db.String(20), nullable=False, default=TransactionStatus.COMPLETED.value)
    reference_id = db.Column(db.String(64), nullable=False, unique=True)

    # Source tracking
    source = db.Column(db.String(50))  # game, challenge, deal, receipt, daily_login, withdrawal, conversion
    source_id = db.Column(db.String(100))
    meta = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    settled_at = db.Column(db.DateTime)

    account = db.relationship('Account', backref=db.backref('transactions', lazy='dynamic'))

    __table_args__ = (
        db.CheckConstraint('amount > 0', name='amount_positive'),
        db.CheckConstraint("type IN ('credit', 'debit')", name='type_valid'),
        db.CheckConstraint("status IN ('pending', 'completed', 'failed')", name='status_valid'),
        db.Index('ix_wallet_transactions_user_created', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f'<WalletTransaction {self.reference_id}: {self.type} ${self.amount} {self.status}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type,
            'amount': float(self.amount),
            'description': self.description,
            'status': self.status,
            'reference_id': self.reference_id,
            'source': self.source,
            'source_id': self.source_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'settled_at': self.settled_at.isoformat() if self.settled_at else None,
        }
