"""
Wallet ledger.

Every balance mutation is ONE UPDATE statement with the arithmetic in SQL
(balance = balance + :amount) and its precondition in the WHERE clause.
Concurrent mutations commute, so no update is ever lost, and a guard that
fails matches zero rows instead of driving a balance negative. The CHECK
constraints on `wallets` back this up.

Methods never commit; the rewards engine owns the unit of work so the
journal entry and the balance change land together.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Wallet
from ..utils.exceptions import (
    AccountNotFoundError,
    InvalidAmountError,
    InsufficientFundsError,
    BelowMinimumWithdrawalError,
    BusinessRuleViolation,
)

CENT = Decimal('0.01')


def to_amount(amount) -> Decimal:
    """Parse a positive cash amount. Raises InvalidAmountError."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(amount)
    if not value.is_finite() or value <= 0 or value != value.quantize(CENT):
        raise InvalidAmountError(amount)
    return value


class WalletLedger:
    """
    Usage:
        ledger = WalletLedger()
        ledger.add_funds(user_id, Decimal('1.50'))
        ledger.withdraw(user_id, Decimal('10.00'))
        db.session.commit()
    """

    def get_wallet(self, user_id: int, refresh: bool = False) -> Optional[Wallet]:
        query = Wallet.query.filter_by(user_id=user_id)
        if refresh:
            # Atomic UPDATEs bypass the identity map
            query = query.populate_existing()
        return query.first()

    def ensure_wallet(self, user_id: int, minimum_withdrawal: Decimal = None) -> Wallet:
        """
        Get or create the user's wallet and commit it.

        Creation runs in its own short transaction, before any reward unit
        of work, so a concurrent first claim cannot fail on the wallet row.
        """
        wallet = self.get_wallet(user_id)
        if wallet:
            return wallet

        if minimum_withdrawal is None:
            minimum_withdrawal = current_app.config.get('DEFAULT_MINIMUM_WITHDRAWAL', Decimal('10.00'))

        wallet = Wallet(
            user_id=user_id,
            balance=Decimal('0'),
            pending_balance=Decimal('0'),
            total_earned=Decimal('0'),
            total_withdrawn=Decimal('0'),
            minimum_withdrawal=minimum_withdrawal,
        )
        db.session.add(wallet)
        try:
            db.session.commit()
            current_app.logger.info(f"Created wallet for user {user_id}")
        except IntegrityError:
            db.session.rollback()
            wallet = self.get_wallet(user_id)
            if wallet is None:
                raise
        return wallet

    def get_available(self, user_id: int) -> Decimal:
        wallet = self.get_wallet(user_id, refresh=True)
        if not wallet:
            raise AccountNotFoundError(user_id)
        return wallet.get_available()

    # ==================== Mutations ====================

    def _apply(self, user_id: int, guards: list, values: dict) -> bool:
        values = dict(values, last_transaction_at=datetime.utcnow())
        result = db.session.execute(
            update(Wallet)
            .where(Wallet.user_id == user_id, Wallet.is_active.is_(True), *guards)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _require_wallet(self, user_id: int) -> Wallet:
        wallet = self.get_wallet(user_id, refresh=True)
        if not wallet:
            raise AccountNotFoundError(user_id)
        if not wallet.is_active:
            raise BusinessRuleViolation(f"Wallet for user {user_id} is not active", "WALLET_INACTIVE")
        return wallet

    def add_funds(self, user_id: int, amount) -> Wallet:
        """Credit available cashback and lifetime earnings."""
        amount = to_amount(amount)
        if not self._apply(user_id, [], {
            'balance': Wallet.balance + amount,
            'total_earned': Wallet.total_earned + amount,
        }):
            self._require_wallet(user_id)
        return self.get_wallet(user_id, refresh=True)

    def add_pending_funds(self, user_id: int, amount) -> Wallet:
        """Hold a credit for review: counted in balance but not available."""
        amount = to_amount(amount)
        if not self._apply(user_id, [], {
            'balance': Wallet.balance + amount,
            'pending_balance': Wallet.pending_balance + amount,
        }):
            self._require_wallet(user_id)
        return self.get_wallet(user_id, refresh=True)

    def approve_pending_funds(self, user_id: int, amount) -> Wallet:
        """
        Release a held credit to available.

        Raises:
            InsufficientFundsError: amount exceeds pending_balance
        """
        amount = to_amount(amount)
        if not self._apply(user_id, [Wallet.pending_balance >= amount], {
            'pending_balance': Wallet.pending_balance - amount,
            'total_earned': Wallet.total_earned + amount,
        }):
            wallet = self._require_wallet(user_id)
            raise InsufficientFundsError(Decimal(wallet.pending_balance), amount)
        return self.get_wallet(user_id, refresh=True)

    def release_pending_funds(self, user_id: int, amount) -> Wallet:
        """
        Drop a held credit that was rejected.

        Raises:
            InsufficientFundsError: amount exceeds pending_balance
        """
        amount = to_amount(amount)
        if not self._apply(user_id, [Wallet.pending_balance >= amount, Wallet.balance >= amount], {
            'balance': Wallet.balance - amount,
            'pending_balance': Wallet.pending_balance - amount,
        }):
            wallet = self._require_wallet(user_id)
            raise InsufficientFundsError(Decimal(wallet.pending_balance), amount)
        return self.get_wallet(user_id, refresh=True)

    def withdraw(self, user_id: int, amount) -> Wallet:
        """
        Debit available cashback.

        Checked in this order: amount > 0, amount >= minimum_withdrawal,
        amount <= available. The last check is repeated inside the UPDATE,
        so two concurrent withdrawals cannot both pass it.

        Raises:
            InvalidAmountError, BelowMinimumWithdrawalError, InsufficientFundsError
        """
        amount = to_amount(amount)
        wallet = self._require_wallet(user_id)

        minimum = Decimal(wallet.minimum_withdrawal)
        if amount < minimum:
            raise BelowMinimumWithdrawalError(amount, minimum)
        if amount > wallet.get_available():
            raise InsufficientFundsError(wallet.get_available(), amount)

        if not self._apply(user_id, [Wallet.balance - Wallet.pending_balance >= amount], {
            'balance': Wallet.balance - amount,
            'total_withdrawn': Wallet.total_withdrawn + amount,
        }):
            wallet = self._require_wallet(user_id)
            current_app.logger.warning(
                f"Withdrawal of ${amount} for user {user_id} lost a race; available now ${wallet.get_available()}"
            )
            raise InsufficientFundsError(wallet.get_available(), amount)
        return self.get_wallet(user_id, refresh=True)

    def refund_withdrawal(self, user_id: int, amount) -> Wallet:
        """Return a failed payout to the balance."""
        amount = to_amount(amount)
        if not self._apply(user_id, [Wallet.total_withdrawn >= amount], {
            'balance': Wallet.balance + amount,
            'total_withdrawn': Wallet.total_withdrawn - amount,
        }):
            wallet = self._require_wallet(user_id)
            raise InsufficientFundsError(Decimal(wallet.total_withdrawn), amount)
        return self.get_wallet(user_id, refresh=True)
