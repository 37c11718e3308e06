"""
Transaction journal.

One immutable WalletTransaction per ledger mutation, written in the same
database transaction as the balance change. Entries are never edited;
the only permitted change is pending -> completed|failed.
"""
import secrets
import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import WalletTransaction, TransactionType, TransactionStatus
from ..utils.exceptions import (
    ConsistencyFailure,
    InvalidStatusTransitionError,
    TransactionNotFoundError,
    ValidationError,
)
from .wallet_ledger import to_amount

ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING.value: {TransactionStatus.COMPLETED.value, TransactionStatus.FAILED.value},
    TransactionStatus.COMPLETED.value: set(),
    TransactionStatus.FAILED.value: set(),
}

MAX_PER_PAGE = 100


def generate_reference_id() -> str:
    """TX-<epoch ms>-<8 hex chars>"""
    return f"TX-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


class TransactionJournal:

    def __init__(self, max_attempts: int = None):
        self.max_attempts = max_attempts

    def _attempts(self) -> int:
        if self.max_attempts:
            return self.max_attempts
        return current_app.config.get('REFERENCE_ID_MAX_ATTEMPTS', 5)

    def record(
        self,
        user_id: int,
        type: str,
        amount,
        description: str = None,
        status: str = TransactionStatus.COMPLETED.value,
        source: str = None,
        source_id: str = None,
        meta: Dict[str, Any] = None,
    ) -> WalletTransaction:
        """
        Append an entry, regenerating the reference id on collision.

        Each attempt runs in a savepoint so a collision only undoes that
        attempt. Must be called after the unit of work has already written
        something (the ledger UPDATE), so the savepoint nests inside it.

        Raises:
            ConsistencyFailure: no unique reference id after max attempts
        """
        if type not in (TransactionType.CREDIT.value, TransactionType.DEBIT.value):
            raise ValidationError(f"Unknown transaction type '{type}'", field='type')
        if status not in ALLOWED_TRANSITIONS:
            raise ValidationError(f"Unknown transaction status '{status}'", field='status')
        amount = to_amount(amount)

        last_error = None
        for attempt in range(1, self._attempts() + 1):
            entry = WalletTransaction(
                user_id=user_id,
                type=type,
                amount=amount,
                description=description,
                status=status,
                reference_id=generate_reference_id(),
                source=source,
                source_id=str(source_id) if source_id is not None else None,
                meta=meta or {},
                settled_at=datetime.utcnow() if status != TransactionStatus.PENDING.value else None,
            )
            try:
                with db.session.begin_nested():
                    db.session.add(entry)
                return entry
            except IntegrityError as e:
                last_error = e
                current_app.logger.warning(
                    f"Reference id collision on attempt {attempt} for user {user_id}: {entry.reference_id}"
                )

        raise ConsistencyFailure(
            f"Could not allocate a unique transaction reference after {self._attempts()} attempts",
            original_error=last_error,
        )

    def get(self, reference_id: str, user_id: int = None) -> WalletTransaction:
        query = WalletTransaction.query.filter_by(reference_id=reference_id)
        if user_id is not None:
            query = query.filter_by(user_id=user_id)
        entry = query.first()
        if not entry:
            raise TransactionNotFoundError(reference_id)
        return entry

    def _transition(self, entry: WalletTransaction, new_status: str) -> WalletTransaction:
        if new_status not in ALLOWED_TRANSITIONS.get(entry.status, set()):
            raise InvalidStatusTransitionError('transaction', entry.status, new_status)

        # Conditional on the current status so two settlers cannot both win
        updated = WalletTransaction.query.filter_by(
            id=entry.id, status=entry.status
        ).update(
            {'status': new_status, 'settled_at': datetime.utcnow()},
            synchronize_session=False,
        )
        if updated == 0:
            db.session.refresh(entry)
            raise InvalidStatusTransitionError('transaction', entry.status, new_status)
        db.session.refresh(entry)
        return entry

    def mark_completed(self, entry: WalletTransaction) -> WalletTransaction:
        return self._transition(entry, TransactionStatus.COMPLETED.value)

    def mark_failed(self, entry: WalletTransaction) -> WalletTransaction:
        return self._transition(entry, TransactionStatus.FAILED.value)

    def history(
        self,
        user_id: int,
        type: str = None,
        status: str = None,
        source: str = None,
        start_date: datetime = None,
        end_date: datetime = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Dict[str, Any]:
        """Newest-first, paginated journal for one user."""
        query = WalletTransaction.query.filter_by(user_id=user_id)
        if type:
            query = query.filter(WalletTransaction.type == type)
        if status:
            query = query.filter(WalletTransaction.status == status)
        if source:
            query = query.filter(WalletTransaction.source == source)
        if start_date:
            query = query.filter(WalletTransaction.created_at >= start_date)
        if end_date:
            query = query.filter(WalletTransaction.created_at <= end_date)

        page = max(int(page or 1), 1)
        per_page = min(max(int(per_page or 20), 1), MAX_PER_PAGE)

        total = query.count()
        entries = (
            query.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return {
            'transactions': [e.to_dict() for e in entries],
            'pagination': {
                'page': page,
                'per_page': per_page,
                'total': total,
                'pages': (total + per_page - 1) // per_page,
            },
        }

    def totals(self, user_id: int) -> Dict[str, Decimal]:
        """
        Sum journal entries by (type, status) and derive what the wallet
        columns should hold. Used by reconciliation.
        """
        rows = (
            db.session.query(
                WalletTransaction.type,
                WalletTransaction.status,
                WalletTransaction.source,
                func.coalesce(func.sum(WalletTransaction.amount), 0),
            )
            .filter(WalletTransaction.user_id == user_id)
            .group_by(WalletTransaction.type, WalletTransaction.status, WalletTransaction.source)
            .all()
        )

        credits_completed = Decimal('0')
        credits_pending = Decimal('0')
        debits_completed = Decimal('0')
        debits_pending = Decimal('0')
        for entry_type, status, source, total in rows:
            total = Decimal(str(total))
            if entry_type == TransactionType.CREDIT.value:
                if status == TransactionStatus.COMPLETED.value:
                    credits_completed += total
                elif status == TransactionStatus.PENDING.value:
                    credits_pending += total
            else:
                if status == TransactionStatus.COMPLETED.value:
                    debits_completed += total
                elif status == TransactionStatus.PENDING.value:
                    debits_pending += total

        withdrawn = debits_completed + debits_pending
        return {
            'balance': credits_completed + credits_pending - withdrawn,
            'pending_balance': credits_pending,
            'total_earned': credits_completed,
            'total_withdrawn': withdrawn,
        }
