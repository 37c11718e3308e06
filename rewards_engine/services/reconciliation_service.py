"""
Ledger reconciliation.

Recomputes what each wallet and account total should be from the
append-only records (journal entries and reward claims) and reports any
drift. With fix=True the stored totals are overwritten with the
recomputed values.
"""
from decimal import Decimal
from typing import Dict, Any, List

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import Account, Wallet, RewardClaim, TransactionStatus
from ..utils.exceptions import AccountNotFoundError
from .transaction_journal import TransactionJournal

WALLET_FIELDS = ('balance', 'pending_balance', 'total_earned', 'total_withdrawn')
ACCOUNT_FIELDS = ('total_points', 'total_cashback', 'total_earnings')


class LedgerReconciler:

    def __init__(self, journal: TransactionJournal = None):
        self.journal = journal or TransactionJournal()

    def expected_account_totals(self, user_id: int) -> Dict[str, Any]:
        rows = (
            db.session.query(
                RewardClaim.source_type,
                func.coalesce(func.sum(RewardClaim.points), 0),
                func.coalesce(func.sum(RewardClaim.cashback), 0),
            )
            .filter(
                RewardClaim.user_id == user_id,
                RewardClaim.status == TransactionStatus.COMPLETED.value,
            )
            .group_by(RewardClaim.source_type)
            .all()
        )

        points = 0
        cashback = Decimal('0')
        converted = Decimal('0')
        for source_type, claim_points, claim_cashback in rows:
            claim_cashback = Decimal(str(claim_cashback)).quantize(Decimal('0.01'))
            if source_type == 'conversion':
                # Conversions spend points and credit cashback
                points -= int(claim_points)
                converted += claim_cashback
            else:
                points += int(claim_points)
                cashback += claim_cashback

        return {
            'total_points': points,
            'total_cashback': cashback,
            'total_earnings': cashback + converted,
        }

    def reconcile_user(self, user_id: int, fix: bool = False) -> Dict[str, Any]:
        account = db.session.get(Account, user_id, populate_existing=True)
        if not account:
            raise AccountNotFoundError(user_id)
        wallet = Wallet.query.filter_by(user_id=user_id).populate_existing().first()

        drift = {}
        expected_wallet = {k: v.quantize(Decimal('0.01')) for k, v in self.journal.totals(user_id).items()}
        if wallet:
            for field in WALLET_FIELDS:
                actual = Decimal(str(getattr(wallet, field) or 0)).quantize(Decimal('0.01'))
                if actual != expected_wallet[field]:
                    drift[f'wallet.{field}'] = {'actual': float(actual), 'expected': float(expected_wallet[field])}

        expected_account = self.expected_account_totals(user_id)
        for field in ACCOUNT_FIELDS:
            raw = getattr(account, field) or 0
            actual = raw if field == 'total_points' else Decimal(str(raw)).quantize(Decimal('0.01'))
            if actual != expected_account[field]:
                drift[f'account.{field}'] = {'actual': float(actual), 'expected': float(expected_account[field])}

        fixed = False
        if drift:
            current_app.logger.warning(f"Ledger drift for user {user_id}: {drift}")
            if fix:
                if wallet:
                    db.session.execute(
                        update(Wallet)
                        .where(Wallet.user_id == user_id)
                        .values(**{f: expected_wallet[f] for f in WALLET_FIELDS})
                        .execution_options(synchronize_session=False)
                    )
                db.session.execute(
                    update(Account)
                    .where(Account.id == user_id)
                    .values(**expected_account)
                    .execution_options(synchronize_session=False)
                )
                db.session.commit()
                fixed = True
                current_app.logger.warning(f"Ledger drift for user {user_id} repaired")

        return {
            'user_id': user_id,
            'consistent': not drift,
            'drift': drift,
            'fixed': fixed,
        }

    def reconcile_all(self, fix: bool = False) -> Dict[str, Any]:
        user_ids = [row[0] for row in db.session.query(Account.id).order_by(Account.id).all()]
        reports: List[Dict[str, Any]] = []
        for user_id in user_ids:
            report = self.reconcile_user(user_id, fix=fix)
            if not report['consistent']:
                reports.append(report)
        return {
            'checked': len(user_ids),
            'inconsistent': len(reports),
            'reports': reports,
        }
