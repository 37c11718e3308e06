"""
Rewards Engine for the rewards economy.

The only place rewards are granted and cashback moves. Every operation
follows the same shape:

    validate -> read-only pre-checks -> ONE database transaction
    (claim row, cap/one-shot guard, ledger UPDATE, journal entry, account
    totals, VIP usage mirror) -> commit -> best-effort notification

ARCHITECTURE:
- Balances and totals are changed by atomic UPDATEs (see WalletLedger),
  never read-modify-write, so concurrent requests commute.
- Idempotency is enforced by unique constraints (RewardClaim key,
  DailyRewardRecord date, SourceUsage source). A concurrent duplicate
  surfaces as IntegrityError at flush/commit; the transaction is rolled
  back and the guard row that won is looked up to report
  AlreadyApplied / AlreadyClaimed / AlreadyUsed / AlreadyProcessed.
- The VIP multiplier is resolved once per operation and applied by the
  calculator. Nothing downstream multiplies again.

Public operations return {'success': True, ...} or the failing error's
to_dict(). ConsistencyFailure is the exception: it is raised.
"""
from datetime import datetime
from decimal import Decimal
from functools import wraps
from typing import Optional, Dict, Any, Callable, List, Tuple, Union

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import (
    Account,
    RewardClaim,
    TransactionType,
    TransactionStatus,
)
from ..utils.exceptions import (
    RewardsError,
    ConsistencyFailure,
    AccountNotFoundError,
    NotFoundError,
    ValidationError,
    InvalidAmountError,
    InvalidSourceConfigError,
    InsufficientPointsError,
    InvalidStatusTransitionError,
    AlreadyAppliedError,
    AlreadyClaimedError,
    NotEligibleError,
)
from ..utils.reward_day import reward_today, to_day_key, parse_day
from .reward_sources import build_source, to_decimal, UserProfile, RewardSource
from .reward_calculator import RewardCalculator, RewardQuote, quantize_cashback
from .usage_caps import UsageCapEnforcer
from .streak_tracker import StreakTracker
from .wallet_ledger import WalletLedger, to_amount
from .transaction_journal import TransactionJournal
from .vip_service import VIPService
from .notification_service import NotificationService

COMPLETABLE_SOURCES = ('game', 'challenge', 'deal')

# Conflict guard: (does the winning row exist?, error to report)
ConflictGuard = Tuple[Callable[[], bool], Callable[[], RewardsError]]


def engine_operation(fn):
    """Turn validation/business errors into result dicts; let ConsistencyFailure through."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ConsistencyFailure:
            raise
        except RewardsError as e:
            db.session.rollback()
            current_app.logger.info(f"{fn.__name__} rejected [{e.code}]: {e.message}")
            result = e.to_dict()
            if isinstance(e, AlreadyAppliedError) and e.claim is not None:
                result['claim'] = e.claim.to_dict()
            return result
    return wrapper


def coerce_quote(quote: Union[RewardQuote, Dict[str, Any]]) -> RewardQuote:
    if isinstance(quote, RewardQuote):
        points, cashback = quote.points, quote.cashback
    elif isinstance(quote, dict):
        points = quote.get('points', 0)
        cashback = quote.get('cashback', 0)
    else:
        raise ValidationError('Quote must have points and cashback', field='quote')

    try:
        points = int(points or 0)
    except (TypeError, ValueError):
        raise InvalidAmountError(points)
    cashback = to_decimal(cashback, 'cashback')
    if points < 0 or cashback < 0:
        raise InvalidAmountError(points if points < 0 else cashback)
    if cashback != quantize_cashback(cashback):
        raise InvalidAmountError(cashback)
    return RewardQuote(points=points, cashback=cashback)


class RewardsEngine:
    """
    Usage:
        engine = RewardsEngine()

        engine.claim_daily_reward(user_id)
        engine.complete_source(user_id, 'game', game_payload, idempotency_key='play-8812')
        engine.submit_receipt(user_id, 'rcpt-77', ocr_result)
        engine.withdraw(user_id, Decimal('25.00'), payment_method='paypal')
    """

    def __init__(
        self,
        ledger: WalletLedger = None,
        journal: TransactionJournal = None,
        caps: UsageCapEnforcer = None,
        streaks: StreakTracker = None,
        vip: VIPService = None,
        notifier: NotificationService = None,
    ):
        self.ledger = ledger or WalletLedger()
        self.journal = journal or TransactionJournal()
        self.caps = caps or UsageCapEnforcer()
        self.streaks = streaks or StreakTracker()
        self.vip = vip or VIPService()
        self._notifier = notifier

    @property
    def notifier(self) -> NotificationService:
        if self._notifier is None:
            self._notifier = NotificationService()
        return self._notifier

    # ==================== Helpers ====================

    def _require_account(self, user_id: int) -> Account:
        account = db.session.get(Account, user_id)
        if not account:
            raise AccountNotFoundError(user_id)
        return account

    def _require_active_account(self, user_id: int) -> Account:
        account = self._require_account(user_id)
        if account.status != 'active':
            raise NotEligibleError('account_inactive')
        return account

    def _calculator_for(self, user_id: int, now: datetime = None) -> Tuple[RewardCalculator, bool]:
        multiplier = self.vip.multiplier_for(user_id, now)
        if multiplier is None:
            return RewardCalculator(current_app.config.get('VIP_MULTIPLIER', Decimal('1.5'))), False
        return RewardCalculator(multiplier), True

    @staticmethod
    def _require_key(idempotency_key) -> str:
        key = str(idempotency_key).strip() if idempotency_key is not None else ''
        if not key:
            raise ValidationError('idempotency_key is required', field='idempotency_key', code='MISSING_FIELD')
        if len(key) > 150:
            raise ValidationError('idempotency_key is too long', field='idempotency_key')
        return key

    @staticmethod
    def _find_claim(user_id: int, key: str) -> Optional[RewardClaim]:
        return RewardClaim.query.filter_by(user_id=user_id, idempotency_key=key).first()

    def _claim_guard(self, user_id: int, key: str) -> ConflictGuard:
        return (
            lambda: self._find_claim(user_id, key) is not None,
            lambda: AlreadyAppliedError(key, self._find_claim(user_id, key)),
        )

    def _commit_unit(self, user_id: int, work: Callable[[], Any], guards: List[ConflictGuard]):
        """
        Run ``work`` and commit it as one transaction.

        On IntegrityError the transaction is rolled back and the guards are
        checked in order; the first whose row now exists names the error.
        Anything else from storage is a ConsistencyFailure.
        """
        try:
            result = work()
            db.session.commit()
            return result
        except IntegrityError as e:
            db.session.rollback()
            for exists, make_error in guards:
                if exists():
                    raise make_error()
            current_app.logger.critical(f"Integrity failure applying reward for user {user_id}: {e}")
            raise ConsistencyFailure(f"Reward for user {user_id} could not be applied consistently", e)
        except RewardsError as e:
            db.session.rollback()
            if isinstance(e, ConsistencyFailure):
                current_app.logger.critical(f"Consistency failure for user {user_id}: {e.message}")
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.critical(f"Storage failure applying reward for user {user_id}: {e}")
            raise ConsistencyFailure(f"Storage error while applying reward for user {user_id}", e)

    def _credit_account(self, user_id: int, points: int = 0, cashback: Decimal = Decimal('0'),
                        earnings: Decimal = None) -> None:
        earnings = cashback if earnings is None else earnings
        values = {}
        if points:
            values['total_points'] = Account.total_points + points
        if cashback:
            values['total_cashback'] = Account.total_cashback + cashback
        if earnings:
            values['total_earnings'] = Account.total_earnings + earnings
        if values:
            db.session.execute(
                update(Account)
                .where(Account.id == user_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    def _apply(
        self,
        user_id: int,
        quote: RewardQuote,
        key: str,
        source_type: str,
        source_id: str = None,
        description: str = None,
        pending: bool = False,
        is_vip: bool = False,
        guard: Callable[[], None] = None,
    ) -> Tuple[RewardClaim, Optional[Any]]:
        """
        The write half of every reward, inside the caller's unit of work.

        The claim row goes in first so a duplicate key fails before any
        balance moves. ``guard`` runs next (cap or one-shot check). Pending
        rewards hold their cashback in pending_balance and leave account
        totals and the VIP mirror to approval.
        """
        status = TransactionStatus.PENDING.value if pending else TransactionStatus.COMPLETED.value
        claim = RewardClaim(
            user_id=user_id,
            idempotency_key=key,
            source_type=source_type,
            source_id=str(source_id) if source_id is not None else None,
            points=quote.points,
            cashback=quote.cashback,
            status=status,
            description=description,
            settled_at=None if pending else datetime.utcnow(),
        )
        db.session.add(claim)
        db.session.flush()

        if guard:
            guard()

        entry = None
        if quote.cashback > 0:
            if pending:
                self.ledger.add_pending_funds(user_id, quote.cashback)
            else:
                self.ledger.add_funds(user_id, quote.cashback)
            entry = self.journal.record(
                user_id,
                TransactionType.CREDIT.value,
                quote.cashback,
                description=description,
                status=status,
                source=source_type,
                source_id=source_id,
                meta={'idempotency_key': key, 'points': quote.points},
            )
            claim.transaction_reference = entry.reference_id

        if not pending:
            self._credit_account(user_id, quote.points, quote.cashback)
            if is_vip:
                self.vip.record_usage(user_id, source_type, quote.points, quote.cashback)
        return claim, entry

    def _notify(self, send: Callable[[NotificationService], Any]) -> None:
        """Fire-and-forget; the reward is already committed."""
        try:
            send(self.notifier)
        except Exception as e:
            current_app.logger.warning(f"Notification dispatch failed: {e}")

    def _reward_result(self, user_id: int, claim: RewardClaim, entry, **extra) -> Dict[str, Any]:
        wallet = self.ledger.get_wallet(user_id, refresh=True)
        result = {
            'success': True,
            'claim': claim.to_dict(),
            'transaction': entry.to_dict() if entry is not None else None,
            'wallet': wallet.to_dict() if wallet else None,
        }
        result.update(extra)
        return result

    # ==================== Quotes ====================

    def _build_and_check(self, user_id: int, source_type: str, source_config: Dict[str, Any],
                         now: datetime = None, **context) -> Tuple[RewardSource, RewardQuote, bool, Optional[str]]:
        account = self._require_account(user_id)
        source = build_source(source_type, source_config, **context)
        calculator, is_vip = self._calculator_for(user_id, now)
        eligible, reason = source.is_eligible(UserProfile.from_account(account, is_vip), now)
        if account.status != 'active':
            eligible, reason = False, 'account_inactive'
        return source, calculator.quote(source, is_vip), is_vip, (None if eligible else reason)

    @engine_operation
    def quote_reward(self, source_type: str, source_config: Dict[str, Any], user_id: int,
                     now: datetime = None, **context) -> Dict[str, Any]:
        """
        Preview the reward ``user_id`` would get for a source. Read-only.

        Returns:
            {'success': True, 'quote': RewardQuote, 'is_vip', 'eligible', 'reason', 'remaining_today'}
        """
        source, quote, is_vip, reason = self._build_and_check(user_id, source_type, source_config, now, **context)
        return {
            'success': True,
            'quote': quote,
            'is_vip': is_vip,
            'eligible': reason is None,
            'reason': reason,
            'remaining_today': self.caps.remaining_today(user_id, source),
        }

    # ==================== Daily reward ====================

    @engine_operation
    def claim_daily_reward(self, user_id: int, date=None) -> Dict[str, Any]:
        """
        Claim today's login reward.

        Safe to call repeatedly or concurrently: exactly one claim per
        reward day succeeds, the rest get ALREADY_CLAIMED.
        """
        self._require_active_account(user_id)
        today = parse_day(date) if date else reward_today()
        day_key = to_day_key(today)
        key = f"daily:{day_key}"

        if self.streaks.get_record(user_id, today):
            raise AlreadyClaimedError(today)
        self.ledger.ensure_wallet(user_id)

        def work():
            record, streak, quote = self.streaks.record_claim(user_id, today)
            claim, entry = self._apply(
                user_id, quote, key,
                source_type='daily_login',
                source_id=day_key,
                description=f"Daily reward - day {record.streak} streak",
            )
            return record, streak, claim, entry

        record, streak, claim, entry = self._commit_unit(user_id, work, [
            (lambda: self.streaks.get_record(user_id, today) is not None, lambda: AlreadyClaimedError(today)),
            self._claim_guard(user_id, key),
        ])

        current_app.logger.info(
            f"Daily reward: user {user_id} {day_key} streak {record.streak} "
            f"+{record.points} pts +${record.cashback}"
        )
        self._notify(lambda n: n.daily_reward_claimed(user_id, record.streak, record.points, record.cashback))

        result = self._reward_result(user_id, claim, entry)
        result.update({'record': record.to_dict(), 'streak': streak.to_dict()})
        return result

    @engine_operation
    def get_daily_reward_status(self, user_id: int, date=None) -> Dict[str, Any]:
        self._require_account(user_id)
        today = parse_day(date) if date else reward_today()
        return dict(self.streaks.preview(user_id, today), success=True)

    # ==================== Generic application ====================

    @engine_operation
    def apply_reward(
        self,
        user_id: int,
        quote: Union[RewardQuote, Dict[str, Any]],
        idempotency_key: str,
        description: str = None,
        source_type: str = 'manual',
        source_id: str = None,
        notify: bool = True,
    ) -> Dict[str, Any]:
        """
        Apply an already-computed quote exactly once per idempotency key.

        The quote is applied as given: no multiplier, no caps.
        """
        quote = coerce_quote(quote)
        if quote.is_empty:
            raise InvalidAmountError(0)
        key = self._require_key(idempotency_key)
        self._require_active_account(user_id)

        existing = self._find_claim(user_id, key)
        if existing:
            raise AlreadyAppliedError(key, existing)
        self.ledger.ensure_wallet(user_id)
        is_vip = self.vip.is_active(user_id)

        claim, entry = self._commit_unit(
            user_id,
            lambda: self._apply(user_id, quote, key, source_type, source_id,
                                description or f"Reward: {source_type}", is_vip=is_vip),
            [self._claim_guard(user_id, key)],
        )

        current_app.logger.info(
            f"Reward applied: user {user_id} '{key}' +{quote.points} pts +${quote.cashback}"
        )
        if notify:
            self._notify(lambda n: n.reward_earned(user_id, source_type, quote.points, quote.cashback))
        return self._reward_result(user_id, claim, entry)

    @engine_operation
    def complete_source(
        self,
        user_id: int,
        source_type: str,
        source_config: Dict[str, Any],
        idempotency_key: str = None,
        purchase_amount=None,
        now: datetime = None,
    ) -> Dict[str, Any]:
        """
        Full flow for a game play, challenge completion or deal redemption:
        build source -> eligibility -> quote (VIP once) -> cap -> apply.

        Deals default their idempotency key to ``deal:<id>``; games and
        challenges must supply one per completion.
        """
        if source_type not in COMPLETABLE_SOURCES:
            raise InvalidSourceConfigError(f"'{source_type}' rewards are not completed through this operation")

        self._require_active_account(user_id)
        source, quote, is_vip, reason = self._build_and_check(
            user_id, source_type, source_config, now, purchase_amount=purchase_amount
        )
        if reason:
            raise NotEligibleError(reason)

        if source.one_shot:
            key = self._require_key(idempotency_key or f"{source_type}:{source.source_id}")
            if self.caps.has_used(user_id, source_type, source.source_id):
                raise self.caps.duplicate_error(source_type, source.source_id)
        else:
            key = self._require_key(idempotency_key)

        existing = self._find_claim(user_id, key)
        if existing:
            raise AlreadyAppliedError(key, existing)
        self.ledger.ensure_wallet(user_id)

        day = reward_today(now)

        def guard():
            if source.one_shot:
                self.caps.claim_once(user_id, source_type, source.source_id,
                                     purchase_amount=getattr(source, 'purchase_amount', None))
            self.caps.consume_daily(user_id, source, quote, day)

        title = source.title or f"{source_type} {source.source_id}"
        claim, entry = self._commit_unit(
            user_id,
            lambda: self._apply(user_id, quote, key, source_type, source.source_id,
                                f"{source_type.capitalize()} reward: {title}", is_vip=is_vip, guard=guard),
            [
                (lambda: source.one_shot and self.caps.has_used(user_id, source_type, source.source_id),
                 lambda: self.caps.duplicate_error(source_type, source.source_id)),
                self._claim_guard(user_id, key),
            ],
        )

        current_app.logger.info(
            f"{source_type} reward: user {user_id} {source.source_id} +{quote.points} pts +${quote.cashback}"
            f"{' (VIP)' if is_vip else ''}"
        )
        self._notify(lambda n: n.reward_earned(user_id, source_type, quote.points, quote.cashback,
                                               {'source_id': source.source_id}))
        return self._reward_result(user_id, claim, entry, quote=quote.to_dict(), is_vip=is_vip)

    # ==================== Receipts ====================

    @staticmethod
    def _receipt_key(receipt_id) -> str:
        return f"receipt:{receipt_id}"

    @engine_operation
    def submit_receipt(self, user_id: int, receipt_id: str, ocr_result: Dict[str, Any],
                       cashback_rate=None) -> Dict[str, Any]:
        """
        Reward a scanned receipt.

        OCR confidence above RECEIPT_AUTO_APPROVE_CONFIDENCE credits the
        reward immediately; otherwise the cashback is held pending until
        approve_receipt / reject_receipt.
        """
        if not receipt_id:
            raise ValidationError('receipt_id is required', field='receipt_id', code='MISSING_FIELD')
        receipt_id = str(receipt_id)
        ocr_result = ocr_result or {}

        if cashback_rate is None:
            cashback_rate = current_app.config.get('DEFAULT_RECEIPT_CASHBACK_RATE', Decimal('0.05'))
        try:
            confidence = float(ocr_result.get('confidence') or 0)
        except (TypeError, ValueError):
            raise ValidationError('confidence must be numeric', field='confidence')
        threshold = current_app.config.get('RECEIPT_AUTO_APPROVE_CONFIDENCE', 0.8)
        auto_approve = confidence > threshold

        self._require_active_account(user_id)
        source, quote, is_vip, reason = self._build_and_check(
            user_id, 'receipt',
            {'id': receipt_id, 'cashback_rate': cashback_rate, 'title': ocr_result.get('store_name')},
            amount=ocr_result.get('amount'),
        )
        if reason:
            raise NotEligibleError(reason)

        key = self._receipt_key(receipt_id)
        if self.caps.has_used(user_id, 'receipt', receipt_id):
            raise self.caps.duplicate_error('receipt', receipt_id)
        self.ledger.ensure_wallet(user_id)

        store = ocr_result.get('store_name') or 'receipt'
        claim, entry = self._commit_unit(
            user_id,
            lambda: self._apply(
                user_id, quote, key, 'receipt', receipt_id,
                f"Receipt cashback: {store}",
                pending=not auto_approve,
                is_vip=is_vip,
                guard=lambda: self.caps.claim_once(user_id, 'receipt', receipt_id, purchase_amount=source.amount),
            ),
            [
                (lambda: self.caps.has_used(user_id, 'receipt', receipt_id),
                 lambda: self.caps.duplicate_error('receipt', receipt_id)),
                self._claim_guard(user_id, key),
            ],
        )

        status = 'approved' if auto_approve else 'pending'
        current_app.logger.info(
            f"Receipt {receipt_id} for user {user_id} {status} (confidence {confidence:.2f}): "
            f"{quote.points} pts ${quote.cashback}"
        )
        self._notify(lambda n: n.receipt_status(user_id, receipt_id, status, quote.cashback))
        return self._reward_result(user_id, claim, entry, status=status, quote=quote.to_dict(),
                                   confidence=confidence)

    def _pending_receipt_claim(self, user_id: int, receipt_id: str, new_status: str) -> RewardClaim:
        claim = self._find_claim(user_id, self._receipt_key(receipt_id))
        if not claim:
            raise NotFoundError('Receipt', receipt_id)
        if claim.status != TransactionStatus.PENDING.value:
            raise InvalidStatusTransitionError('receipt', claim.status, new_status)
        return claim

    def _settle_claim(self, claim: RewardClaim, new_status: str) -> None:
        """pending -> completed|failed, conditional so two reviewers cannot both settle."""
        updated = RewardClaim.query.filter_by(
            id=claim.id, status=TransactionStatus.PENDING.value
        ).update({'status': new_status, 'settled_at': datetime.utcnow()}, synchronize_session=False)
        if updated == 0:
            raise InvalidStatusTransitionError('receipt', 'settled', new_status)

    @engine_operation
    def approve_receipt(self, user_id: int, receipt_id: str) -> Dict[str, Any]:
        receipt_id = str(receipt_id)
        claim = self._pending_receipt_claim(user_id, receipt_id, TransactionStatus.COMPLETED.value)
        cashback = Decimal(str(claim.cashback))
        points = claim.points
        is_vip = self.vip.is_active(user_id)

        def work():
            self._settle_claim(claim, TransactionStatus.COMPLETED.value)
            entry = None
            if cashback > 0:
                entry = self.journal.get(claim.transaction_reference, user_id)
                self.journal.mark_completed(entry)
                self.ledger.approve_pending_funds(user_id, cashback)
            self._credit_account(user_id, points, cashback)
            if is_vip:
                self.vip.record_usage(user_id, 'receipt', points, cashback)
            return entry

        entry = self._commit_unit(user_id, work, [])
        db.session.refresh(claim)

        current_app.logger.info(f"Receipt {receipt_id} approved for user {user_id}: +{points} pts +${cashback}")
        self._notify(lambda n: n.receipt_status(user_id, receipt_id, 'approved', cashback))
        return self._reward_result(user_id, claim, entry, status='approved')

    @engine_operation
    def reject_receipt(self, user_id: int, receipt_id: str, reason: str = None) -> Dict[str, Any]:
        receipt_id = str(receipt_id)
        claim = self._pending_receipt_claim(user_id, receipt_id, TransactionStatus.FAILED.value)
        cashback = Decimal(str(claim.cashback))

        def work():
            self._settle_claim(claim, TransactionStatus.FAILED.value)
            entry = None
            if cashback > 0:
                entry = self.journal.get(claim.transaction_reference, user_id)
                self.journal.mark_failed(entry)
                self.ledger.release_pending_funds(user_id, cashback)
            return entry

        entry = self._commit_unit(user_id, work, [])
        db.session.refresh(claim)

        current_app.logger.info(f"Receipt {receipt_id} rejected for user {user_id}: {reason}")
        self._notify(lambda n: n.receipt_status(user_id, receipt_id, 'rejected', reason=reason))
        return self._reward_result(user_id, claim, entry, status='rejected', reason=reason)

    # ==================== Withdrawals ====================

    @engine_operation
    def withdraw(self, user_id: int, amount, payment_method: str = None) -> Dict[str, Any]:
        """
        Debit available cashback for a payout.

        The journal entry stays pending until settle_withdrawal() reports
        the processor's outcome.
        """
        amount = to_amount(amount)
        self._require_active_account(user_id)
        self.ledger.ensure_wallet(user_id)

        def work():
            wallet = self.ledger.withdraw(user_id, amount)
            entry = self.journal.record(
                user_id,
                TransactionType.DEBIT.value,
                amount,
                description=f"Withdrawal{' to ' + payment_method if payment_method else ''}",
                status=TransactionStatus.PENDING.value,
                source='withdrawal',
                meta={'payment_method': payment_method},
            )
            return wallet, entry

        wallet, entry = self._commit_unit(user_id, work, [])

        current_app.logger.info(f"Withdrawal {entry.reference_id}: user {user_id} -${amount}")
        self._notify(lambda n: n.withdrawal_status(user_id, entry.reference_id, 'pending', amount))
        return {
            'success': True,
            'transaction': entry.to_dict(),
            'wallet': self.ledger.get_wallet(user_id, refresh=True).to_dict(),
        }

    @engine_operation
    def settle_withdrawal(self, reference_id: str, succeeded: bool, reason: str = None) -> Dict[str, Any]:
        """Complete a payout, or fail it and return the money to the balance."""
        entry = self.journal.get(reference_id)
        if entry.type != TransactionType.DEBIT.value or entry.source != 'withdrawal':
            raise ValidationError(f"{reference_id} is not a withdrawal", field='reference_id')
        user_id = entry.user_id
        amount = Decimal(str(entry.amount))

        def work():
            if succeeded:
                self.journal.mark_completed(entry)
            else:
                self.journal.mark_failed(entry)
                self.ledger.refund_withdrawal(user_id, amount)
            return entry

        self._commit_unit(user_id, work, [])
        status = 'completed' if succeeded else 'failed'
        if succeeded:
            current_app.logger.info(f"Withdrawal {reference_id} completed")
        else:
            current_app.logger.warning(f"Withdrawal {reference_id} failed ({reason}); ${amount} refunded")
        self._notify(lambda n: n.withdrawal_status(user_id, reference_id, status, amount))
        return {
            'success': True,
            'transaction': entry.to_dict(),
            'wallet': self.ledger.get_wallet(user_id, refresh=True).to_dict(),
        }

    # ==================== Points ====================

    @engine_operation
    def convert_points(self, user_id: int, points: int, idempotency_key: str) -> Dict[str, Any]:
        """Redeem points for cashback at POINTS_TO_CASHBACK_RATE."""
        try:
            points = int(points)
        except (TypeError, ValueError):
            raise InvalidAmountError(points)
        if points <= 0:
            raise InvalidAmountError(points)
        key = self._require_key(idempotency_key)

        rate = Decimal(str(current_app.config.get('POINTS_TO_CASHBACK_RATE', Decimal('0.01'))))
        cashback = quantize_cashback(Decimal(points) * rate)
        if cashback <= 0:
            raise InvalidAmountError(points)

        account = self._require_active_account(user_id)
        if (account.total_points or 0) < points:
            raise InsufficientPointsError(account.total_points or 0, points)
        existing = self._find_claim(user_id, key)
        if existing:
            raise AlreadyAppliedError(key, existing)
        self.ledger.ensure_wallet(user_id)

        def work():
            claim = RewardClaim(
                user_id=user_id,
                idempotency_key=key,
                source_type='conversion',
                points=points,
                cashback=cashback,
                status=TransactionStatus.COMPLETED.value,
                description=f"Converted {points} points",
                settled_at=datetime.utcnow(),
            )
            db.session.add(claim)
            db.session.flush()

            debited = db.session.execute(
                update(Account)
                .where(Account.id == user_id, Account.total_points >= points)
                .values(total_points=Account.total_points - points)
                .execution_options(synchronize_session=False)
            )
            if debited.rowcount == 0:
                current = db.session.query(Account.total_points).filter(Account.id == user_id).scalar()
                raise InsufficientPointsError(current or 0, points)

            self.ledger.add_funds(user_id, cashback)
            entry = self.journal.record(
                user_id,
                TransactionType.CREDIT.value,
                cashback,
                description=f"Converted {points} points",
                source='conversion',
                meta={'idempotency_key': key, 'points': points},
            )
            claim.transaction_reference = entry.reference_id
            self._credit_account(user_id, earnings=cashback)
            return claim, entry

        claim, entry = self._commit_unit(user_id, work, [self._claim_guard(user_id, key)])
        current_app.logger.info(f"Points converted: user {user_id} -{points} pts +${cashback}")
        return self._reward_result(user_id, claim, entry, points_converted=points, cashback=float(cashback))

    # ==================== Reads ====================

    @engine_operation
    def get_balance(self, user_id: int) -> Dict[str, Any]:
        account = self._require_account(user_id)
        self.ledger.ensure_wallet(user_id)
        db.session.refresh(account)
        rate = Decimal(str(current_app.config.get('POINTS_TO_CASHBACK_RATE', Decimal('0.01'))))
        points = account.total_points or 0
        return {
            'success': True,
            'wallet': self.ledger.get_wallet(user_id, refresh=True).to_dict(),
            'points': points,
            'points_value': float(quantize_cashback(Decimal(points) * rate)),
            'total_cashback': float(account.total_cashback or 0),
            'total_earnings': float(account.total_earnings or 0),
            'is_vip': self.vip.is_active(user_id),
        }

    @engine_operation
    def get_transactions(self, user_id: int, **filters) -> Dict[str, Any]:
        self._require_account(user_id)
        return dict(self.journal.history(user_id, **filters), success=True)

    @engine_operation
    def get_claims(self, user_id: int, source_type: str = None, limit: int = 50) -> Dict[str, Any]:
        self._require_account(user_id)
        query = RewardClaim.query.filter_by(user_id=user_id)
        if source_type:
            query = query.filter_by(source_type=source_type)
        claims = query.order_by(RewardClaim.created_at.desc(), RewardClaim.id.desc()).limit(min(limit, 200)).all()
        return {'success': True, 'claims': [c.to_dict() for c in claims]}
