"""
Tests for the RewardsEngine.

Every test checks exact deltas on the wallet, the journal and the account
totals, since the engine's job is to move all three together or not at all.
"""
import pytest
from decimal import Decimal
from unittest.mock import patch

import requests

from rewards_engine.extensions import db
from rewards_engine.models import Account, RewardClaim, WalletTransaction, VIPMembership
from rewards_engine.services.reward_calculator import RewardQuote
from rewards_engine.services.rewards_service import RewardsEngine
from rewards_engine.services.wallet_ledger import WalletLedger
from rewards_engine.utils.exceptions import ConsistencyFailure

GAME = {'id': 'g-1', 'title': 'Memory Match', 'base_points': 100, 'base_cashback': '0.50'}
CASHBACK_DEAL = {'id': 'd-1', 'deal_type': 'cashback', 'cashback_rate': '0.05', 'maximum_cashback': '1.50'}


def wallet_of(user_id):
    return WalletLedger().get_wallet(user_id, refresh=True)


def account_of(user_id):
    return db.session.get(Account, user_id, populate_existing=True)


def journal_of(user_id, **filters):
    return WalletTransaction.query.filter_by(user_id=user_id, **filters).all()


def receipt(amount='20.00', confidence=0.95, store='Corner Grocer'):
    return {'store_name': store, 'amount': amount, 'confidence': confidence, 'items': []}


class TestApplyReward:
    """Tests for RewardsEngine.apply_reward."""

    def test_applies_exact_deltas(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().apply_reward(user_id, {'points': 100, 'cashback': '1.50'}, 'promo-1')

            assert result['success'] is True
            assert result['wallet']['balance'] == 1.5
            account = account_of(user_id)
            assert account.total_points == 100
            assert Decimal(account.total_cashback) == Decimal('1.50')
            assert Decimal(account.total_earnings) == Decimal('1.50')

            entries = journal_of(user_id)
            assert len(entries) == 1
            assert entries[0].type == 'credit'
            assert entries[0].source == 'manual'
            assert result['claim']['transaction_reference'] == entries[0].reference_id

    def test_same_key_applies_once(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.apply_reward(user_id, RewardQuote(100, Decimal('1.50')), 'promo-1')
            second = engine.apply_reward(user_id, RewardQuote(100, Decimal('1.50')), 'promo-1')

            assert second['success'] is False
            assert second['code'] == 'ALREADY_APPLIED'
            assert second['claim']['idempotency_key'] == 'promo-1'
            assert Decimal(wallet_of(user_id).balance) == Decimal('1.50')
            assert account_of(user_id).total_points == 100
            assert len(journal_of(user_id)) == 1

    def test_points_only_reward_writes_no_journal_entry(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().apply_reward(user_id, {'points': 25, 'cashback': 0}, 'bonus-1')

            assert result['success'] is True
            assert result['transaction'] is None
            assert journal_of(user_id) == []
            assert account_of(user_id).total_points == 25

    @pytest.mark.parametrize('quote,code', [
        ({'points': 0, 'cashback': 0}, 'INVALID_AMOUNT'),
        ({'points': -5, 'cashback': 0}, 'INVALID_AMOUNT'),
        ({'points': 0, 'cashback': '0.005'}, 'INVALID_AMOUNT'),
    ])
    def test_invalid_quotes(self, app, user_id, quote, code):
        with app.app_context():
            result = RewardsEngine().apply_reward(user_id, quote, 'bad-1')
            assert result['success'] is False
            assert result['code'] == code
            assert RewardClaim.query.count() == 0

    def test_idempotency_key_required(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().apply_reward(user_id, {'points': 1}, '  ')
            assert result['code'] == 'MISSING_FIELD'

    def test_unknown_account(self, app):
        with app.app_context():
            result = RewardsEngine().apply_reward(999, {'points': 1}, 'k')
            assert result['code'] == 'ACCOUNT_NOT_FOUND'

    def test_suspended_account_not_eligible(self, app, user_id):
        with app.app_context():
            account_of(user_id).status = 'suspended'
            db.session.commit()

            result = RewardsEngine().apply_reward(user_id, {'points': 1}, 'k')
            assert result['code'] == 'NOT_ELIGIBLE'

    def test_journal_failure_rolls_back_everything(self, app, funded_user_id):
        with app.app_context():
            taken = journal_of(funded_user_id)[0].reference_id
            with patch('rewards_engine.services.transaction_journal.generate_reference_id', return_value=taken):
                with pytest.raises(ConsistencyFailure):
                    RewardsEngine().apply_reward(funded_user_id, {'points': 10, 'cashback': '1.00'}, 'doomed')

            assert Decimal(wallet_of(funded_user_id).balance) == Decimal('50.00')
            assert account_of(funded_user_id).total_points == 500
            assert RewardClaim.query.filter_by(idempotency_key='doomed').count() == 0


class TestCompleteSource:
    """Tests for games, challenges and deals."""

    def test_game_reward(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().complete_source(user_id, 'game', dict(GAME, difficulty='hard'),
                                                     idempotency_key='play-1')

            assert result['success'] is True
            assert result['quote'] == {'points': 200, 'cashback': 1.0}
            assert result['is_vip'] is False
            assert Decimal(wallet_of(user_id).balance) == Decimal('1.00')
            assert account_of(user_id).total_points == 200
            assert journal_of(user_id)[0].source_id == 'g-1'

    def test_vip_multiplier_applied_once(self, app, vip_user_id):
        with app.app_context():
            result = RewardsEngine().complete_source(vip_user_id, 'game', GAME, idempotency_key='play-1')

            assert result['quote'] == {'points': 150, 'cashback': 0.75}
            assert result['is_vip'] is True
            assert Decimal(wallet_of(vip_user_id).balance) == Decimal('0.75')
            assert account_of(vip_user_id).total_points == 150

            membership = VIPMembership.query.filter_by(user_id=vip_user_id).populate_existing().one()
            assert membership.games_played == 1
            assert membership.total_points_earned == 150

    def test_each_play_needs_its_own_key(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            assert engine.complete_source(user_id, 'game', GAME, idempotency_key='play-1')['success']
            assert engine.complete_source(user_id, 'game', GAME, idempotency_key='play-2')['success']
            replay = engine.complete_source(user_id, 'game', GAME, idempotency_key='play-2')

            assert replay['code'] == 'ALREADY_APPLIED'
            assert account_of(user_id).total_points == 200

    def test_game_without_key(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().complete_source(user_id, 'game', GAME)
            assert result['code'] == 'MISSING_FIELD'

    def test_daily_cap(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            capped = dict(GAME, max_points_per_day=250)
            assert engine.complete_source(user_id, 'game', capped, idempotency_key='p1')['success']
            assert engine.complete_source(user_id, 'game', capped, idempotency_key='p2')['success']
            third = engine.complete_source(user_id, 'game', capped, idempotency_key='p3')

            assert third['code'] == 'DAILY_CAP_REACHED'
            assert RewardClaim.query.filter_by(user_id=user_id).count() == 2
            assert len(journal_of(user_id)) == 2
            assert account_of(user_id).total_points == 200

    def test_deal_used_once(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            first = engine.complete_source(user_id, 'deal', CASHBACK_DEAL, purchase_amount='40.00')
            second = engine.complete_source(user_id, 'deal', CASHBACK_DEAL, purchase_amount='40.00')

            assert first['success'] is True
            assert first['claim']['idempotency_key'] == 'deal:d-1'
            assert first['quote']['cashback'] == 1.5
            assert second['code'] == 'ALREADY_USED'
            assert Decimal(wallet_of(user_id).balance) == Decimal('1.50')

    def test_deal_cap_applies_before_vip(self, app, vip_user_id):
        with app.app_context():
            result = RewardsEngine().complete_source(vip_user_id, 'deal', CASHBACK_DEAL, purchase_amount='40.00')
            assert result['quote']['cashback'] == 2.25

    def test_vip_only_source(self, app, user_id, vip_user_id):
        with app.app_context():
            engine = RewardsEngine()
            vip_game = dict(GAME, is_vip_only=True)
            denied = engine.complete_source(user_id, 'game', vip_game, idempotency_key='p1')
            allowed = engine.complete_source(vip_user_id, 'game', vip_game, idempotency_key='p1')

            assert denied['code'] == 'NOT_ELIGIBLE'
            assert allowed['success'] is True

    def test_receipts_not_completed_here(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().complete_source(user_id, 'receipt', {'id': 'r-1'}, idempotency_key='x')
            assert result['code'] == 'INVALID_SOURCE_CONFIG'

    def test_quote_is_read_only(self, app, vip_user_id):
        with app.app_context():
            result = RewardsEngine().quote_reward('game', GAME, vip_user_id)

            assert result['quote'] == RewardQuote(150, Decimal('0.75'))
            assert result['eligible'] is True
            assert result['remaining_today'] is None
            assert RewardClaim.query.count() == 0

    def test_quote_reports_ineligibility(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().quote_reward('game', dict(GAME, is_vip_only=True), user_id)
            assert result['eligible'] is False
            assert result['reason'] == 'vip_only'


class TestDailyReward:
    """Tests for claim_daily_reward."""

    def test_claim(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().claim_daily_reward(user_id, date='2026-03-15')

            assert result['success'] is True
            assert result['record']['streak'] == 1
            assert result['claim']['idempotency_key'] == 'daily:2026-03-15'
            assert Decimal(wallet_of(user_id).balance) == Decimal('0.10')
            assert account_of(user_id).total_points == 10

    def test_second_claim_same_day(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.claim_daily_reward(user_id, date='2026-03-15')
            again = engine.claim_daily_reward(user_id, date='2026-03-15')

            assert again['code'] == 'ALREADY_CLAIMED'
            assert Decimal(wallet_of(user_id).balance) == Decimal('0.10')
            assert len(journal_of(user_id)) == 1

    def test_streak_continues(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.claim_daily_reward(user_id, date='2026-03-15')
            result = engine.claim_daily_reward(user_id, date='2026-03-16')

            assert result['streak']['current_streak'] == 2
            assert account_of(user_id).total_points == 20

    def test_vip_does_not_scale_daily_reward(self, app, vip_user_id):
        with app.app_context():
            result = RewardsEngine().claim_daily_reward(vip_user_id)
            assert result['record']['points'] == 10
            assert result['record']['cashback'] == 0.1

    def test_status(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.claim_daily_reward(user_id, date='2026-03-15')
            status = engine.get_daily_reward_status(user_id, date='2026-03-16')

            assert status['success'] is True
            assert status['claimed_today'] is False
            assert status['current_streak'] == 1
            assert status['next_streak'] == 2

    def test_backdated_claim_keeps_streak(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.claim_daily_reward(user_id, date='2026-01-02')
            backdated = engine.claim_daily_reward(user_id, date='2026-01-01')

            assert backdated['success'] is False
            assert backdated['code'] == 'NOT_ELIGIBLE'
            assert len(journal_of(user_id)) == 1

            result = engine.claim_daily_reward(user_id, date='2026-01-03')
            assert result['record']['streak'] == 2

    def test_malformed_date(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            claimed = engine.claim_daily_reward(user_id, date='2026-13-45')
            status = engine.get_daily_reward_status(user_id, date='yesterday')

            assert claimed == {'success': False, 'error': claimed['error'], 'code': 'VALIDATION_ERROR'}
            assert status['code'] == 'VALIDATION_ERROR'
            assert len(journal_of(user_id)) == 0


class TestReceipts:
    """Tests for receipt submission and review."""

    def test_confident_receipt_auto_approved(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().submit_receipt(user_id, 'r-1', receipt())

            assert result['status'] == 'approved'
            assert result['quote'] == {'points': 20, 'cashback': 1.0}
            wallet = wallet_of(user_id)
            assert Decimal(wallet.balance) == Decimal('1.00')
            assert Decimal(wallet.pending_balance) == Decimal('0')
            assert account_of(user_id).total_points == 20

    def test_duplicate_receipt(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.submit_receipt(user_id, 'r-1', receipt())
            again = engine.submit_receipt(user_id, 'r-1', receipt())

            assert again['code'] == 'ALREADY_PROCESSED'
            assert Decimal(wallet_of(user_id).balance) == Decimal('1.00')

    def test_threshold_is_exclusive(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().submit_receipt(user_id, 'r-1', receipt(confidence=0.8))
            assert result['status'] == 'pending'

    def test_unsure_receipt_held_pending(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().submit_receipt(user_id, 'r-2', receipt(confidence=0.5))

            assert result['status'] == 'pending'
            assert result['claim']['status'] == 'pending'
            assert result['transaction']['status'] == 'pending'
            wallet = wallet_of(user_id)
            assert Decimal(wallet.balance) == Decimal('1.00')
            assert Decimal(wallet.pending_balance) == Decimal('1.00')
            assert wallet.get_available() == Decimal('0')
            # points wait for approval
            assert account_of(user_id).total_points == 0

    def test_approve_pending_receipt(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.submit_receipt(user_id, 'r-2', receipt(confidence=0.5))
            result = engine.approve_receipt(user_id, 'r-2')

            assert result['status'] == 'approved'
            assert result['claim']['status'] == 'completed'
            assert result['transaction']['status'] == 'completed'
            wallet = wallet_of(user_id)
            assert Decimal(wallet.pending_balance) == Decimal('0')
            assert wallet.get_available() == Decimal('1.00')
            assert Decimal(wallet.total_earned) == Decimal('1.00')
            account = account_of(user_id)
            assert account.total_points == 20
            assert Decimal(account.total_cashback) == Decimal('1.00')

    def test_reject_pending_receipt(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.submit_receipt(user_id, 'r-2', receipt(confidence=0.5))
            result = engine.reject_receipt(user_id, 'r-2', reason='Unreadable total')

            assert result['status'] == 'rejected'
            assert result['claim']['status'] == 'failed'
            wallet = wallet_of(user_id)
            assert Decimal(wallet.balance) == Decimal('0')
            assert Decimal(wallet.pending_balance) == Decimal('0')
            assert account_of(user_id).total_points == 0

            # A rejected receipt cannot be resubmitted
            assert engine.submit_receipt(user_id, 'r-2', receipt())['code'] == 'ALREADY_PROCESSED'

    def test_review_only_once(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.submit_receipt(user_id, 'r-2', receipt(confidence=0.5))
            engine.approve_receipt(user_id, 'r-2')

            assert engine.approve_receipt(user_id, 'r-2')['code'] == 'INVALID_STATUS_TRANSITION'
            assert engine.reject_receipt(user_id, 'r-2')['code'] == 'INVALID_STATUS_TRANSITION'
            assert Decimal(wallet_of(user_id).balance) == Decimal('1.00')

    def test_review_unknown_receipt(self, app, user_id):
        with app.app_context():
            assert RewardsEngine().approve_receipt(user_id, 'nope')['code'] == 'RECEIPT_NOT_FOUND'

    def test_vip_receipt(self, app, vip_user_id):
        with app.app_context():
            result = RewardsEngine().submit_receipt(vip_user_id, 'r-1', receipt())

            assert result['quote'] == {'points': 30, 'cashback': 1.5}
            membership = VIPMembership.query.filter_by(user_id=vip_user_id).populate_existing().one()
            assert membership.receipts_scanned == 1

    def test_missing_amount(self, app, user_id):
        with app.app_context():
            result = RewardsEngine().submit_receipt(user_id, 'r-1', {'confidence': 0.9})
            assert result['code'] == 'INVALID_SOURCE_CONFIG'


class TestWithdrawals:
    """Tests for withdraw and settle_withdrawal."""

    def test_withdraw(self, app, funded_user_id):
        with app.app_context():
            result = RewardsEngine().withdraw(funded_user_id, '20.00', payment_method='paypal')

            assert result['success'] is True
            assert result['transaction']['type'] == 'debit'
            assert result['transaction']['status'] == 'pending'
            assert result['transaction']['source'] == 'withdrawal'
            assert result['wallet']['balance'] == 30.0
            assert result['wallet']['total_withdrawn'] == 20.0
            # the account's reward totals are lifetime figures
            assert Decimal(account_of(funded_user_id).total_cashback) == Decimal('50.00')

    @pytest.mark.parametrize('amount,code', [
        ('0', 'INVALID_AMOUNT'),
        ('-5', 'INVALID_AMOUNT'),
        ('5.00', 'BELOW_MINIMUM_WITHDRAWAL'),
        ('15.00', 'INSUFFICIENT_FUNDS'),
    ])
    def test_checks_in_order_on_empty_wallet(self, app, user_id, amount, code):
        with app.app_context():
            assert RewardsEngine().withdraw(user_id, amount)['code'] == code
            assert journal_of(user_id) == []

    def test_cannot_overdraw(self, app, funded_user_id):
        with app.app_context():
            result = RewardsEngine().withdraw(funded_user_id, '50.50')
            assert result['code'] == 'INSUFFICIENT_FUNDS'
            assert Decimal(wallet_of(funded_user_id).balance) == Decimal('50.00')

    def test_settle_success(self, app, funded_user_id):
        with app.app_context():
            engine = RewardsEngine()
            ref = engine.withdraw(funded_user_id, '20.00')['transaction']['reference_id']
            result = engine.settle_withdrawal(ref, succeeded=True)

            assert result['transaction']['status'] == 'completed'
            assert result['wallet']['balance'] == 30.0
            assert result['wallet']['total_withdrawn'] == 20.0

    def test_settle_failure_refunds(self, app, funded_user_id):
        with app.app_context():
            engine = RewardsEngine()
            ref = engine.withdraw(funded_user_id, '20.00')['transaction']['reference_id']
            result = engine.settle_withdrawal(ref, succeeded=False, reason='Bank rejected')

            assert result['transaction']['status'] == 'failed'
            assert result['wallet']['balance'] == 50.0
            assert result['wallet']['total_withdrawn'] == 0.0

    def test_settle_only_once(self, app, funded_user_id):
        with app.app_context():
            engine = RewardsEngine()
            ref = engine.withdraw(funded_user_id, '20.00')['transaction']['reference_id']
            engine.settle_withdrawal(ref, succeeded=False)

            assert engine.settle_withdrawal(ref, succeeded=False)['code'] == 'INVALID_STATUS_TRANSITION'
            assert Decimal(wallet_of(funded_user_id).balance) == Decimal('50.00')

    def test_settle_rejects_credits(self, app, funded_user_id):
        with app.app_context():
            ref = journal_of(funded_user_id)[0].reference_id
            assert RewardsEngine().settle_withdrawal(ref, succeeded=True)['code'] == 'INVALID_REFERENCE_ID'

    def test_settle_unknown(self, app):
        with app.app_context():
            assert RewardsEngine().settle_withdrawal('TX-0-00000000', True)['code'] == 'TRANSACTION_NOT_FOUND'


class TestConvertPoints:
    """Tests for convert_points."""

    def test_convert(self, app, funded_user_id):
        with app.app_context():
            result = RewardsEngine().convert_points(funded_user_id, 200, 'convert-1')

            assert result['success'] is True
            assert result['cashback'] == 2.0
            account = account_of(funded_user_id)
            assert account.total_points == 300
            assert Decimal(account.total_cashback) == Decimal('50.00')
            assert Decimal(account.total_earnings) == Decimal('52.00')
            assert Decimal(wallet_of(funded_user_id).balance) == Decimal('52.00')
            assert journal_of(funded_user_id, source='conversion')[0].amount == Decimal('2.00')

    def test_convert_is_idempotent(self, app, funded_user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.convert_points(funded_user_id, 200, 'convert-1')
            again = engine.convert_points(funded_user_id, 200, 'convert-1')

            assert again['code'] == 'ALREADY_APPLIED'
            assert account_of(funded_user_id).total_points == 300

    def test_insufficient_points(self, app, funded_user_id):
        with app.app_context():
            result = RewardsEngine().convert_points(funded_user_id, 501, 'convert-1')
            assert result['code'] == 'INSUFFICIENT_POINTS'
            assert account_of(funded_user_id).total_points == 500

    @pytest.mark.parametrize('points', [0, -10, 'many'])
    def test_invalid_points(self, app, funded_user_id, points):
        with app.app_context():
            assert RewardsEngine().convert_points(funded_user_id, points, 'k')['code'] == 'INVALID_AMOUNT'


class TestReads:
    """Tests for balance, history and claims."""

    def test_balance(self, app, funded_user_id):
        with app.app_context():
            result = RewardsEngine().get_balance(funded_user_id)

            assert result['points'] == 500
            assert result['points_value'] == 5.0
            assert result['wallet']['available_balance'] == 50.0
            assert result['total_cashback'] == 50.0
            assert result['is_vip'] is False

    def test_transactions_filtered(self, app, funded_user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.withdraw(funded_user_id, '10.00')
            result = engine.get_transactions(funded_user_id, type='debit')

            assert result['pagination']['total'] == 1
            assert result['transactions'][0]['source'] == 'withdrawal'

    def test_claims(self, app, user_id):
        with app.app_context():
            engine = RewardsEngine()
            engine.complete_source(user_id, 'game', GAME, idempotency_key='p1')
            engine.claim_daily_reward(user_id)

            assert len(engine.get_claims(user_id)['claims']) == 2
            only_games = engine.get_claims(user_id, source_type='game')['claims']
            assert [c['idempotency_key'] for c in only_games] == ['p1']


class TestNotifications:
    """Notifications are sent after commit and never fail the reward."""

    def test_reward_posts_notification(self, app, user_id):
        app.config['NOTIFICATION_SERVICE_URL'] = 'http://notifications.test/send'
        with app.app_context():
            with patch('rewards_engine.services.notification_service.requests.post') as mock_post:
                mock_post.return_value.status_code = 202
                result = RewardsEngine().complete_source(user_id, 'game', GAME, idempotency_key='p1')

            assert result['success'] is True
            mock_post.assert_called_once()
            payload = mock_post.call_args.kwargs['json']
            assert payload['user_id'] == user_id
            assert payload['type'] == 'reward'
            assert payload['data']['points'] == 100

    def test_notification_outage_is_ignored(self, app, user_id):
        app.config['NOTIFICATION_SERVICE_URL'] = 'http://notifications.test/send'
        with app.app_context():
            with patch('rewards_engine.services.notification_service.requests.post',
                       side_effect=requests.exceptions.ConnectionError('down')):
                result = RewardsEngine().claim_daily_reward(user_id)

            assert result['success'] is True
            assert account_of(user_id).total_points == 10

    def test_notifier_bug_is_ignored(self, app, user_id):
        with app.app_context():
            with patch('rewards_engine.services.notification_service.NotificationService.reward_earned',
                       side_effect=RuntimeError('boom')):
                result = RewardsEngine().apply_reward(user_id, {'points': 5}, 'k')
            assert result['success'] is True
