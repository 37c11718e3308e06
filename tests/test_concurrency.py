"""
Concurrency tests.

These run against a file-backed SQLite database so every thread gets its
own connection and its own session, the way concurrent requests would.
"""
import threading
from decimal import Decimal

import pytest

from rewards_engine import create_app
from rewards_engine.extensions import db
from rewards_engine.models import RewardClaim, WalletTransaction
from rewards_engine.services.rewards_service import RewardsEngine
from rewards_engine.services.wallet_ledger import WalletLedger

from conftest import make_account

THREADS = 8


@pytest.fixture
def file_app(tmp_path):
    app = create_app('testing', {
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30, 'check_same_thread': False}},
    })
    with app.app_context():
        db.create_all()
        make_account(1)

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def run_concurrently(app, work):
    """Run work(i) in THREADS threads started together; return the results by index."""
    barrier = threading.Barrier(THREADS)
    results = [None] * THREADS
    errors = []

    def target(i):
        with app.app_context():
            barrier.wait()
            try:
                results[i] = work(i)
            except Exception as e:
                errors.append(e)

    threads = [threading.Thread(target=target, args=(i,)) for i in range(THREADS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    return results


class TestConcurrentRewards:
    """Concurrent requests must neither lose updates nor double-apply."""

    def test_distinct_rewards_all_land(self, file_app):
        results = run_concurrently(file_app, lambda i: RewardsEngine().apply_reward(
            1, {'points': 10, 'cashback': '1.00'}, f'promo-{i}'
        ))

        assert all(r['success'] for r in results)
        with file_app.app_context():
            wallet = WalletLedger().get_wallet(1, refresh=True)
            assert Decimal(wallet.balance) == Decimal('1.00') * THREADS
            assert WalletTransaction.query.filter_by(user_id=1).count() == THREADS

    def test_same_key_applies_once(self, file_app):
        results = run_concurrently(file_app, lambda i: RewardsEngine().apply_reward(
            1, {'points': 10, 'cashback': '1.00'}, 'promo-shared'
        ))

        assert sum(1 for r in results if r['success']) == 1
        assert {r['code'] for r in results if not r['success']} == {'ALREADY_APPLIED'}
        with file_app.app_context():
            assert Decimal(WalletLedger().get_wallet(1, refresh=True).balance) == Decimal('1.00')
            assert RewardClaim.query.count() == 1

    def test_daily_reward_claimed_once(self, file_app):
        results = run_concurrently(file_app, lambda i: RewardsEngine().claim_daily_reward(1))

        assert sum(1 for r in results if r['success']) == 1
        assert {r['code'] for r in results if not r['success']} == {'ALREADY_CLAIMED'}
        with file_app.app_context():
            assert WalletTransaction.query.filter_by(user_id=1).count() == 1

    def test_deal_redeemed_once(self, file_app):
        deal = {'id': 'd-1', 'deal_type': 'cashback', 'cashback_rate': '0.05'}
        results = run_concurrently(file_app, lambda i: RewardsEngine().complete_source(
            1, 'deal', deal, idempotency_key=f'deal-{i}', purchase_amount='20.00'
        ))

        assert sum(1 for r in results if r['success']) == 1
        assert {r['code'] for r in results if not r['success']} == {'ALREADY_USED'}
        with file_app.app_context():
            assert Decimal(WalletLedger().get_wallet(1, refresh=True).balance) == Decimal('1.00')
            assert RewardClaim.query.count() == 1

    def test_daily_cap_never_overrun(self, file_app):
        game = {'id': 'g-1', 'base_points': 10, 'base_cashback': '0.10', 'max_points_per_day': 30}
        results = run_concurrently(file_app, lambda i: RewardsEngine().complete_source(
            1, 'game', game, idempotency_key=f'play-{i}'
        ))

        assert sum(1 for r in results if r['success']) == 3
        assert {r['code'] for r in results if not r['success']} == {'DAILY_CAP_REACHED'}
        with file_app.app_context():
            assert Decimal(WalletLedger().get_wallet(1, refresh=True).balance) == Decimal('0.30')
            assert RewardClaim.query.filter_by(source_type='game').count() == 3

    def test_withdrawals_never_overdraw(self, file_app):
        with file_app.app_context():
            RewardsEngine().apply_reward(1, {'cashback': '50.00'}, 'seed')

        results = run_concurrently(file_app, lambda i: RewardsEngine().withdraw(1, '20.00'))

        assert sum(1 for r in results if r['success']) == 2
        assert {r['code'] for r in results if not r['success']} == {'INSUFFICIENT_FUNDS'}
        with file_app.app_context():
            wallet = WalletLedger().get_wallet(1, refresh=True)
            assert Decimal(wallet.balance) == Decimal('10.00')
            assert Decimal(wallet.total_withdrawn) == Decimal('40.00')
