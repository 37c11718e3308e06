"""
Pytest configuration and shared fixtures.

The app fixture does not keep an application context pushed: each test
opens its own ``with app.app_context():`` block (or goes through the test
client), and fixtures hand back plain user ids. The in-memory SQLite
database lives on a single shared connection, so data survives across
contexts within one test.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from rewards_engine import create_app
from rewards_engine.extensions import db

USER_ID = 1001
VIP_USER_ID = 2002
FUNDED_USER_ID = 3003
INTERNAL_KEY = 'test-internal-key'


@pytest.fixture
def app():
    """Application with a fresh schema per test."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_account(user_id, **profile):
    from rewards_engine.models import Account
    from rewards_engine.services.wallet_ledger import WalletLedger

    account = Account(
        id=user_id,
        email=f'user{user_id}@example.com',
        name=f'User {user_id}',
        status=profile.pop('status', 'active'),
        total_points=0,
        total_cashback=Decimal('0'),
        total_earnings=Decimal('0'),
        **profile
    )
    db.session.add(account)
    db.session.commit()
    WalletLedger().ensure_wallet(user_id)
    return user_id


@pytest.fixture
def user_id(app):
    """Active, non-VIP account with an empty wallet."""
    with app.app_context():
        return make_account(USER_ID, age_range='25_34', gender='female', location_enabled=True)


@pytest.fixture
def vip_user_id(app):
    """Account with an active 1.5x VIP membership."""
    from rewards_engine.models import VIPMembership, VIPStatus

    with app.app_context():
        make_account(VIP_USER_ID, age_range='18_24', gender='male')
        now = datetime.utcnow()
        db.session.add(VIPMembership(
            user_id=VIP_USER_ID,
            plan='monthly',
            status=VIPStatus.ACTIVE.value,
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=29),
            multiplier=Decimal('1.5'),
            price=Decimal('9.99'),
        ))
        db.session.commit()
        return VIP_USER_ID


@pytest.fixture
def funded_user_id(app):
    """Account holding $50.00 of available cashback and 500 points."""
    from rewards_engine.services.rewards_service import RewardsEngine

    with app.app_context():
        make_account(FUNDED_USER_ID)
        result = RewardsEngine().apply_reward(
            FUNDED_USER_ID,
            {'points': 500, 'cashback': '50.00'},
            idempotency_key='seed-balance',
            description='Seed balance',
        )
        assert result['success'] is True
        return FUNDED_USER_ID


def user_headers(user_id):
    return {'X-User-Id': str(user_id)}


def internal_headers():
    return {'X-Internal-Key': INTERNAL_KEY}
