"""
Tests for the UsageCapEnforcer.
"""
import pytest
from datetime import date
from decimal import Decimal

from rewards_engine.extensions import db
from rewards_engine.services.reward_calculator import RewardQuote
from rewards_engine.services.reward_sources import build_source
from rewards_engine.services.usage_caps import UsageCapEnforcer
from rewards_engine.utils.exceptions import (
    DailyCapReachedError,
    AlreadyUsedError,
    AlreadyProcessedError,
)

DAY = date(2026, 3, 15)


class TestDailyCaps:
    """Tests for per-day caps on repeatable sources."""

    def test_uncapped_source_is_not_tracked(self, app, user_id):
        with app.app_context():
            caps = UsageCapEnforcer()
            source = build_source('game', {'id': 'g-1', 'base_points': 10})
            assert caps.consume_daily(user_id, source, RewardQuote(10, Decimal('0.10')), DAY) is False
            assert caps.get_daily_usage(user_id, 'game', 'g-1', DAY) is None
            assert caps.remaining_today(user_id, source, DAY) is None

    def test_points_cap_allows_exactly_the_limit(self, app, user_id):
        with app.app_context():
            caps = UsageCapEnforcer()
            source = build_source('game', {'id': 'g-1', 'max_points_per_day': 100})
            quote = RewardQuote(50, Decimal('0'))

            assert caps.consume_daily(user_id, source, quote, DAY) is True
            assert caps.consume_daily(user_id, source, quote, DAY) is True
            db.session.commit()

            with pytest.raises(DailyCapReachedError):
                caps.consume_daily(user_id, source, RewardQuote(1, Decimal('0')), DAY)
            db.session.rollback()

            usage = caps.get_daily_usage(user_id, 'game', 'g-1', DAY)
            assert usage.points_earned == 100
            assert usage.claims == 2

    def test_cashback_cap(self, app, user_id):
        with app.app_context():
            caps = UsageCapEnforcer()
            source = build_source('game', {'id': 'g-2', 'max_cashback_per_day': '1.00'})
            quote = RewardQuote(0, Decimal('0.25'))

            for _ in range(4):
                caps.consume_daily(user_id, source, quote, DAY)
            db.session.commit()

            with pytest.raises(DailyCapReachedError):
                caps.consume_daily(user_id, source, quote, DAY)
            db.session.rollback()

    def test_remaining_today(self, app, user_id):
        with app.app_context():
            caps = UsageCapEnforcer()
            source = build_source('game', {'id': 'g-3', 'max_points_per_day': 100, 'max_cashback_per_day': '1.00'})
            caps.consume_daily(user_id, source, RewardQuote(30, Decimal('0.25')), DAY)
            db.session.commit()

            assert caps.remaining_today(user_id, source, DAY) == {'points': 70, 'cashback': 0.75}

    def test_cap_resets_on_the_next_day(self, app, user_id):
        with app.app_context():
            caps = UsageCapEnforcer()
            source = build_source('game', {'id': 'g-4', 'max_points_per_day': 50})
            caps.consume_daily(user_id, source, RewardQuote(50, Decimal('0')), DAY)
            db.session.commit()

            assert caps.consume_daily(user_id, source, RewardQuote(50, Decimal('0')), date(2026, 3, 16)) is True
            db.session.commit()

    def test_rejected_claim_leaves_counters_unchanged(self, app, user_id):
        with app.app_context():
            caps = UsageCapEnforcer()
            source = build_source('game', {'id': 'g-5', 'max_points_per_day': 100})
            caps.consume_daily(user_id, source, RewardQuote(60, Decimal('0')), DAY)
            db.session.commit()

            with pytest.raises(DailyCapReachedError):
                caps.consume_daily(user_id, source, RewardQuote(60, Decimal('0')), DAY)
            db.session.rollback()

            assert caps.get_daily_usage(user_id, 'game', 'g-5', DAY).points_earned == 60


class TestOneShotSources:
    """Tests for deal and receipt single-use guards."""

    def test_deal_used_once(self, app, user_id):
        with app.app_context():
            caps = UsageCapEnforcer()
            assert caps.has_used(user_id, 'deal', 'd-1') is False

            caps.claim_once(user_id, 'deal', 'd-1', purchase_amount=Decimal('40.00'))
            db.session.commit()
            assert caps.has_used(user_id, 'deal', 'd-1') is True

            with pytest.raises(AlreadyUsedError):
                caps.claim_once(user_id, 'deal', 'd-1')

    def test_receipt_duplicate_reports_already_processed(self, app, user_id):
        with app.app_context():
            caps = UsageCapEnforcer()
            caps.claim_once(user_id, 'receipt', 'r-1')
            db.session.commit()

            with pytest.raises(AlreadyProcessedError):
                caps.claim_once(user_id, 'receipt', 'r-1')

    def test_usage_is_per_user(self, app, user_id, vip_user_id):
        with app.app_context():
            caps = UsageCapEnforcer()
            caps.claim_once(user_id, 'deal', 'd-9')
            caps.claim_once(vip_user_id, 'deal', 'd-9')
            db.session.commit()

            assert caps.has_used(user_id, 'deal', 'd-9')
            assert caps.has_used(vip_user_id, 'deal', 'd-9')
