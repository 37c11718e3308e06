"""
Tests for reward source definitions and eligibility rules.
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from rewards_engine.services.reward_sources import (
    build_source,
    ChallengeSource,
    DailyLoginSource,
    DealSource,
    Eligibility,
    GameSource,
    ReceiptSource,
    UserProfile,
)
from rewards_engine.utils.exceptions import InvalidSourceConfigError

NOW = datetime(2026, 3, 15, 12, 0, 0)


def profile(**kwargs):
    defaults = dict(user_id=1, is_vip=False, age_range='25_34', gender='female', location_enabled=True)
    defaults.update(kwargs)
    return UserProfile(**defaults)


class TestBuildSource:
    """Tests for build_source."""

    def test_builds_each_variant(self):
        assert isinstance(build_source('game', {'id': 1}), GameSource)
        assert isinstance(build_source('challenge', {'id': 2}), ChallengeSource)
        assert isinstance(build_source('deal', {'id': 3}), DealSource)
        assert isinstance(build_source('receipt', {'id': 4}, amount='10.00'), ReceiptSource)
        assert isinstance(build_source('daily_login', {'streak': 3}), DailyLoginSource)

    def test_catalog_field_names_accepted(self):
        source = build_source('game', {'id': 'g-7', 'points_reward': 40, 'cashback_reward': 0.25})
        assert source.base_points == 40
        assert source.base_cashback == Decimal('0.25')
        assert source.source_id == 'g-7'

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidSourceConfigError):
            build_source('lottery', {'id': 1})

    def test_missing_id_rejected(self):
        with pytest.raises(InvalidSourceConfigError):
            build_source('game', {'base_points': 10})

    def test_negative_base_rejected(self):
        with pytest.raises(InvalidSourceConfigError):
            build_source('game', {'id': 1, 'base_points': -1})

    def test_non_numeric_rejected(self):
        with pytest.raises(InvalidSourceConfigError):
            build_source('game', {'id': 1, 'base_cashback': 'lots'})

    def test_unknown_deal_type_rejected(self):
        with pytest.raises(InvalidSourceConfigError):
            build_source('deal', {'id': 1, 'deal_type': 'mystery_box'})

    def test_receipt_needs_positive_amount(self):
        with pytest.raises(InvalidSourceConfigError):
            build_source('receipt', {'id': 'r-1'}, amount='0')

    def test_zero_cap_means_uncapped(self):
        source = build_source('game', {'id': 1, 'max_points_per_day': 0})
        assert source.daily_cap() is None

    def test_cap_is_exposed(self):
        source = build_source('game', {'id': 1, 'max_points_per_day': 300, 'max_cashback_per_day': '2.00'})
        cap = source.daily_cap()
        assert cap.max_points == 300
        assert cap.max_cashback == Decimal('2.00')

    def test_to_dict(self):
        data = build_source('deal', {'id': 'd-1', 'title': 'Coffee'}).to_dict()
        assert data['source_type'] == 'deal'
        assert data['one_shot'] is True
        assert data['title'] == 'Coffee'
        assert data['daily_cap'] is None


class TestEligibility:
    """Tests for eligibility rules."""

    def test_open_source_is_eligible(self):
        source = build_source('game', {'id': 1})
        assert source.is_eligible(profile(), NOW) == (True, None)

    def test_vip_only(self):
        source = build_source('game', {'id': 1, 'is_vip_only': True})
        assert source.is_eligible(profile(), NOW) == (False, 'vip_only')
        assert source.is_eligible(profile(is_vip=True), NOW) == (True, None)

    def test_nested_eligibility_block(self):
        source = build_source('challenge', {'id': 1, 'eligibility': {'age_range': '18_24'}})
        assert source.is_eligible(profile(), NOW) == (False, 'age_range')
        assert source.is_eligible(profile(age_range='18_24'), NOW) == (True, None)

    def test_unknown_profile_value_does_not_exclude(self):
        source = build_source('game', {'id': 1, 'gender': 'male'})
        assert source.is_eligible(profile(gender=None), NOW) == (True, None)
        assert source.is_eligible(profile(gender='female'), NOW) == (False, 'gender')

    def test_location_required(self):
        source = build_source('deal', {'id': 1, 'location_required': True})
        assert source.is_eligible(profile(location_enabled=False), NOW) == (False, 'location_required')

    def test_date_window(self):
        source = build_source('deal', {
            'id': 1,
            'start_date': (NOW + timedelta(days=1)).isoformat(),
            'end_date': (NOW + timedelta(days=5)).isoformat(),
        })
        assert source.is_eligible(profile(), NOW) == (False, 'not_started')
        assert source.is_eligible(profile(), NOW + timedelta(days=6)) == (False, 'expired')
        assert source.is_eligible(profile(), NOW + timedelta(days=2)) == (True, None)

    def test_timezone_aware_dates_become_naive_utc(self):
        eligibility = Eligibility.from_config({'end_date': '2026-03-15T14:00:00+02:00'})
        assert eligibility.end_date == datetime(2026, 3, 15, 12, 0, 0)

    def test_end_before_start_rejected(self):
        with pytest.raises(InvalidSourceConfigError):
            Eligibility.from_config({'start_date': '2026-03-10', 'end_date': '2026-03-01'})

    def test_inactive_source(self):
        source = build_source('game', {'id': 1, 'is_active': False})
        assert source.is_eligible(profile(), NOW) == (False, 'inactive')

    def test_challenge_completion_rules(self):
        once = build_source('challenge', {'id': 1, 'current_completions': 1})
        assert once.is_eligible(profile(), NOW) == (False, 'already_completed')

        repeatable = build_source('challenge', {
            'id': 2, 'is_repeatable': True, 'max_completions': 3, 'current_completions': 3,
        })
        assert repeatable.is_eligible(profile(), NOW) == (False, 'max_completions_reached')

    def test_deal_usage_limit(self):
        source = build_source('deal', {'id': 1, 'max_usage': 100, 'usage_count': 100})
        assert source.is_eligible(profile(), NOW) == (False, 'usage_limit_reached')


class TestVariantRewards:
    """Base rewards per variant, before multipliers."""

    def test_discount_deal(self):
        deal = build_source('deal', {'id': 1, 'deal_type': 'discount', 'discount_percentage': 10},
                            purchase_amount='25.00')
        assert deal.base_reward().cashback == Decimal('2.5')

    def test_free_shipping_deal_pays_only_base(self):
        deal = build_source('deal', {'id': 1, 'deal_type': 'free_shipping', 'base_points': 5})
        reward = deal.base_reward()
        assert reward.points == 5
        assert reward.cashback == 0

    @pytest.mark.parametrize('streak,points,cashback', [
        (1, 10, Decimal('0.10')),
        (4, 10, Decimal('0.10')),
        (5, 15, Decimal('0.10')),
        (7, 15, Decimal('0.15')),
        (10, 20, Decimal('0.15')),
        (14, 20, Decimal('0.20')),
    ])
    def test_daily_login_streak_table(self, streak, points, cashback):
        reward = DailyLoginSource(streak=streak).base_reward()
        assert reward.points == points
        assert reward.cashback == cashback
