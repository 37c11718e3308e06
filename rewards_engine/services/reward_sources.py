"""
Reward sources.

Everything a user can complete for a reward (games, challenges, deals,
receipt scans, the daily login) is described by one interface:

    source.base_reward()      -> BaseReward(points, cashback) before multipliers
    source.is_eligible(user)  -> (bool, reason)
    source.daily_cap()        -> DailyCap or None

Definitions come from the catalog service as plain dicts; build_source()
turns a payload into the right variant and validates it. Nothing here
touches the database.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import Optional, Tuple, Dict, Any

from ..utils.exceptions import InvalidSourceConfigError

CENT = Decimal('0.01')

DIFFICULTY_MULTIPLIERS = {
    'easy': Decimal('1'),
    'medium': Decimal('1.5'),
    'hard': Decimal('2'),
    'expert': Decimal('3'),
}

AGE_RANGES = ('all', 'under_18', '18_24', '25_34', '35_44', '45_54', '55_plus')
GENDERS = ('all', 'male', 'female', 'other')

DEAL_TYPES = ('cashback', 'discount', 'bonus_points', 'free_shipping', 'buy_one_get_one', 'percentage_off')

# Daily login: base 10 points + $0.10, +5 points every 5 days, +$0.05 every 7 days
DAILY_BASE_POINTS = 10
DAILY_BASE_CASHBACK = Decimal('0.10')
DAILY_POINTS_STEP = (5, 5)                # every 5 days, +5 points
DAILY_CASHBACK_STEP = (7, Decimal('0.05'))  # every 7 days, +$0.05


def to_decimal(value, field: str) -> Decimal:
    if value is None or value == '':
        return Decimal('0')
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidSourceConfigError(f"{field} must be numeric (got {value!r})")


def to_int(value, field: str) -> int:
    if value is None or value == '':
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidSourceConfigError(f"{field} must be an integer (got {value!r})")


def _parse_datetime(value, field: str) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise InvalidSourceConfigError(f"{field} must be an ISO-8601 datetime (got {value!r})")
    # Stored and compared as naive UTC, like the rest of the models
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - parsed.utcoffset()
    return parsed


@dataclass(frozen=True)
class BaseReward:
    points: int
    cashback: Decimal


@dataclass(frozen=True)
class DailyCap:
    max_points: Optional[int] = None
    max_cashback: Optional[Decimal] = None


@dataclass(frozen=True)
class UserProfile:
    """Snapshot of what eligibility rules may look at."""
    user_id: int
    is_vip: bool = False
    age_range: Optional[str] = None
    gender: Optional[str] = None
    location_enabled: bool = False

    @classmethod
    def from_account(cls, account, is_vip: bool) -> 'UserProfile':
        return cls(
            user_id=account.id,
            is_vip=is_vip,
            age_range=account.age_range,
            gender=account.gender,
            location_enabled=bool(account.location_enabled),
        )


@dataclass(frozen=True)
class Eligibility:
    vip_only: bool = False
    age_range: str = 'all'
    gender: str = 'all'
    location_required: bool = False
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'Eligibility':
        # Accept both a nested "eligibility" block and flat catalog fields
        data = dict(config.get('eligibility') or {})
        for key in ('vip_only', 'age_range', 'gender', 'location_required', 'start_date', 'end_date'):
            if key not in data and key in config:
                data[key] = config[key]
        if 'vip_only' not in data and 'is_vip_only' in config:
            data['vip_only'] = config['is_vip_only']

        age_range = data.get('age_range') or 'all'
        gender = data.get('gender') or 'all'
        if age_range not in AGE_RANGES:
            raise InvalidSourceConfigError(f"Unknown age_range '{age_range}'")
        if gender not in GENDERS:
            raise InvalidSourceConfigError(f"Unknown gender '{gender}'")

        start_date = _parse_datetime(data.get('start_date'), 'start_date')
        end_date = _parse_datetime(data.get('end_date'), 'end_date')
        if start_date and end_date and end_date < start_date:
            raise InvalidSourceConfigError('end_date is before start_date')

        return cls(
            vip_only=bool(data.get('vip_only', False)),
            age_range=age_range,
            gender=gender,
            location_required=bool(data.get('location_required', False)),
            start_date=start_date,
            end_date=end_date,
        )

    def check(self, user: UserProfile, now: datetime = None) -> Optional[str]:
        """Return the first failing rule's reason, or None if eligible."""
        now = now or datetime.utcnow()
        if self.start_date and now < self.start_date:
            return 'not_started'
        if self.end_date and now > self.end_date:
            return 'expired'
        if self.vip_only and not user.is_vip:
            return 'vip_only'
        # Unknown profile values do not exclude the user
        if self.age_range != 'all' and user.age_range and user.age_range != self.age_range:
            return 'age_range'
        if self.gender != 'all' and user.gender and user.gender != self.gender:
            return 'gender'
        if self.location_required and not user.location_enabled:
            return 'location_required'
        return None


class RewardSource:
    """
    Base class for reward sources.

    Subclasses override base_reward() and, where they have extra rules,
    extra_ineligibility().
    """
    source_type = 'source'
    one_shot = False
    vip_scaled = True

    def __init__(
        self,
        source_id,
        base_points: int = 0,
        base_cashback: Decimal = Decimal('0'),
        difficulty: str = None,
        eligibility: Eligibility = None,
        is_active: bool = True,
        title: str = None,
        max_points_per_day: int = None,
        max_cashback_per_day: Decimal = None,
    ):
        self.source_id = str(source_id) if source_id is not None else None
        self.base_points = base_points
        self.base_cashback = base_cashback
        self.difficulty = difficulty or 'easy'
        self.eligibility = eligibility or Eligibility()
        self.is_active = is_active
        self.title = title
        self.max_points_per_day = max_points_per_day or None
        self.max_cashback_per_day = max_cashback_per_day or None

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.source_id}>'

    def validate(self) -> None:
        if self.base_points < 0 or self.base_cashback < 0:
            raise InvalidSourceConfigError(f"{self.source_type} {self.source_id}: base reward cannot be negative")
        if (self.max_points_per_day or 0) < 0 or (self.max_cashback_per_day or 0) < 0:
            raise InvalidSourceConfigError('Daily caps cannot be negative')

    def base_reward(self) -> BaseReward:
        return BaseReward(points=self.base_points, cashback=self.base_cashback)

    def difficulty_multiplier(self) -> Decimal:
        return DIFFICULTY_MULTIPLIERS.get(self.difficulty, Decimal('1'))

    def daily_cap(self) -> Optional[DailyCap]:
        if not self.max_points_per_day and not self.max_cashback_per_day:
            return None
        return DailyCap(max_points=self.max_points_per_day, max_cashback=self.max_cashback_per_day)

    def extra_ineligibility(self, user: UserProfile, now: datetime) -> Optional[str]:
        return None

    def is_eligible(self, user: UserProfile, now: datetime = None) -> Tuple[bool, Optional[str]]:
        if not self.is_active:
            return False, 'inactive'
        reason = self.eligibility.check(user, now) or self.extra_ineligibility(user, now)
        return reason is None, reason

    def to_dict(self) -> Dict[str, Any]:
        cap = self.daily_cap()
        return {
            'source_type': self.source_type,
            'source_id': self.source_id,
            'title': self.title,
            'base_points': self.base_points,
            'base_cashback': float(self.base_cashback),
            'difficulty': self.difficulty,
            'one_shot': self.one_shot,
            'daily_cap': {
                'max_points': cap.max_points,
                'max_cashback': float(cap.max_cashback) if cap.max_cashback is not None else None,
            } if cap else None,
        }


class GameSource(RewardSource):
    """Repeatable game, optionally capped per day."""
    source_type = 'game'


class ChallengeSource(RewardSource):
    """Challenge; repeatable challenges may cap total completions."""
    source_type = 'challenge'

    def __init__(self, source_id, is_repeatable: bool = False, max_completions: int = None,
                 current_completions: int = 0, **kwargs):
        super().__init__(source_id, **kwargs)
        self.is_repeatable = is_repeatable
        self.max_completions = max_completions
        self.current_completions = current_completions

    def extra_ineligibility(self, user, now):
        if not self.is_repeatable and self.current_completions > 0:
            return 'already_completed'
        if self.max_completions and self.current_completions >= self.max_completions:
            return 'max_completions_reached'
        return None


class DealSource(RewardSource):
    """
    One-shot deal. The reward depends on the deal type and, for
    percentage types, on the purchase amount.
    """
    source_type = 'deal'
    one_shot = True

    def __init__(self, source_id, deal_type: str = 'cashback', cashback_rate: Decimal = Decimal('0'),
                 maximum_cashback: Decimal = None, bonus_points: int = 0,
                 discount_percentage: Decimal = None, purchase_amount: Decimal = None,
                 max_usage: int = None, usage_count: int = 0, **kwargs):
        super().__init__(source_id, **kwargs)
        self.deal_type = deal_type
        self.cashback_rate = cashback_rate
        self.maximum_cashback = maximum_cashback
        self.bonus_points = bonus_points
        self.discount_percentage = discount_percentage
        self.purchase_amount = purchase_amount or Decimal('0')
        self.max_usage = max_usage
        self.usage_count = usage_count

    def validate(self):
        super().validate()
        if self.deal_type not in DEAL_TYPES:
            raise InvalidSourceConfigError(f"Unknown deal type '{self.deal_type}'")
        if self.cashback_rate < 0 or self.bonus_points < 0 or self.purchase_amount < 0:
            raise InvalidSourceConfigError(f"deal {self.source_id}: reward fields cannot be negative")
        if self.maximum_cashback is not None and self.maximum_cashback < 0:
            raise InvalidSourceConfigError('maximum_cashback cannot be negative')

    def base_reward(self) -> BaseReward:
        points = self.base_points
        cashback = self.base_cashback
        if self.deal_type == 'cashback':
            cashback += self.purchase_amount * self.cashback_rate
            if self.maximum_cashback is not None:
                cashback = min(cashback, self.maximum_cashback)
        elif self.deal_type == 'bonus_points':
            points += self.bonus_points
        elif self.deal_type == 'discount' and self.discount_percentage:
            cashback += self.purchase_amount * self.discount_percentage / Decimal('100')
        return BaseReward(points=points, cashback=cashback)

    def extra_ineligibility(self, user, now):
        if self.max_usage and self.usage_count >= self.max_usage:
            return 'usage_limit_reached'
        return None


class ReceiptSource(RewardSource):
    """
    Scanned receipt. Cashback is a rate of the receipt amount and points
    are one per whole currency unit; there is no fixed base.
    """
    source_type = 'receipt'
    one_shot = True

    def __init__(self, source_id, amount: Decimal, cashback_rate: Decimal = Decimal('0.05'), **kwargs):
        super().__init__(source_id, **kwargs)
        self.amount = amount
        self.cashback_rate = cashback_rate

    def validate(self):
        super().validate()
        if self.amount <= 0:
            raise InvalidSourceConfigError('Receipt amount must be positive')
        if self.cashback_rate < 0 or self.cashback_rate > 1:
            raise InvalidSourceConfigError('Receipt cashback_rate must be between 0 and 1')

    def base_reward(self) -> BaseReward:
        points = int(self.amount.to_integral_value(rounding=ROUND_FLOOR))
        return BaseReward(points=points, cashback=self.amount * self.cashback_rate)


class DailyLoginSource(RewardSource):
    """Daily login reward; the streak, not a catalog entry, sets the amount."""
    source_type = 'daily_login'
    vip_scaled = False

    def __init__(self, streak: int, **kwargs):
        super().__init__(kwargs.pop('source_id', 'daily'), **kwargs)
        self.streak = max(int(streak), 1)

    def base_reward(self) -> BaseReward:
        point_every, point_bonus = DAILY_POINTS_STEP
        cash_every, cash_bonus = DAILY_CASHBACK_STEP
        points = DAILY_BASE_POINTS + (self.streak // point_every) * point_bonus
        cashback = DAILY_BASE_CASHBACK + (self.streak // cash_every) * cash_bonus
        return BaseReward(points=points, cashback=cashback.quantize(CENT, rounding=ROUND_HALF_UP))


SOURCE_TYPES = {
    GameSource.source_type: GameSource,
    ChallengeSource.source_type: ChallengeSource,
    DealSource.source_type: DealSource,
    ReceiptSource.source_type: ReceiptSource,
    DailyLoginSource.source_type: DailyLoginSource,
}


def build_source(source_type: str, config: Dict[str, Any], **context) -> RewardSource:
    """
    Build and validate a reward source from a catalog payload.

    Catalog field names (pointsReward/cashbackReward style) are accepted
    alongside the snake_case ones. ``context`` carries per-claim values
    such as ``purchase_amount`` for deals or ``amount`` for receipts.

    Raises:
        InvalidSourceConfigError: unknown type, non-numeric or negative values
    """
    if source_type not in SOURCE_TYPES:
        raise InvalidSourceConfigError(f"Unknown reward source type '{source_type}'")
    config = dict(config or {})
    config.update({k: v for k, v in context.items() if v is not None})

    common = dict(
        base_points=to_int(config.get('base_points', config.get('points_reward')), 'base_points'),
        base_cashback=to_decimal(config.get('base_cashback', config.get('cashback_reward')), 'base_cashback'),
        difficulty=config.get('difficulty'),
        eligibility=Eligibility.from_config(config),
        is_active=bool(config.get('is_active', True)),
        title=config.get('title'),
        max_points_per_day=to_int(config.get('max_points_per_day'), 'max_points_per_day') or None,
        max_cashback_per_day=to_decimal(config.get('max_cashback_per_day'), 'max_cashback_per_day') or None,
    )
    source_id = config.get('id', config.get('source_id'))

    if source_type == 'challenge':
        source = ChallengeSource(
            source_id,
            is_repeatable=bool(config.get('is_repeatable', False)),
            max_completions=to_int(config.get('max_completions'), 'max_completions') or None,
            current_completions=to_int(config.get('current_completions'), 'current_completions'),
            **common
        )
    elif source_type == 'deal':
        maximum = config.get('maximum_cashback')
        source = DealSource(
            source_id,
            deal_type=config.get('deal_type', config.get('type', 'cashback')),
            cashback_rate=to_decimal(config.get('cashback_rate'), 'cashback_rate'),
            maximum_cashback=to_decimal(maximum, 'maximum_cashback') if maximum is not None else None,
            bonus_points=to_int(config.get('bonus_points'), 'bonus_points'),
            discount_percentage=to_decimal(config.get('discount_percentage'), 'discount_percentage') or None,
            purchase_amount=to_decimal(config.get('purchase_amount'), 'purchase_amount'),
            max_usage=to_int(config.get('max_usage'), 'max_usage') or None,
            usage_count=to_int(config.get('usage_count'), 'usage_count'),
            **common
        )
    elif source_type == 'receipt':
        rate = config.get('cashback_rate')
        source = ReceiptSource(
            source_id,
            amount=to_decimal(config.get('amount'), 'amount'),
            cashback_rate=to_decimal(rate, 'cashback_rate') if rate is not None else Decimal('0.05'),
            **common
        )
    elif source_type == 'daily_login':
        common.pop('base_points')
        common.pop('base_cashback')
        source = DailyLoginSource(streak=to_int(config.get('streak', 1), 'streak'), **common)
    else:
        source = GameSource(source_id, **common)

    if source.source_id is None and source_type != 'daily_login':
        raise InvalidSourceConfigError(f"{source_type} definition is missing an id")

    source.validate()
    return source
