"""
Reward calculator.

Turns a RewardSource into the exact points/cashback a user would receive.
Pure: no database access, no counters. The VIP multiplier is resolved by
the caller (once) and passed in here; nothing downstream re-applies it.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, Any

from .reward_sources import RewardSource, CENT
from ..utils.exceptions import InvalidSourceConfigError

DEFAULT_VIP_MULTIPLIER = Decimal('1.5')


@dataclass(frozen=True)
class RewardQuote:
    points: int
    cashback: Decimal

    @property
    def is_empty(self) -> bool:
        return self.points == 0 and self.cashback == 0

    def to_dict(self) -> Dict[str, Any]:
        return {'points': self.points, 'cashback': float(self.cashback)}


def quantize_cashback(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def floor_points(value: Decimal) -> int:
    return int(Decimal(value).to_integral_value(rounding=ROUND_FLOOR))


class RewardCalculator:
    """
    Usage:
        calculator = RewardCalculator(vip_multiplier=Decimal('1.5'))
        quote = calculator.quote(source, is_vip=True)
    """

    def __init__(self, vip_multiplier: Decimal = DEFAULT_VIP_MULTIPLIER):
        self.vip_multiplier = Decimal(str(vip_multiplier))
        if self.vip_multiplier < 1:
            raise InvalidSourceConfigError('VIP multiplier cannot be below 1')

    def multiplier_for(self, source: RewardSource, is_vip: bool) -> Decimal:
        multiplier = source.difficulty_multiplier()
        if is_vip and source.vip_scaled:
            multiplier *= self.vip_multiplier
        return multiplier

    def quote(self, source: RewardSource, is_vip: bool = False) -> RewardQuote:
        """
        points   = floor(base_points * difficulty * vip)
        cashback = round_half_up(base_cashback * difficulty * vip, 2)

        Raises:
            InvalidSourceConfigError: negative base values
        """
        base = source.base_reward()
        if base.points < 0 or base.cashback < 0:
            raise InvalidSourceConfigError(
                f"{source.source_type} {source.source_id}: base reward cannot be negative"
            )

        multiplier = self.multiplier_for(source, is_vip)
        return RewardQuote(
            points=floor_points(Decimal(base.points) * multiplier),
            cashback=quantize_cashback(Decimal(base.cashback) * multiplier),
        )
