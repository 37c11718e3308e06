"""
Business logic services for the rewards economy.
"""
from .reward_calculator import RewardCalculator, RewardQuote
from .rewards_service import RewardsEngine
from .vip_service import VIPService
from .reconciliation_service import LedgerReconciler

__all__ = [
    'RewardCalculator',
    'RewardQuote',
    'RewardsEngine',
    'VIPService',
    'LedgerReconciler',
]
