"""
Database models for the rewards economy.
Accounts, wallets, the transaction journal, reward claims and VIP memberships.
"""
from .account import Account
from .wallet import Wallet, WalletTransaction, TransactionType, TransactionStatus
from .rewards import RewardClaim, DailyUsage, SourceUsage, DailyRewardRecord, RewardStreak
from .vip import VIPMembership, VIPStatus, VIPPlan

__all__ = [
    'Account',
    # Ledger
    'Wallet',
    'WalletTransaction',
    'TransactionType',
    'TransactionStatus',
    # Claims & caps
    'RewardClaim',
    'DailyUsage',
    'SourceUsage',
    'DailyRewardRecord',
    'RewardStreak',
    # VIP
    'VIPMembership',
    'VIPStatus',
    'VIPPlan',
]
