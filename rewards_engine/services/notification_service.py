"""
Notification collaborator.

Pushes reward events to the notification service (which fans out to
push/SMS/socket). Best-effort: called after the reward has committed, and
a failure here is logged and reported, never raised.

Configuration:
- NOTIFICATION_SERVICE_URL: POST endpoint; empty disables dispatch
- NOTIFICATION_TIMEOUT_SECONDS: request timeout
"""
from typing import Dict, Any, Optional

import requests
from flask import current_app


class NotificationService:
    """
    Usage:
        NotificationService().notify(user_id, {
            'type': 'reward', 'title': 'Reward earned!',
            'message': 'You earned 100 points', 'data': {...},
        })
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = base_url if base_url is not None else current_app.config.get('NOTIFICATION_SERVICE_URL', '')
        self.timeout = timeout or current_app.config.get('NOTIFICATION_TIMEOUT_SECONDS', 3)

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def notify(self, user_id: int, notification: Dict[str, Any]) -> Dict[str, Any]:
        if not self.enabled:
            current_app.logger.debug(f"Notification for user {user_id} skipped: no service configured")
            return {'success': False, 'skipped': True}

        payload = {
            'user_id': user_id,
            'type': notification.get('type', 'reward'),
            'title': notification.get('title'),
            'message': notification.get('message'),
            'data': notification.get('data') or {},
        }

        try:
            response = requests.post(self.base_url, json=payload, timeout=self.timeout)
            if response.status_code in (200, 201, 202, 204):
                return {'success': True}
            current_app.logger.warning(
                f"Notification for user {user_id} rejected: {response.status_code} {response.text[:200]}"
            )
            return {'success': False, 'error': f'API error: {response.status_code}'}
        except requests.exceptions.RequestException as e:
            current_app.logger.warning(f"Notification for user {user_id} failed: {e}")
            return {'success': False, 'error': str(e)}

    # ==================== Reward events ====================

    def reward_earned(self, user_id: int, source_type: str, points: int, cashback, data: Dict = None):
        return self.notify(user_id, {
            'type': 'reward',
            'title': 'Reward earned!',
            'message': f"You earned {points} points and ${float(cashback):.2f} cashback from {source_type.replace('_', ' ')}",
            'data': dict(data or {}, points=points, cashback=float(cashback), source_type=source_type),
        })

    def daily_reward_claimed(self, user_id: int, streak: int, points: int, cashback):
        return self.notify(user_id, {
            'type': 'daily_reward',
            'title': f'Day {streak} streak!',
            'message': f"Daily reward: {points} points and ${float(cashback):.2f} cashback",
            'data': {'streak': streak, 'points': points, 'cashback': float(cashback)},
        })

    def receipt_status(self, user_id: int, receipt_id: str, status: str, cashback=None, reason: str = None):
        messages = {
            'approved': f"Your receipt was approved: ${float(cashback or 0):.2f} cashback added",
            'pending': 'Your receipt is being reviewed',
            'rejected': f"Your receipt was rejected{': ' + reason if reason else ''}",
        }
        return self.notify(user_id, {
            'type': 'receipt',
            'title': 'Receipt update',
            'message': messages.get(status, f'Receipt {status}'),
            'data': {'receipt_id': receipt_id, 'status': status},
        })

    def withdrawal_status(self, user_id: int, reference_id: str, status: str, amount):
        return self.notify(user_id, {
            'type': 'withdrawal',
            'title': 'Withdrawal update',
            'message': f"Withdrawal of ${float(amount):.2f} is {status}",
            'data': {'reference_id': reference_id, 'status': status, 'amount': float(amount)},
        })
