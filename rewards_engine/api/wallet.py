"""
Wallet API endpoints: balance, transaction history, withdrawals.
"""
from datetime import datetime

from flask import Blueprint, request, jsonify, g

from ..middleware import require_user, require_internal_key
from ..services.rewards_service import RewardsEngine
from ..utils.errors import result_error_response, bad_request, ErrorCode

wallet_bp = Blueprint('wallet', __name__)


def _respond(result: dict, status_code: int = 200):
    if not result.get('success'):
        return result_error_response(result)
    return jsonify(result), status_code


def _parse_date(value):
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00')).replace(tzinfo=None)


@wallet_bp.route('', methods=['GET'])
@require_user
def get_wallet():
    """Wallet balances plus points and their cashback value."""
    return _respond(RewardsEngine().get_balance(g.user_id))


@wallet_bp.route('/transactions', methods=['GET'])
@require_user
def list_transactions():
    """
    Paginated journal, newest first.

    Query params:
        type: credit or debit
        status: pending, completed or failed
        source: game, challenge, deal, receipt, daily_login, withdrawal, conversion
        start_date, end_date: ISO dates
        page, per_page
    """
    try:
        filters = {
            'type': request.args.get('type'),
            'status': request.args.get('status'),
            'source': request.args.get('source'),
            'start_date': _parse_date(request.args.get('start_date')),
            'end_date': _parse_date(request.args.get('end_date')),
            'page': int(request.args.get('page', 1)),
            'per_page': int(request.args.get('per_page', 20)),
        }
    except ValueError:
        return bad_request('Invalid filter value')
    return _respond(RewardsEngine().get_transactions(g.user_id, **filters))


@wallet_bp.route('/withdraw', methods=['POST'])
@require_user
def withdraw():
    """
    Request a payout of available cashback.

    JSON body:
        amount: amount to withdraw (required)
        payment_method: e.g. paypal, bank_transfer
    """
    data = request.get_json(silent=True) or {}
    if data.get('amount') is None:
        return bad_request('amount is required', ErrorCode.MISSING_FIELD)
    result = RewardsEngine().withdraw(g.user_id, data['amount'], data.get('payment_method'))
    return _respond(result, 201)


@wallet_bp.route('/withdrawals/<reference_id>/settle', methods=['POST'])
@require_internal_key
def settle_withdrawal(reference_id):
    """
    Back-office / payout processor callback.

    JSON body:
        succeeded: true if the payout went through (required)
        reason: failure reason
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get('succeeded'), bool):
        return bad_request('succeeded must be true or false', ErrorCode.MISSING_FIELD)
    return _respond(RewardsEngine().settle_withdrawal(reference_id, data['succeeded'], data.get('reason')))
