"""
Rewards API endpoints.

Handles:
- Reward quotes for games, challenges, deals and receipts
- Daily login reward (status + claim)
- Completing games, challenges and deals
- Receipt submission and back-office review
- Points to cashback conversion
"""
from flask import Blueprint, request, jsonify, g

from ..middleware import require_user, require_internal_key
from ..services.rewards_service import RewardsEngine
from ..utils.errors import result_error_response, bad_request, ErrorCode

rewards_bp = Blueprint('rewards', __name__)


def _respond(result: dict, status_code: int = 200):
    if not result.get('success'):
        return result_error_response(result)
    return jsonify(result), status_code


def _idempotency_key(data: dict):
    return data.get('idempotency_key') or request.headers.get('Idempotency-Key')


# ==============================================================================
# QUOTES
# ==============================================================================

@rewards_bp.route('/quote', methods=['POST'])
@require_user
def quote_reward():
    """
    Preview the reward for a source without applying it.

    JSON body:
        source_type: game, challenge, deal or receipt (required)
        source: catalog payload for the source (required)
        purchase_amount: purchase total (deals)
        amount: receipt total (receipts)

    Returns:
        quote, is_vip, eligible, reason, remaining_today
    """
    data = request.get_json(silent=True) or {}
    if not data.get('source_type'):
        return bad_request('source_type is required', ErrorCode.MISSING_FIELD)

    result = RewardsEngine().quote_reward(
        data['source_type'],
        data.get('source') or {},
        g.user_id,
        purchase_amount=data.get('purchase_amount'),
        amount=data.get('amount'),
    )
    if result.get('success'):
        result['quote'] = result['quote'].to_dict()
    return _respond(result)


# ==============================================================================
# DAILY REWARD
# ==============================================================================

@rewards_bp.route('/daily', methods=['GET'])
@require_user
def daily_reward_status():
    """Today's claim status, current streak and the next reward."""
    return _respond(RewardsEngine().get_daily_reward_status(g.user_id))


@rewards_bp.route('/daily/claim', methods=['POST'])
@require_user
def claim_daily_reward():
    """
    Claim today's login reward. Repeat calls on the same day return 409.
    """
    return _respond(RewardsEngine().claim_daily_reward(g.user_id), 201)


# ==============================================================================
# GAMES, CHALLENGES, DEALS
# ==============================================================================

@rewards_bp.route('/complete', methods=['POST'])
@require_user
def complete_source():
    """
    Apply the reward for a completed game, challenge or used deal.

    JSON body:
        source_type: game, challenge or deal (required)
        source: catalog payload (required)
        idempotency_key: required for games and challenges (or Idempotency-Key header)
        purchase_amount: purchase total for cashback deals
    """
    data = request.get_json(silent=True) or {}
    if not data.get('source_type'):
        return bad_request('source_type is required', ErrorCode.MISSING_FIELD)
    if not isinstance(data.get('source'), dict):
        return bad_request('source must be an object', ErrorCode.MISSING_FIELD)

    result = RewardsEngine().complete_source(
        g.user_id,
        data['source_type'],
        data['source'],
        idempotency_key=_idempotency_key(data),
        purchase_amount=data.get('purchase_amount'),
    )
    return _respond(result, 201)


@rewards_bp.route('/claims', methods=['GET'])
@require_user
def list_claims():
    """
    Query params:
        source_type: filter (game, challenge, deal, receipt, daily_login, conversion)
        limit: max rows (default 50)
    """
    try:
        limit = int(request.args.get('limit', 50))
    except ValueError:
        return bad_request('limit must be an integer')
    return _respond(RewardsEngine().get_claims(g.user_id, request.args.get('source_type'), limit))


# ==============================================================================
# RECEIPTS
# ==============================================================================

@rewards_bp.route('/receipts', methods=['POST'])
@require_user
def submit_receipt():
    """
    Reward a scanned receipt from its OCR result.

    JSON body:
        receipt_id: upload id (required)
        ocr_result: {store_name, amount, items, confidence} (required)
        cashback_rate: override the default rate

    Returns:
        201 with status 'approved' (credited) or 'pending' (held for review)
    """
    data = request.get_json(silent=True) or {}
    if not data.get('receipt_id'):
        return bad_request('receipt_id is required', ErrorCode.MISSING_FIELD)
    if not isinstance(data.get('ocr_result'), dict):
        return bad_request('ocr_result is required', ErrorCode.MISSING_FIELD)

    result = RewardsEngine().submit_receipt(
        g.user_id,
        data['receipt_id'],
        data['ocr_result'],
        cashback_rate=data.get('cashback_rate'),
    )
    return _respond(result, 201)


def _review_user_id():
    data = request.get_json(silent=True) or {}
    try:
        return int(data.get('user_id')), data
    except (TypeError, ValueError):
        return None, data


@rewards_bp.route('/receipts/<receipt_id>/approve', methods=['POST'])
@require_internal_key
def approve_receipt(receipt_id):
    """Back-office: release a pending receipt's reward. Body: {user_id}"""
    user_id, _ = _review_user_id()
    if user_id is None:
        return bad_request('user_id is required', ErrorCode.MISSING_FIELD)
    return _respond(RewardsEngine().approve_receipt(user_id, receipt_id))


@rewards_bp.route('/receipts/<receipt_id>/reject', methods=['POST'])
@require_internal_key
def reject_receipt(receipt_id):
    """Back-office: drop a pending receipt's reward. Body: {user_id, reason}"""
    user_id, data = _review_user_id()
    if user_id is None:
        return bad_request('user_id is required', ErrorCode.MISSING_FIELD)
    return _respond(RewardsEngine().reject_receipt(user_id, receipt_id, data.get('reason')))


# ==============================================================================
# POINTS
# ==============================================================================

@rewards_bp.route('/convert', methods=['POST'])
@require_user
def convert_points():
    """
    Convert points to cashback.

    JSON body:
        points: points to spend (required)
        idempotency_key: required (or Idempotency-Key header)
    """
    data = request.get_json(silent=True) or {}
    if data.get('points') is None:
        return bad_request('points is required', ErrorCode.MISSING_FIELD)
    result = RewardsEngine().convert_points(g.user_id, data['points'], _idempotency_key(data))
    return _respond(result, 201)
