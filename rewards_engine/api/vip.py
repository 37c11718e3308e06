"""
VIP membership API endpoints.

Payment is captured by the processor before /subscribe is called; these
endpoints only manage the membership window.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware import require_user
from ..models import VIPPlan
from ..services.vip_service import VIPService, PLAN_PRICES, PLAN_DURATIONS
from ..utils.errors import not_found, ErrorCode

vip_bp = Blueprint('vip', __name__)


@vip_bp.route('/plans', methods=['GET'])
def list_plans():
    return jsonify({
        'plans': [{
            'plan': plan.value,
            'price': float(PLAN_PRICES[plan.value]),
            'duration_days': PLAN_DURATIONS[plan.value].days,
        } for plan in VIPPlan]
    })


@vip_bp.route('', methods=['GET'])
@require_user
def get_membership():
    membership = VIPService().get_membership(g.user_id)
    if not membership:
        return not_found('No VIP membership', ErrorCode.VIP_MEMBERSHIP_NOT_FOUND)
    return jsonify({'success': True, 'membership': membership.to_dict()})


@vip_bp.route('/subscribe', methods=['POST'])
@require_user
def subscribe():
    """
    JSON body:
        plan: monthly, quarterly or yearly (default monthly)
        auto_renew: default true
    """
    data = request.get_json(silent=True) or {}
    membership = VIPService().subscribe(
        g.user_id,
        plan=data.get('plan', VIPPlan.MONTHLY.value),
        auto_renew=bool(data.get('auto_renew', True)),
    )
    return jsonify({'success': True, 'membership': membership.to_dict()}), 201


@vip_bp.route('/renew', methods=['POST'])
@require_user
def renew():
    membership = VIPService().renew(g.user_id)
    return jsonify({'success': True, 'membership': membership.to_dict()})


@vip_bp.route('/cancel', methods=['POST'])
@require_user
def cancel():
    data = request.get_json(silent=True) or {}
    membership = VIPService().cancel(g.user_id, reason=data.get('reason'), cancelled_by='user')
    return jsonify({'success': True, 'membership': membership.to_dict()})


@vip_bp.route('/usage', methods=['GET'])
@require_user
def usage():
    """What the membership has earned, and its return on the plan price."""
    return jsonify(dict(VIPService().usage_summary(g.user_id), success=True))
