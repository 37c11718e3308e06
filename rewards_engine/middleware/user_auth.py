"""
User identification middleware.

Authentication happens upstream: the API gateway validates the session and
forwards the user id in the X-User-Id header. Accounts are provisioned
lazily on the first request that names them.
"""
import hmac
from functools import wraps
from typing import Optional

from flask import request, g, current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Account
from ..utils.errors import unauthorized, bad_request, ErrorCode


def get_user_id_from_request() -> Optional[int]:
    """
    Read the forwarded user id.

    Returns:
        The user id, or None if the header is missing or not a positive integer
    """
    raw = request.headers.get('X-User-Id', '').strip()
    if not raw:
        return None
    try:
        user_id = int(raw)
    except ValueError:
        return None
    return user_id if user_id > 0 else None


def get_or_create_account(user_id: int) -> Account:
    account = db.session.get(Account, user_id)
    if account:
        return account

    account = Account(
        id=user_id,
        email=request.headers.get('X-User-Email'),
        status='active',
        total_points=0,
    )
    db.session.add(account)
    try:
        db.session.commit()
        current_app.logger.info(f"Provisioned account for user {user_id}")
    except IntegrityError:
        # Concurrent first request created it
        db.session.rollback()
        account = db.session.get(Account, user_id)
    return account


def require_user(f):
    """
    Decorator requiring a forwarded user id.

    Sets g.user_id and g.account.

    Usage:
        @require_user
        def my_endpoint():
            user_id = g.user_id
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'X-User-Id' in request.headers and get_user_id_from_request() is None:
            return bad_request('X-User-Id must be a positive integer')

        user_id = get_user_id_from_request()
        if user_id is None:
            return unauthorized()

        g.user_id = user_id
        g.account = get_or_create_account(user_id)
        return f(*args, **kwargs)

    return decorated_function


def require_internal_key(f):
    """
    Decorator for back-office endpoints (receipt review, payout settlement).

    Requires X-Internal-Key to match INTERNAL_API_KEY. With no key
    configured every request is refused.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('INTERNAL_API_KEY') or ''
        provided = request.headers.get('X-Internal-Key', '')
        if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
            return unauthorized('Internal API key required', ErrorCode.AUTH_REQUIRED)
        return f(*args, **kwargs)

    return decorated_function
