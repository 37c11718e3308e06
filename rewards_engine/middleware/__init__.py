"""
Middleware package for the rewards API.
"""
from .user_auth import require_user, require_internal_key, get_user_id_from_request

__all__ = ['require_user', 'require_internal_key', 'get_user_id_from_request']
