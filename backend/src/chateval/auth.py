"""
Authentication utilities for extracting user info from Cognito tokens.
Credentials are checked by the API Gateway authorizer; these helpers only
read the claims it forwards.
"""
from typing import Optional

from .models import Role


def get_claims(event: dict) -> dict:
    try:
        return event['requestContext']['authorizer']['claims'] or {}
    except (KeyError, TypeError):
        return {}


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    return get_claims(event).get('sub')


def get_user_groups(event: dict) -> list:
    """Extract user groups (admin, tasker) from Cognito claims."""
    groups = get_claims(event).get('cognito:groups', '')
    if isinstance(groups, str):
        return groups.split(',') if groups else []
    return groups or []


def get_user_role(event: dict) -> Optional[str]:
    """Role claim, falling back to group membership."""
    role = get_claims(event).get('custom:role')
    if role:
        return role
    groups = get_user_groups(event)
    if Role.ADMIN in groups:
        return Role.ADMIN
    if Role.TASKER in groups:
        return Role.TASKER
    return None


def is_admin(event: dict) -> bool:
    """Check if the caller carries the admin role."""
    return get_user_role(event) == Role.ADMIN
