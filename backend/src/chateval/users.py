"""
User profiles: registration, demo accounts, stats and history.
Credentials live with the identity provider; profiles only carry the role
and the earnings statistics credited on task completion.
"""
from decimal import Decimal
from typing import Any, Dict

from .errors import NotFoundError, ValidationError
from .logging import logger
from .models import Role, new_user_item, public_task
from .store import EntityStore

MIN_USERNAME_LENGTH = 3

DEMO_USERS = [
    {'user_id': 'admin', 'username': 'admin', 'role': Role.ADMIN,
     'tasks_completed': 0, 'total_earnings': Decimal('0.00')},
    {'user_id': 'tasker', 'username': 'tasker', 'role': Role.TASKER,
     'tasks_completed': 15, 'total_earnings': Decimal('75.00')},
]


def register_user(store: EntityStore, username: Any) -> Dict[str, Any]:
    """
    Create a tasker profile. Registration never grants the admin role.

    Raises:
        ValidationError: missing or too short username
        ConflictError: username already taken
    """
    if not isinstance(username, str) or not username.strip():
        raise ValidationError('Invalid registration data', {'username': 'Username is required'})
    username = username.strip()
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValidationError('Invalid registration data', {
            'username': f'Username must be at least {MIN_USERNAME_LENGTH} characters long'
        })

    user = store.create_user(new_user_item(username, role=Role.TASKER))
    logger.info(f"New user registered: {user['username']} ({user['role']})")
    return user


def seed_demo_users(store: EntityStore) -> None:
    """Create the demo admin and tasker profiles if they are missing."""
    for demo in DEMO_USERS:
        if store.get_user(demo['user_id']) is None:
            store.create_user(new_user_item(
                demo['username'],
                role=demo['role'],
                tasks_completed=demo['tasks_completed'],
                total_earnings=demo['total_earnings'],
                user_id=demo['user_id']
            ))


def get_user_stats(store: EntityStore, user_id: str) -> Dict[str, Any]:
    """
    Raises:
        NotFoundError: unknown user
    """
    user = store.get_user(user_id)
    if user is None:
        raise NotFoundError('User not found', {'userId': user_id})
    return user


def get_user_history(store: EntityStore, user_id: str) -> Dict[str, Any]:
    """Tasks (newest first), conversations and ratings attributed to a user."""
    tasks = sorted(store.list_tasks_by_user(user_id), key=lambda t: t['createdAt'], reverse=True)
    return {
        'tasks': [public_task(t) for t in tasks],
        'conversations': store.list_conversations_by_user(user_id),
        'ratings': store.list_ratings_by_user(user_id),
    }
