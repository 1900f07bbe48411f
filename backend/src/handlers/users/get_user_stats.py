"""
User Stats Handler.
GET /users/{userId}/stats
"""
from chateval.auth import get_user_sub, is_admin
from chateval.errors import ChatEvalError
from chateval.logging import logger, log_event
from chateval.store import get_store
from chateval.users import get_user_stats
from chateval.utils import error_response, format_response, get_path_param


def handler(event, context):
    log_event(event)

    user_id = get_path_param(event, 'userId')
    if get_user_sub(event) != user_id and not is_admin(event):
        return format_response(403, {'error': 'Not authorized for this user'})

    try:
        return format_response(200, get_user_stats(get_store(), user_id))

    except ChatEvalError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"User stats error: {e}")
        return format_response(500, {'error': 'Failed to get user stats'})
