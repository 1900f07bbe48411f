"""
Create Task Handler.
POST /tasks
"""
from chateval.auth import get_user_sub
from chateval.errors import ChatEvalError
from chateval.logging import logger, log_event
from chateval.store import get_store
from chateval.turns import create_task
from chateval.utils import error_response, format_response, parse_body


def handler(event, context):
    """
    Body: { "userId": "..." } (optional, defaults to the caller)
    """
    log_event(event)

    try:
        body = parse_body(event)
        user_id = get_user_sub(event) or body.get('userId')

        task = create_task(get_store(), owner_user_id=user_id)
        return format_response(200, task)

    except ChatEvalError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Create task error: {e}")
        return format_response(500, {'error': 'Failed to create task'})
