"""
Register User Handler.
POST /users
Body: { "username": "..." }
Creates a tasker profile; credentials are handled by the identity provider.
"""
from chateval.errors import ChatEvalError
from chateval.logging import logger, log_event
from chateval.store import get_store
from chateval.users import register_user
from chateval.utils import error_response, format_response, parse_body


def handler(event, context):
    log_event(event)

    try:
        body = parse_body(event)
        user = register_user(get_store(), body.get('username'))
        return format_response(200, user)

    except ChatEvalError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Registration error: {e}")
        return format_response(500, {'error': 'Registration failed'})
