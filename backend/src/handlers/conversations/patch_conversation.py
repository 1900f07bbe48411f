"""
Patch Conversation Handler (admin).
PATCH /conversations/{conversationId}
Body: { "aiResponse": "..." }
"""
from chateval.admin import update_conversation_response
from chateval.auth import is_admin
from chateval.errors import ChatEvalError
from chateval.logging import logger, log_event
from chateval.store import get_store
from chateval.utils import error_response, format_response, get_path_param, parse_body


def handler(event, context):
    log_event(event)

    if not is_admin(event):
        return format_response(403, {'error': 'Admin access required'})

    try:
        conversation_id = get_path_param(event, 'conversationId')
        body = parse_body(event)

        conversation = update_conversation_response(get_store(), conversation_id, body.get('aiResponse'))
        return format_response(200, conversation)

    except ChatEvalError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error updating conversation: {e}")
        return format_response(500, {'error': 'Failed to update conversation'})
