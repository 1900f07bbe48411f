"""
Admin Task Detail Handler.
GET /admin/tasks/{taskId}
"""
from chateval.admin import get_task_detail
from chateval.auth import is_admin
from chateval.errors import ChatEvalError
from chateval.logging import logger, log_event
from chateval.store import get_store
from chateval.utils import error_response, format_response, get_path_param


def handler(event, context):
    log_event(event)

    if not is_admin(event):
        return format_response(403, {'error': 'Admin access required'})

    try:
        task_id = get_path_param(event, 'taskId')
        return format_response(200, get_task_detail(get_store(), task_id))

    except ChatEvalError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Get admin task details error: {e}")
        return format_response(500, {'error': 'Failed to get task details'})
