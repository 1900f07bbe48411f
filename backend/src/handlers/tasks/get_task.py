"""
Get Task Handler.
GET /tasks/{taskId}
Returns the task with its conversations (in turn order) and their ratings.
"""
from chateval.admin import get_task_detail
from chateval.errors import ChatEvalError
from chateval.logging import logger, log_event
from chateval.store import get_store
from chateval.utils import error_response, format_response, get_path_param


def handler(event, context):
    log_event(event)

    try:
        task_id = get_path_param(event, 'taskId')
        return format_response(200, get_task_detail(get_store(), task_id))

    except ChatEvalError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Get task error: {e}")
        return format_response(500, {'error': 'Failed to get task'})
