"""
Complete Task Handler.
POST /tasks/{taskId}/complete
Closes the task and credits the owning tasker with the task payout.
"""
from chateval.completion import complete_task, evaluation_progress
from chateval.config import config
from chateval.errors import ChatEvalError, StateError
from chateval.logging import logger, log_event
from chateval.store import get_store
from chateval.utils import error_response, format_response, get_path_param


def handler(event, context):
    log_event(event)

    try:
        task_id = get_path_param(event, 'taskId')
        store = get_store()

        if config.ENFORCE_COMPLETION_GATE:
            progress = evaluation_progress(store, task_id)
            task = store.get_task(task_id)
            if not progress['ready'] and not task['completed']:
                raise StateError('All turns must be rated before completing the task', progress)

        task = complete_task(store, task_id)
        return format_response(200, task)

    except ChatEvalError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Complete task error: {e}")
        return format_response(500, {'error': 'Failed to complete task'})
