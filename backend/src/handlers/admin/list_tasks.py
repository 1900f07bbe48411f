"""
Admin List Tasks Handler.
GET /admin/tasks?completed=true|false
"""
from chateval.admin import list_tasks_with_users
from chateval.auth import is_admin
from chateval.logging import logger, log_event
from chateval.store import get_store
from chateval.utils import format_response, get_query_param


def handler(event, context):
    log_event(event)

    if not is_admin(event):
        return format_response(403, {'error': 'Admin access required'})

    try:
        tasks = list_tasks_with_users(get_store())

        completed = get_query_param(event, 'completed')
        if completed is not None:
            wanted = completed.lower() == 'true'
            tasks = [t for t in tasks if t['completed'] == wanted]

        return format_response(200, tasks)

    except Exception as e:
        logger.error(f"Get admin tasks error: {e}")
        return format_response(500, {'error': 'Failed to get tasks'})
