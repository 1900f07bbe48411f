"""
Submit Turn Handler.
POST /chat
Body: { "prompt": "...", "taskId": "..." }

Generates the AI response for the task's current turn. Without a taskId a
new task owned by the caller is started first.
"""
from chateval.ai_services import get_response_generator
from chateval.auth import get_user_sub
from chateval.errors import ChatEvalError
from chateval.logging import logger, log_event
from chateval.store import get_store
from chateval.turns import create_task, submit_turn, validate_prompt
from chateval.utils import error_response, format_response, parse_body


def handler(event, context):
    log_event(event)

    try:
        body = parse_body(event)
        prompt = validate_prompt(body.get('prompt'))
        user_id = get_user_sub(event) or body.get('userId')
        store = get_store()

        task_id = body.get('taskId')
        if not task_id:
            task_id = create_task(store, owner_user_id=user_id)['taskId']

        task, conversation = submit_turn(
            store,
            get_response_generator(),
            task_id,
            prompt,
            submitting_user_id=user_id
        )

        return format_response(200, {
            'task': task,
            'conversation': conversation,
            'aiResponse': conversation['aiResponse'],
            'wordCount': conversation['wordCount']
        })

    except ChatEvalError as e:
        if e.status_code >= 500:
            logger.error(f"Chat error: {e.message}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Chat error: {e}")
        return format_response(500, {'error': 'Failed to process chat request'})
