"""
Admin read model and corrections.
Assembles a task with its owner, its conversations in turn order and each
conversation's rating.
"""
from typing import Any, Dict, List

from .errors import NotFoundError, ValidationError
from .logging import logger
from .models import UNKNOWN_USER, public_task
from .store import EntityStore
from .utils import count_words


def _owner(store: EntityStore, user_id) -> Dict[str, Any]:
    user = store.get_user(user_id) if user_id else None
    return user or dict(UNKNOWN_USER)


def get_task_detail(store: EntityStore, task_id: str) -> Dict[str, Any]:
    """
    Task with 'user', and 'conversations' ordered by turn, each carrying 'rating'.

    A missing or dangling owner is reported as the 'Unknown' user.

    Raises:
        NotFoundError: unknown task
    """
    task = store.get_task(task_id)
    if task is None:
        raise NotFoundError('Task not found', {'taskId': task_id})

    conversations = []
    for conversation in store.list_conversations_by_task(task_id):
        conversation['rating'] = store.get_rating_by_conversation(conversation['conversationId'])
        conversations.append(conversation)

    detail = public_task(task)
    detail['user'] = _owner(store, task.get('userId'))
    detail['conversations'] = conversations

    logger.info(f"Task {task_id} retrieved: {len(conversations)} conversations, "
                f"{sum(1 for c in conversations if c['rating'])} rated")
    return detail


def list_tasks_with_users(store: EntityStore) -> List[Dict[str, Any]]:
    """All tasks in creation order, each with its owner under 'user'."""
    owners = {}
    tasks = []
    for task in sorted(store.list_tasks(), key=lambda t: (t['createdAt'], t['taskId'])):
        user_id = task.get('userId')
        if user_id not in owners:
            owners[user_id] = _owner(store, user_id)
        item = public_task(task)
        item['user'] = owners[user_id]
        tasks.append(item)
    return tasks


def update_conversation_response(store: EntityStore, conversation_id: str, ai_response: Any) -> Dict[str, Any]:
    """
    Replace a conversation's AI response and recompute its word count.

    Raises:
        ValidationError: missing or blank response text
        NotFoundError: unknown conversation
    """
    if not isinstance(ai_response, str) or not ai_response.strip():
        raise ValidationError('AI response is required', {'aiResponse': 'required'})

    conversation = store.update_conversation(conversation_id, {
        'aiResponse': ai_response,
        'wordCount': count_words(ai_response),
    })
    logger.info(f"Conversation {conversation_id} response edited ({conversation['wordCount']} words)")
    return conversation
