"""
Completion & payout engine.
Closing a task credits its owner once: +1 task completed, +TASK_PAYOUT earnings.
"""
from decimal import Decimal
from typing import Any, Dict

from .config import config
from .errors import NotFoundError
from .logging import logger
from .models import RATING_CRITERIA, public_task, utc_now
from .store import EntityStore


def complete_task(store: EntityStore, task_id: str, payout: Decimal = None) -> Dict[str, Any]:
    """
    Mark a task completed and credit the owning user.

    Completing an already completed task returns it unchanged and credits
    nobody. A task whose owner no longer exists is completed without credit.
    Whether all turns were rated is the caller's concern; see
    evaluation_progress().

    Raises:
        NotFoundError: unknown task
    """
    if payout is None:
        payout = config.TASK_PAYOUT

    task = store.get_task(task_id)
    if task is None:
        raise NotFoundError('Task not found', {'taskId': task_id})
    if task['completed']:
        logger.info(f"Task {task_id} already completed; nothing to do")
        return public_task(task)

    credit_user_id = task.get('userId')
    if credit_user_id and store.get_user(credit_user_id) is None:
        logger.warning(f"Task {task_id} owner {credit_user_id} not found; completing without credit")
        credit_user_id = None

    task, changed = store.complete_task(task_id, utc_now(), credit_user_id, payout)
    if changed:
        if credit_user_id:
            logger.info(f"Task {task_id} completed; credited user {credit_user_id} with ${payout}")
        else:
            logger.info(f"Task {task_id} completed (no owner to credit)")
    return public_task(task)


def evaluation_progress(store: EntityStore, task_id: str) -> Dict[str, Any]:
    """
    Report how far a task is from being ready to complete.

    Ready means every one of the task's turns has a conversation and every
    conversation has all five scores: 15 scores for a 3-turn task.
    """
    task = store.get_task(task_id)
    if task is None:
        raise NotFoundError('Task not found', {'taskId': task_id})

    conversations = store.list_conversations_by_task(task_id)
    filled = 0
    for conversation in conversations:
        rating = store.get_rating_by_conversation(conversation['conversationId']) or {}
        filled += sum(1 for c in RATING_CRITERIA if rating.get(c) is not None)

    required = task['maxTurns'] * len(RATING_CRITERIA)
    return {
        'taskId': task_id,
        'turnsCompleted': len(conversations),
        'maxTurns': task['maxTurns'],
        'scoresFilled': filled,
        'scoresRequired': required,
        'ready': len(conversations) >= task['maxTurns'] and filled >= required,
    }
