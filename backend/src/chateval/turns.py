"""
Task/Turn engine.

A task runs up to MAX_TURNS prompt/response turns. Each turn after the first
sends the previous AI response followed by the new prompt to the generator,
while the conversation stores only what the tasker typed.

Turns on one task are serialized by a lease held on the task item for the
whole submission, generator call included. Other tasks are never blocked.
"""
import time
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from .config import config
from .errors import NotFoundError, StateError, UpstreamError, ValidationError
from .logging import logger
from .models import (
    CONTEXT_SEPARATOR,
    MAX_PROMPT_WORDS,
    new_conversation_item,
    new_task_item,
    public_task,
)
from .store import EntityStore
from .utils import count_words

Generator = Callable[[str], Tuple[str, int]]


def create_task(store: EntityStore, owner_user_id: Optional[str] = None) -> Dict[str, Any]:
    """Create an empty task at turn 1."""
    task = store.create_task(new_task_item(owner_user_id))
    logger.info(f"Created task {task['taskId']} for user {owner_user_id or 'anonymous'}")
    return task


def validate_prompt(prompt_text: Any) -> str:
    """
    Check a typed prompt is non-empty and at most MAX_PROMPT_WORDS words.

    Raises:
        ValidationError: with the prompt field detail
    """
    if not isinstance(prompt_text, str) or not prompt_text.strip():
        raise ValidationError('Invalid prompt', {'prompt': 'Prompt is required'})
    if count_words(prompt_text) > MAX_PROMPT_WORDS:
        raise ValidationError('Invalid prompt', {
            'prompt': f'Prompt must not exceed {MAX_PROMPT_WORDS} words'
        })
    return prompt_text


def is_exhausted(task: Dict[str, Any]) -> bool:
    return task['completed'] or task['currentTurn'] > task['maxTurns']


def build_effective_prompt(store: EntityStore, task: Dict[str, Any], prompt_text: str) -> str:
    """Chain the previous turn's AI response in front of the typed prompt."""
    turn = task['currentTurn']
    if turn == 1:
        return prompt_text

    previous = next(
        (c for c in store.list_conversations_by_task(task['taskId']) if c['turn'] == turn - 1),
        None
    )
    if previous is None:
        logger.warning(f"Task {task['taskId']} has no turn {turn - 1} conversation; sending prompt without context")
        return prompt_text
    return f"{previous['aiResponse']}{CONTEXT_SEPARATOR}{prompt_text}"


def submit_turn(
    store: EntityStore,
    generate: Generator,
    task_id: str,
    prompt_text: str,
    submitting_user_id: Optional[str] = None
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Run one turn of a task: generate a response for the prompt and record it.

    Args:
        store: Entity store
        generate: Response generator, generate(prompt) -> (response, word_count)
        task_id: Task to advance
        prompt_text: Prompt exactly as the tasker typed it
        submitting_user_id: Optional user the conversation is attributed to

    Returns:
        Tuple of (updated task, new conversation)

    Raises:
        ValidationError: empty prompt or more than MAX_PROMPT_WORDS words
        NotFoundError: unknown task
        StateError: task completed or out of turns
        ConflictError: another submission for this task is in flight or won the race
        UpstreamError: the generator failed; the turn was not consumed
    """
    validate_prompt(prompt_text)

    task = store.get_task(task_id)
    if task is None:
        raise NotFoundError('Task not found', {'taskId': task_id})
    if is_exhausted(task):
        raise StateError('Task is already completed or at maximum turns', {'taskId': task_id})

    lease_id = str(uuid.uuid4())
    now = int(time.time())
    store.acquire_turn_lease(task_id, lease_id, now, now + config.TURN_LEASE_SECONDS)
    try:
        # Re-read under the lease; a previous holder may have just committed
        task = store.get_task(task_id)
        if is_exhausted(task):
            raise StateError('Task is already completed or at maximum turns', {'taskId': task_id})

        turn = task['currentTurn']
        effective_prompt = build_effective_prompt(store, task, prompt_text)

        try:
            response_text, word_count = generate(effective_prompt)
        except UpstreamError:
            raise
        except Exception as e:
            logger.error(f"Generator failed on task {task_id} turn {turn}: {e}")
            raise UpstreamError('Failed to generate AI response. Please try again.') from e

        conversation = new_conversation_item(
            task_id=task_id,
            turn=turn,
            user_prompt=prompt_text,
            ai_response=response_text,
            word_count=word_count,
            user_id=submitting_user_id
        )
        updated_task = store.record_turn(conversation, expected_turn=turn, lease_id=lease_id)
    finally:
        store.release_turn_lease(task_id, lease_id)

    logger.info(f"Task {task_id}: recorded turn {turn} ({word_count} words), now at turn {updated_task['currentTurn']}")
    return public_task(updated_task), conversation
