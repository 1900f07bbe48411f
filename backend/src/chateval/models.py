"""
Data models and constants for the chat evaluation platform.
Task lifecycle: Created -> Turn 1..3 (each rated) -> Completed (owner credited)
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from .errors import ValidationError


# Turn and prompt limits
MAX_TURNS = 3
MAX_PROMPT_WORDS = 60
MAX_RESPONSE_WORDS = 500
CONTEXT_SEPARATOR = '\n\n'

# Five criteria scored on every AI response
RATING_CRITERIA = ('accuracy', 'clarity', 'relevance', 'consistency', 'completeness')
MIN_SCORE = 1
MAX_SCORE = 5


class Role:
    """User roles carried in the authorizer claims."""
    ADMIN = 'admin'
    TASKER = 'tasker'


UNKNOWN_USER = {
    'userId': None,
    'username': 'Unknown',
    'role': 'unknown',
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_user_item(username: str, role: str = Role.TASKER,
                  tasks_completed: int = 0, total_earnings: Decimal = Decimal('0.00'),
                  user_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        'userId': user_id or str(uuid.uuid4()),
        'username': username,
        'role': role,
        'tasksCompleted': tasks_completed,
        'totalEarnings': total_earnings,
        'createdAt': utc_now(),
    }


def new_task_item(user_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        'taskId': str(uuid.uuid4()),
        'userId': user_id,
        'completed': False,
        'currentTurn': 1,
        'maxTurns': MAX_TURNS,
        'createdAt': utc_now(),
        'completedAt': None,
    }


def new_conversation_item(task_id: str, turn: int, user_prompt: str, ai_response: str,
                          word_count: int, user_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        'conversationId': str(uuid.uuid4()),
        'taskId': task_id,
        'turn': turn,
        'userPrompt': user_prompt,
        'aiResponse': ai_response,
        'wordCount': word_count,
        'userId': user_id,
        'timestamp': utc_now(),
    }


def new_rating_item(conversation_id: str, scores: 'RatingScores',
                    user_id: Optional[str] = None) -> Dict[str, Any]:
    item = {
        'ratingId': str(uuid.uuid4()),
        'conversationId': conversation_id,
        'userId': user_id,
        'comments': scores.comments,
        'timestamp': utc_now(),
    }
    for criterion in RATING_CRITERIA:
        item[criterion] = getattr(scores, criterion)
    return item


@dataclass(frozen=True)
class RatingScores:
    """
    Validated rating payload: the five criterion scores plus optional comments.

    A full submission carries all five scores. A partial one (admin
    corrections) carries any subset; fields left as None are not applied.
    """
    accuracy: Optional[int] = None
    clarity: Optional[int] = None
    relevance: Optional[int] = None
    consistency: Optional[int] = None
    completeness: Optional[int] = None
    comments: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], partial: bool = False) -> 'RatingScores':
        """
        Build scores from a request payload, validating every supplied field.

        Raises:
            ValidationError: with a per-field map of what is missing or out of range
        """
        if not isinstance(payload, dict):
            raise ValidationError('Invalid rating data', {'body': 'must be an object'})

        errors = {}
        values = {}
        for criterion in RATING_CRITERIA:
            value = payload.get(criterion)
            if value is None:
                if not partial:
                    errors[criterion] = 'required'
                continue
            # bool is an int subclass; a checkbox value is not a score
            if isinstance(value, bool) or not isinstance(value, int):
                errors[criterion] = 'must be an integer'
            elif not MIN_SCORE <= value <= MAX_SCORE:
                errors[criterion] = f'must be between {MIN_SCORE} and {MAX_SCORE}'
            else:
                values[criterion] = value

        comments = payload.get('comments')
        if comments is not None and not isinstance(comments, str):
            errors['comments'] = 'must be a string'

        if errors:
            raise ValidationError('Invalid rating data', errors)

        scores = cls(comments=comments, **values)
        if partial and not scores.supplied_fields():
            raise ValidationError('No rating fields supplied', {
                'body': f"expected any of {', '.join(RATING_CRITERIA)}, comments"
            })
        return scores

    def supplied_fields(self) -> Dict[str, Any]:
        """Fields to write onto a stored rating."""
        fields = {c: getattr(self, c) for c in RATING_CRITERIA if getattr(self, c) is not None}
        if self.comments is not None:
            fields['comments'] = self.comments
        return fields

    def is_complete(self) -> bool:
        return all(getattr(self, c) is not None for c in RATING_CRITERIA)


INTERNAL_TASK_FIELDS = ('turnLease', 'conversationIds')


def public_task(task: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Task as returned to callers, without the turn lease or stored turn index."""
    if task is None:
        return None
    return {k: v for k, v in task.items() if k not in INTERNAL_TASK_FIELDS}
