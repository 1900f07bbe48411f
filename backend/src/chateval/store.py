"""
Entity store contract and the in-process implementation.

Engines receive a store instance instead of reaching for a module-level
table, so the DynamoDB store and the in-memory store are interchangeable.
Every write is atomic per entity; the few multi-entity writes (recording a
turn, completing a task, creating a rating) are single store operations.
"""
import copy
import threading
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .config import config
from .errors import ConflictError, NotFoundError
from .logging import logger


class EntityStore(ABC):
    """Keyed storage for users, tasks, conversations and ratings."""

    # Users

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def create_user(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a user. Raises ConflictError if the username is taken."""

    # Tasks

    @abstractmethod
    def create_task(self, item: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_tasks(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_tasks_by_user(self, user_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def acquire_turn_lease(self, task_id: str, lease_id: str, now: int, expires_at: int) -> None:
        """
        Claim the task's turn lease if it is free or expired.

        Raises:
            NotFoundError: unknown task
            ConflictError: another submission holds a live lease
        """

    @abstractmethod
    def release_turn_lease(self, task_id: str, lease_id: str) -> None:
        """Drop the lease if still held by lease_id. Never raises for a lost lease."""

    @abstractmethod
    def record_turn(self, conversation: Dict[str, Any], expected_turn: int,
                    lease_id: str) -> Dict[str, Any]:
        """
        Persist a conversation and advance its task to expected_turn + 1.

        Both writes land together, conditional on the task still being open at
        expected_turn under lease_id. Returns the updated task.

        Raises:
            ConflictError: the task moved on, was completed, or the lease was lost
        """

    @abstractmethod
    def complete_task(self, task_id: str, completed_at: str, credit_user_id: Optional[str],
                      payout: Decimal) -> Tuple[Dict[str, Any], bool]:
        """
        Close a task and credit its owner in one atomic step.

        Returns (task, changed); changed is False when the task was already
        completed, in which case nothing was written.

        Raises:
            NotFoundError: unknown task
        """

    # Conversations

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_conversations_by_task(self, task_id: str) -> List[Dict[str, Any]]:
        """Conversations of a task ordered by turn."""

    @abstractmethod
    def list_conversations_by_user(self, user_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def update_conversation(self, conversation_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Raises NotFoundError for an unknown id."""

    # Ratings

    @abstractmethod
    def create_rating(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert the first rating of a conversation.

        Raises:
            NotFoundError: unknown conversation
            ConflictError: the conversation already has a rating
        """

    @abstractmethod
    def get_rating(self, rating_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def get_rating_by_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def update_rating(self, rating_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Raises NotFoundError for an unknown id."""

    @abstractmethod
    def list_ratings_by_user(self, user_id: str) -> List[Dict[str, Any]]:
        pass


class MemoryEntityStore(EntityStore):
    """
    In-process store for local runs and tests.

    Each table has its own lock, held only around dictionary access; when an
    operation needs several tables it takes them in the order
    tasks -> conversations -> ratings -> users.
    """

    def __init__(self):
        self._users = {}
        self._tasks = {}
        self._conversations = {}
        self._ratings = {}
        self._users_lock = threading.Lock()
        self._tasks_lock = threading.Lock()
        self._conversations_lock = threading.Lock()
        self._ratings_lock = threading.Lock()

    # Users

    def get_user(self, user_id):
        with self._users_lock:
            return copy.deepcopy(self._users.get(user_id))

    def get_user_by_username(self, username):
        with self._users_lock:
            for user in self._users.values():
                if user['username'] == username:
                    return copy.deepcopy(user)
        return None

    def create_user(self, item):
        with self._users_lock:
            if any(u['username'] == item['username'] for u in self._users.values()):
                raise ConflictError('Username already exists', {'username': item['username']})
            self._users[item['userId']] = copy.deepcopy(item)
        return copy.deepcopy(item)

    # Tasks

    def create_task(self, item):
        with self._tasks_lock:
            self._tasks[item['taskId']] = copy.deepcopy(item)
        return copy.deepcopy(item)

    def get_task(self, task_id):
        with self._tasks_lock:
            return copy.deepcopy(self._tasks.get(task_id))

    def list_tasks(self):
        with self._tasks_lock:
            return [copy.deepcopy(t) for t in self._tasks.values()]

    def list_tasks_by_user(self, user_id):
        with self._tasks_lock:
            return [copy.deepcopy(t) for t in self._tasks.values() if t.get('userId') == user_id]

    def acquire_turn_lease(self, task_id, lease_id, now, expires_at):
        with self._tasks_lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError('Task not found', {'taskId': task_id})
            lease = task.get('turnLease')
            if lease and lease['leaseId'] != lease_id and lease['expiresAt'] > now:
                raise ConflictError('Another turn is already in progress for this task', {'taskId': task_id})
            task['turnLease'] = {'leaseId': lease_id, 'expiresAt': expires_at}

    def release_turn_lease(self, task_id, lease_id):
        with self._tasks_lock:
            task = self._tasks.get(task_id)
            if task and (task.get('turnLease') or {}).get('leaseId') == lease_id:
                task.pop('turnLease', None)

    def record_turn(self, conversation, expected_turn, lease_id):
        task_id = conversation['taskId']
        with self._tasks_lock, self._conversations_lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError('Task not found', {'taskId': task_id})
            lease = task.get('turnLease') or {}
            if (task['completed'] or task['currentTurn'] != expected_turn
                    or lease.get('leaseId') != lease_id):
                raise ConflictError('Task changed while the turn was being generated', {
                    'taskId': task_id,
                    'expectedTurn': expected_turn,
                })
            # Conversation first so currentTurn never runs ahead of it
            self._conversations[conversation['conversationId']] = copy.deepcopy(conversation)
            task['currentTurn'] = expected_turn + 1
            return copy.deepcopy(task)

    def complete_task(self, task_id, completed_at, credit_user_id, payout):
        with self._tasks_lock, self._users_lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError('Task not found', {'taskId': task_id})
            if task['completed']:
                return copy.deepcopy(task), False
            task['completed'] = True
            task['completedAt'] = completed_at
            user = self._users.get(credit_user_id) if credit_user_id else None
            if user is not None:
                user['tasksCompleted'] = user.get('tasksCompleted', 0) + 1
                user['totalEarnings'] = Decimal(user.get('totalEarnings', 0)) + payout
            return copy.deepcopy(task), True

    # Conversations

    def get_conversation(self, conversation_id):
        with self._conversations_lock:
            return copy.deepcopy(self._conversations.get(conversation_id))

    def list_conversations_by_task(self, task_id):
        with self._conversations_lock:
            items = [copy.deepcopy(c) for c in self._conversations.values() if c['taskId'] == task_id]
        return sorted(items, key=lambda c: c['turn'])

    def list_conversations_by_user(self, user_id):
        with self._conversations_lock:
            return [copy.deepcopy(c) for c in self._conversations.values() if c.get('userId') == user_id]

    def update_conversation(self, conversation_id, fields):
        with self._conversations_lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise NotFoundError('Conversation not found', {'conversationId': conversation_id})
            conversation.update(copy.deepcopy(fields))
            return copy.deepcopy(conversation)

    # Ratings

    def create_rating(self, item):
        conversation_id = item['conversationId']
        with self._conversations_lock, self._ratings_lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise NotFoundError('Conversation not found', {'conversationId': conversation_id})
            if conversation.get('ratingId'):
                raise ConflictError('Conversation already rated', {'conversationId': conversation_id})
            conversation['ratingId'] = item['ratingId']
            self._ratings[item['ratingId']] = copy.deepcopy(item)
        return copy.deepcopy(item)

    def get_rating(self, rating_id):
        with self._ratings_lock:
            return copy.deepcopy(self._ratings.get(rating_id))

    def get_rating_by_conversation(self, conversation_id):
        with self._ratings_lock:
            for rating in self._ratings.values():
                if rating['conversationId'] == conversation_id:
                    return copy.deepcopy(rating)
        return None

    def update_rating(self, rating_id, fields):
        with self._ratings_lock:
            rating = self._ratings.get(rating_id)
            if rating is None:
                raise NotFoundError('Rating not found', {'ratingId': rating_id})
            rating.update(copy.deepcopy(fields))
            return copy.deepcopy(rating)

    def list_ratings_by_user(self, user_id):
        with self._ratings_lock:
            return [copy.deepcopy(r) for r in self._ratings.values() if r.get('userId') == user_id]


_store = None


def get_store() -> EntityStore:
    """Get or create the process-wide store selected by STORE_BACKEND."""
    global _store
    if _store is None:
        if config.STORE_BACKEND == 'memory':
            from .users import seed_demo_users
            _store = MemoryEntityStore()
            seed_demo_users(_store)
        else:
            from .dynamo import DynamoEntityStore
            _store = DynamoEntityStore()
        logger.info(f"Using {type(_store).__name__}")
    return _store
