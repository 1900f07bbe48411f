"""
DynamoDB implementation of the entity store.

Tables (partition key / GSIs):
    Users          userId (username claims stored as 'username#<name>' items)
    Tasks          taskId, GSI UserIndex(userId); conversationIds lists the task's turns in order
    Conversations  conversationId, GSI UserIndex(userId)
    Ratings        ratingId, GSI UserIndex(userId)

Multi-item writes go through transact_write_items with condition
expressions, so a lost race surfaces as TransactionCanceledException.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from .config import config
from .errors import ConflictError, NotFoundError
from .logging import logger
from .store import EntityStore

USERNAME_PREFIX = 'username#'

_serializer = TypeSerializer()


def _strip_none(item: Dict[str, Any]) -> Dict[str, Any]:
    """GSI key attributes may not be NULL, so absent values are not written."""
    return {k: v for k, v in item.items() if v is not None}


def _to_attribute_values(item: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a plain item for the low-level transaction API."""
    return {k: _serializer.serialize(v) for k, v in _strip_none(item).items()}


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def _cancellation_codes(error: ClientError) -> List[str]:
    """Per-item reason codes of a cancelled transaction, in TransactItems order."""
    return [r.get('Code', 'None') for r in error.response.get('CancellationReasons', [])]


def _task_defaults(item: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if item is None:
        return None
    item.setdefault('userId', None)
    item.setdefault('completedAt', None)
    item['currentTurn'] = int(item['currentTurn'])
    item['maxTurns'] = int(item['maxTurns'])
    return item


def _conversation_defaults(item: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if item is None:
        return None
    item.setdefault('userId', None)
    item['turn'] = int(item['turn'])
    if item.get('wordCount') is not None:
        item['wordCount'] = int(item['wordCount'])
    return item


def _rating_defaults(item: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if item is None:
        return None
    item.setdefault('userId', None)
    item.setdefault('comments', None)
    for key in ('accuracy', 'clarity', 'relevance', 'consistency', 'completeness'):
        if key in item:
            item[key] = int(item[key])
    return item


def _user_defaults(item: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if item is None:
        return None
    item['tasksCompleted'] = int(item.get('tasksCompleted', 0))
    item['totalEarnings'] = Decimal(str(item.get('totalEarnings', '0.00')))
    return item


class DynamoEntityStore(EntityStore):
    """Entity store backed by four DynamoDB tables."""

    def __init__(self, dynamodb=None):
        self.dynamodb = dynamodb or boto3.resource('dynamodb', region_name=config.AWS_REGION)
        self.client = self.dynamodb.meta.client
        self.users_table = self.dynamodb.Table(config.USERS_TABLE)
        self.tasks_table = self.dynamodb.Table(config.TASKS_TABLE)
        self.conversations_table = self.dynamodb.Table(config.CONVERSATIONS_TABLE)
        self.ratings_table = self.dynamodb.Table(config.RATINGS_TABLE)

    def _query(self, table, index_name: str, key_condition, scan_forward: bool = True) -> List[Dict[str, Any]]:
        """Query an index, following LastEvaluatedKey until exhausted."""
        params = {
            'IndexName': index_name,
            'KeyConditionExpression': key_condition,
            'ScanIndexForward': scan_forward,
        }
        items = []
        while True:
            response = table.query(**params)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return items
            params['ExclusiveStartKey'] = last_key

    def _scan(self, table) -> List[Dict[str, Any]]:
        params = {}
        items = []
        while True:
            response = table.scan(**params)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return items
            params['ExclusiveStartKey'] = last_key

    def _set_fields(self, table, key: Dict[str, str], fields: Dict[str, Any],
                    not_found: NotFoundError) -> Dict[str, Any]:
        """SET each field on an existing item and return the new image."""
        names = {}
        values = {}
        assignments = []
        for i, (field, value) in enumerate(fields.items()):
            names[f'#f{i}'] = field
            values[f':v{i}'] = value
            assignments.append(f'#f{i} = :v{i}')
        key_name = next(iter(key))
        names['#key'] = key_name
        try:
            response = table.update_item(
                Key=key,
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression='attribute_exists(#key)',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                raise not_found
            raise
        return response.get('Attributes', {})

    # Users

    def get_user(self, user_id):
        response = self.users_table.get_item(Key={'userId': user_id})
        return _user_defaults(response.get('Item'))

    def get_user_by_username(self, username):
        response = self.users_table.get_item(Key={'userId': USERNAME_PREFIX + username})
        claim = response.get('Item')
        if not claim:
            return None
        return self.get_user(claim['ownerId'])

    def create_user(self, item):
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        'Put': {
                            'TableName': config.USERS_TABLE,
                            'Item': _to_attribute_values({
                                'userId': USERNAME_PREFIX + item['username'],
                                'ownerId': item['userId'],
                            }),
                            'ConditionExpression': 'attribute_not_exists(userId)'
                        }
                    },
                    {
                        'Put': {
                            'TableName': config.USERS_TABLE,
                            'Item': _to_attribute_values(item),
                            'ConditionExpression': 'attribute_not_exists(userId)'
                        }
                    }
                ]
            )
        except ClientError as e:
            if _error_code(e) == 'TransactionCanceledException':
                raise ConflictError('Username already exists', {'username': item['username']})
            raise
        return item

    # Tasks

    def create_task(self, item):
        self.tasks_table.put_item(
            Item=_strip_none(item),
            ConditionExpression='attribute_not_exists(taskId)'
        )
        return item

    def get_task(self, task_id):
        response = self.tasks_table.get_item(Key={'taskId': task_id}, ConsistentRead=True)
        return _task_defaults(response.get('Item'))

    def list_tasks(self):
        return [_task_defaults(t) for t in self._scan(self.tasks_table)]

    def list_tasks_by_user(self, user_id):
        items = self._query(self.tasks_table, 'UserIndex', Key('userId').eq(user_id))
        return [_task_defaults(t) for t in items]

    def acquire_turn_lease(self, task_id, lease_id, now, expires_at):
        try:
            self.tasks_table.update_item(
                Key={'taskId': task_id},
                UpdateExpression='SET turnLease = :lease',
                ConditionExpression=(
                    'attribute_exists(taskId) AND (attribute_not_exists(turnLease) '
                    'OR turnLease.expiresAt < :now OR turnLease.leaseId = :lease_id)'
                ),
                ExpressionAttributeValues={
                    ':lease': {'leaseId': lease_id, 'expiresAt': expires_at},
                    ':lease_id': lease_id,
                    ':now': now
                }
            )
        except ClientError as e:
            if _error_code(e) != 'ConditionalCheckFailedException':
                raise
            if self.get_task(task_id) is None:
                raise NotFoundError('Task not found', {'taskId': task_id})
            raise ConflictError('Another turn is already in progress for this task', {'taskId': task_id})

    def release_turn_lease(self, task_id, lease_id):
        try:
            self.tasks_table.update_item(
                Key={'taskId': task_id},
                UpdateExpression='REMOVE turnLease',
                ConditionExpression='turnLease.leaseId = :lease_id',
                ExpressionAttributeValues={':lease_id': lease_id}
            )
        except ClientError as e:
            if _error_code(e) != 'ConditionalCheckFailedException':
                raise
            logger.warning(f"Turn lease {lease_id} on task {task_id} was already gone")

    def record_turn(self, conversation, expected_turn, lease_id):
        task_id = conversation['taskId']
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        'Put': {
                            'TableName': config.CONVERSATIONS_TABLE,
                            'Item': _to_attribute_values(conversation),
                            'ConditionExpression': 'attribute_not_exists(conversationId)'
                        }
                    },
                    {
                        'Update': {
                            'TableName': config.TASKS_TABLE,
                            'Key': {'taskId': {'S': task_id}},
                            'UpdateExpression': (
                                'SET currentTurn = :next_turn, conversationIds = '
                                'list_append(if_not_exists(conversationIds, :no_ids), :conversation_id)'
                            ),
                            'ConditionExpression': (
                                'currentTurn = :turn AND completed = :open '
                                'AND turnLease.leaseId = :lease_id'
                            ),
                            'ExpressionAttributeValues': {
                                ':turn': {'N': str(expected_turn)},
                                ':next_turn': {'N': str(expected_turn + 1)},
                                ':no_ids': {'L': []},
                                ':conversation_id': {'L': [{'S': conversation['conversationId']}]},
                                ':open': {'BOOL': False},
                                ':lease_id': {'S': lease_id}
                            }
                        }
                    }
                ]
            )
        except ClientError as e:
            if _error_code(e) == 'TransactionCanceledException':
                logger.warning(f"Turn {expected_turn} commit on task {task_id} cancelled: {_cancellation_codes(e)}")
                raise ConflictError('Task changed while the turn was being generated', {
                    'taskId': task_id,
                    'expectedTurn': expected_turn,
                })
            raise
        return self.get_task(task_id)

    def complete_task(self, task_id, completed_at, credit_user_id, payout):
        transact_items = [
            {
                'Update': {
                    'TableName': config.TASKS_TABLE,
                    'Key': {'taskId': {'S': task_id}},
                    'UpdateExpression': 'SET completed = :done, completedAt = :ts',
                    'ConditionExpression': 'attribute_exists(taskId) AND completed = :open',
                    'ExpressionAttributeValues': {
                        ':done': {'BOOL': True},
                        ':open': {'BOOL': False},
                        ':ts': {'S': completed_at}
                    }
                }
            }
        ]
        if credit_user_id:
            # ADD keeps the credit atomic against other completions for this user
            transact_items.append({
                'Update': {
                    'TableName': config.USERS_TABLE,
                    'Key': {'userId': {'S': credit_user_id}},
                    'UpdateExpression': 'ADD tasksCompleted :one, totalEarnings :payout',
                    'ConditionExpression': 'attribute_exists(userId)',
                    'ExpressionAttributeValues': {
                        ':one': {'N': '1'},
                        ':payout': {'N': str(payout)}
                    }
                }
            })

        try:
            self.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            if _error_code(e) != 'TransactionCanceledException':
                raise
            codes = _cancellation_codes(e)
            if codes and codes[0] == 'ConditionalCheckFailed':
                task = self.get_task(task_id)
                if task is None:
                    raise NotFoundError('Task not found', {'taskId': task_id})
                return task, False
            raise ConflictError('Task completion was cancelled', {'taskId': task_id, 'reasons': codes})

        return self.get_task(task_id), True

    # Conversations

    def get_conversation(self, conversation_id):
        response = self.conversations_table.get_item(
            Key={'conversationId': conversation_id},
            ConsistentRead=True
        )
        return _conversation_defaults(response.get('Item'))

    def list_conversations_by_task(self, task_id):
        # Follow the ids committed with each turn; a GSI may lag behind currentTurn
        task = self.get_task(task_id)
        if task is None:
            return []
        conversations = [self.get_conversation(cid) for cid in task.get('conversationIds', [])]
        return sorted((c for c in conversations if c), key=lambda c: c['turn'])

    def list_conversations_by_user(self, user_id):
        items = self._query(self.conversations_table, 'UserIndex', Key('userId').eq(user_id))
        return [_conversation_defaults(c) for c in items]

    def update_conversation(self, conversation_id, fields):
        item = self._set_fields(
            self.conversations_table,
            {'conversationId': conversation_id},
            fields,
            NotFoundError('Conversation not found', {'conversationId': conversation_id})
        )
        return _conversation_defaults(item)

    # Ratings

    def create_rating(self, item):
        conversation_id = item['conversationId']
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        'Put': {
                            'TableName': config.RATINGS_TABLE,
                            'Item': _to_attribute_values(item),
                            'ConditionExpression': 'attribute_not_exists(ratingId)'
                        }
                    },
                    {
                        # One rating per conversation: the conversation records who rated it first
                        'Update': {
                            'TableName': config.CONVERSATIONS_TABLE,
                            'Key': {'conversationId': {'S': conversation_id}},
                            'UpdateExpression': 'SET ratingId = :rating_id',
                            'ConditionExpression': 'attribute_exists(conversationId) AND attribute_not_exists(ratingId)',
                            'ExpressionAttributeValues': {':rating_id': {'S': item['ratingId']}}
                        }
                    }
                ]
            )
        except ClientError as e:
            if _error_code(e) != 'TransactionCanceledException':
                raise
            if self.get_conversation(conversation_id) is None:
                raise NotFoundError('Conversation not found', {'conversationId': conversation_id})
            raise ConflictError('Conversation already rated', {'conversationId': conversation_id})
        return item

    def get_rating(self, rating_id):
        response = self.ratings_table.get_item(Key={'ratingId': rating_id}, ConsistentRead=True)
        return _rating_defaults(response.get('Item'))

    def get_rating_by_conversation(self, conversation_id):
        conversation = self.get_conversation(conversation_id)
        if not conversation or not conversation.get('ratingId'):
            return None
        return self.get_rating(conversation['ratingId'])

    def update_rating(self, rating_id, fields):
        item = self._set_fields(
            self.ratings_table,
            {'ratingId': rating_id},
            fields,
            NotFoundError('Rating not found', {'ratingId': rating_id})
        )
        return _rating_defaults(item)

    def list_ratings_by_user(self, user_id):
        items = self._query(self.ratings_table, 'UserIndex', Key('userId').eq(user_id))
        return [_rating_defaults(r) for r in items]
