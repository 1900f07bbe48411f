"""
Configuration module for the chat evaluation platform.
Loads all environment variables needed by the handlers and engines.
"""
import os
from decimal import Decimal


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # Entity store
    STORE_BACKEND = os.environ.get('STORE_BACKEND', 'dynamodb')  # dynamodb | memory

    # DynamoDB Tables
    USERS_TABLE = os.environ.get('USERS_TABLE', '')
    TASKS_TABLE = os.environ.get('TASKS_TABLE', '')
    CONVERSATIONS_TABLE = os.environ.get('CONVERSATIONS_TABLE', '')
    RATINGS_TABLE = os.environ.get('RATINGS_TABLE', '')

    # Response generator
    GENERATOR_BACKEND = os.environ.get('GENERATOR_BACKEND', 'bedrock')  # bedrock | sagemaker
    BEDROCK_MODEL_ID = os.environ.get('BEDROCK_MODEL_ID', 'amazon.titan-text-express-v1')
    SAGEMAKER_ENDPOINT_NAME = os.environ.get('SAGEMAKER_ENDPOINT_NAME', '')
    GENERATOR_TIMEOUT_SECONDS = int(os.environ.get('GENERATOR_TIMEOUT_SECONDS', '30'))
    GENERATOR_MAX_TOKENS = int(os.environ.get('GENERATOR_MAX_TOKENS', '800'))  # Roughly 500 words
    GENERATOR_TEMPERATURE = float(os.environ.get('GENERATOR_TEMPERATURE', '0.7'))

    # Turn serialization
    TURN_LEASE_SECONDS = int(os.environ.get('TURN_LEASE_SECONDS', '120'))

    # Payout per completed task
    TASK_PAYOUT = Decimal(os.environ.get('TASK_PAYOUT', '5.00'))

    # Reject completion until 3 turns and 15 scores are present
    ENFORCE_COMPLETION_GATE = os.environ.get('ENFORCE_COMPLETION_GATE', 'false').lower() == 'true'


config = Config()
