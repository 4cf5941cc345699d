"""
Configuration module for Lambda handlers.
Loads all environment variables needed by the fulfillment platform.
"""
import os


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    ORGANIZATIONS_TABLE = os.environ.get('ORGANIZATIONS_TABLE', 'Organizations')
    CREATORS_TABLE = os.environ.get('CREATORS_TABLE', 'Creators')
    REQUESTS_TABLE = os.environ.get('REQUESTS_TABLE', 'Requests')
    BIDS_TABLE = os.environ.get('BIDS_TABLE', 'Bids')
    PROJECTS_TABLE = os.environ.get('PROJECTS_TABLE', 'Projects')
    STATUS_LOGS_TABLE = os.environ.get('STATUS_LOGS_TABLE', 'StatusLogs')
    WEBHOOK_EVENTS_TABLE = os.environ.get('WEBHOOK_EVENTS_TABLE', 'WebhookEvents')

    # SQS Queues
    WEBHOOK_QUEUE_URL = os.environ.get('WEBHOOK_QUEUE_URL', '')

    # Webhook delivery
    WEBHOOK_TIMEOUT_SECONDS = float(os.environ.get('WEBHOOK_TIMEOUT_SECONDS', '10'))
    WEBHOOK_MAX_ATTEMPTS = int(os.environ.get('WEBHOOK_MAX_ATTEMPTS', '3'))
    WEBHOOK_RETRY_BATCH_SIZE = int(os.environ.get('WEBHOOK_RETRY_BATCH_SIZE', '100'))
    WEBHOOK_MAX_WORKERS = int(os.environ.get('WEBHOOK_MAX_WORKERS', '4'))
    WEBHOOK_PENDING_GRACE_MINUTES = int(os.environ.get('WEBHOOK_PENDING_GRACE_MINUTES', '5'))

    # Pagination
    DEFAULT_PAGE_SIZE = int(os.environ.get('DEFAULT_PAGE_SIZE', '10'))
    MAX_PAGE_SIZE = int(os.environ.get('MAX_PAGE_SIZE', '100'))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


config = Config()
