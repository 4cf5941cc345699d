"""
SQS utility functions for message operations.
"""
import boto3
import json
from functools import lru_cache
from typing import Dict, Any
from .config import config
from .logging import logger


@lru_cache(maxsize=None)
def get_client():
    return boto3.client('sqs', region_name=config.AWS_REGION)


def send_message(queue_url: str, message_body: Dict[str, Any]) -> bool:
    """
    Send a single message to SQS queue.

    Args:
        queue_url: SQS queue URL
        message_body: Message body as dict (will be JSON serialized)

    Returns:
        True if sent successfully, False otherwise
    """
    try:
        get_client().send_message(
            QueueUrl=queue_url,
            MessageBody=json.dumps(message_body, default=str)
        )
        logger.info(f"Message sent to {queue_url}")
        return True
    except Exception as e:
        logger.error(f"Error sending message to SQS: {e}")
        return False


def parse_records(event: dict) -> list:
    """Decode the JSON bodies of an SQS-triggered Lambda event."""
    bodies = []
    for record in event.get('Records', []):
        try:
            bodies.append(json.loads(record['body']))
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            logger.error(f"Skipping malformed SQS record: {e}")
    return bodies
