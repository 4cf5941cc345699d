"""
Organization lookups and webhook endpoint registration.
"""
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from boto3.dynamodb.conditions import Key

from .errors import NotFound, ValidationError
from .dynamo import update_item
from .logging import logger
from .utils import now_iso


def validate_webhook_url(url: Any) -> str:
    """
    Accept only absolute http(s) URLs with a host.

    Raises:
        ValidationError: if the URL is missing or malformed
    """
    if not url or not isinstance(url, str):
        raise ValidationError('Webhook URL is required')
    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValidationError('Invalid webhook URL format')
    return url.strip()


class OrganizationStore:

    def __init__(self, table):
        self.table = table

    def get(self, org_id: str) -> Optional[Dict[str, Any]]:
        response = self.table.get_item(Key={'orgId': org_id})
        return response.get('Item')

    def require(self, org_id: str) -> Dict[str, Any]:
        org = self.get(org_id)
        if not org:
            raise NotFound('Organization', org_id)
        return org

    def find_by_api_key(self, api_key: str) -> Optional[Dict[str, Any]]:
        response = self.table.query(
            IndexName='ApiKeyIndex',
            KeyConditionExpression=Key('apiKey').eq(api_key),
            Limit=1
        )
        items = response.get('Items', [])
        return items[0] if items else None

    def set_webhook_url(self, org_id: str, url: str) -> Dict[str, Any]:
        """Register or replace the organization's single notification endpoint."""
        url = validate_webhook_url(url)
        self.require(org_id)
        updated = update_item(
            self.table,
            {'orgId': org_id},
            set_fields={'webhookUrl': url, 'updatedAt': now_iso()},
        )
        logger.info(f"Registered webhook for organization {org_id}")
        return public_view(updated)

    def clear_webhook_url(self, org_id: str) -> None:
        self.require(org_id)
        self.table.update_item(
            Key={'orgId': org_id},
            UpdateExpression='REMOVE webhookUrl SET updatedAt = :ts',
            ExpressionAttributeValues={':ts': now_iso()},
        )
        logger.info(f"Removed webhook for organization {org_id}")


def public_view(org: Dict[str, Any]) -> Dict[str, Any]:
    """Organization fields safe to return to API callers."""
    return {
        'id': org.get('orgId'),
        'name': org.get('name'),
        'webhookUrl': org.get('webhookUrl'),
    }
