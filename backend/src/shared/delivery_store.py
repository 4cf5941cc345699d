"""
Persisted queue of outbound webhook deliveries (DeliveryRecords).

Only status, attempts, lastAttempt and response ever change after a record
is created, and only the dispatcher changes them.
"""
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from .dynamo import is_condition_failure, query_all, update_item
from .models import DeliveryStatus
from .utils import now_iso, paginate, to_json

# Response summaries are truncated to keep records small
MAX_RESPONSE_SUMMARY = 1024


class DeliveryRecordStore:

    def __init__(self, table):
        self.table = table

    def create(self, org_id: str, event: str, payload: Dict[str, Any], url: str) -> Dict[str, Any]:
        record = {
            'eventId': str(uuid.uuid4()),
            'orgId': org_id,
            'event': event,
            # Stored as a JSON string so arbitrary payloads survive DynamoDB typing
            'payload': to_json(payload),
            'url': url,
            'status': DeliveryStatus.PENDING.value,
            'attempts': 0,
            'createdAt': now_iso(),
        }
        self.table.put_item(Item=record, ConditionExpression='attribute_not_exists(eventId)')
        return decode(record)

    def get(self, event_id: str) -> Optional[Dict[str, Any]]:
        response = self.table.get_item(Key={'eventId': event_id}, ConsistentRead=True)
        item = response.get('Item')
        return decode(item) if item else None

    def claim_attempt(self, event_id: str, max_attempts: int) -> Optional[Dict[str, Any]]:
        """
        Reserve one delivery attempt. Returns the record with the attempt
        counted, or None when it is already delivered or out of attempts.
        """
        try:
            item = update_item(
                self.table,
                {'eventId': event_id},
                set_fields={'lastAttempt': now_iso()},
                add_fields={'attempts': 1},
                condition='attribute_exists(eventId) AND #st <> :success AND #att < :max',
                names={'#st': 'status', '#att': 'attempts'},
                values={':success': DeliveryStatus.SUCCESS.value, ':max': max_attempts},
            )
        except ClientError as e:
            if is_condition_failure(e):
                return None
            raise
        return decode(item)

    def record_result(self, event_id: str, success: bool, summary: str) -> Dict[str, Any]:
        """Store the outcome of the attempt claimed by claim_attempt."""
        status = DeliveryStatus.SUCCESS if success else DeliveryStatus.FAILED
        fields = {
            'status': status.value,
            'response': summary[:MAX_RESPONSE_SUMMARY],
        }
        if success:
            fields['deliveredAt'] = now_iso()
        item = update_item(
            self.table,
            {'eventId': event_id},
            set_fields=fields,
            # A concurrent attempt may already have succeeded; never downgrade it
            condition='#st <> :success',
            names={'#st': 'status'},
            values={':success': DeliveryStatus.SUCCESS.value},
        )
        return decode(item)

    def list_retryable(self, max_attempts: int, limit: int) -> List[Dict[str, Any]]:
        """FAILED records that still have attempts left, oldest first."""
        items = query_all(
            self.table,
            max_items=limit,
            IndexName='StatusIndex',
            KeyConditionExpression=Key('status').eq(DeliveryStatus.FAILED.value),
            FilterExpression=Attr('attempts').lt(max_attempts),
        )
        return [decode(item) for item in items]

    def list_stale_pending(self, older_than_minutes: int, limit: int, max_attempts: int) -> List[Dict[str, Any]]:
        """PENDING records whose asynchronous hand-off never ran and that still have attempts left."""
        cutoff = (datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)).isoformat()
        items = query_all(
            self.table,
            max_items=limit,
            IndexName='StatusIndex',
            KeyConditionExpression=Key('status').eq(DeliveryStatus.PENDING.value) & Key('createdAt').lt(cutoff),
            FilterExpression=Attr('attempts').lt(max_attempts),
        )
        return [decode(item) for item in items]

    def mark_exhausted(self, event_id: str, max_attempts: int) -> bool:
        """
        Close a PENDING record whose attempts were all claimed but never
        recorded (e.g. the worker died mid-delivery). Returns False if the
        record is not in that state.
        """
        try:
            update_item(
                self.table,
                {'eventId': event_id},
                set_fields={
                    'status': DeliveryStatus.FAILED.value,
                    'response': 'Attempts exhausted without a recorded result',
                },
                condition='#st = :pending AND #att >= :max',
                names={'#st': 'status', '#att': 'attempts'},
                values={':pending': DeliveryStatus.PENDING.value, ':max': max_attempts},
            )
        except ClientError as e:
            if is_condition_failure(e):
                return False
            raise
        return True

    def list_for_org(
        self,
        org_id: str,
        status: Optional[str],
        page: int,
        limit: int
    ) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
        params = {
            'IndexName': 'OrgIndex',
            'KeyConditionExpression': Key('orgId').eq(org_id),
            'ScanIndexForward': False,
        }
        if status:
            params['FilterExpression'] = Attr('status').eq(status)
        items = [decode(item) for item in query_all(self.table, **params)]
        return paginate(items, page, limit)


def decode(item: Dict[str, Any]) -> Dict[str, Any]:
    record = dict(item)
    if isinstance(record.get('payload'), str):
        record['payload'] = json.loads(record['payload'])
    return record
