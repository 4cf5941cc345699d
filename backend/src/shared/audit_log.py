"""
Append-only ledger of Request status transitions.

Entries are written inside the same transaction as the transition they
describe and are never updated or deleted.
"""
import uuid
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Key

from .dynamo import query_all, transact_put
from .models import RequestStatus
from .utils import now_iso


class AuditLog:

    def __init__(self, table):
        self.table = table

    def entry(
        self,
        request_id: str,
        old_status: Optional[RequestStatus],
        new_status: RequestStatus,
        changed_by: str,
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        created_at = now_iso()
        return {
            'requestId': request_id,
            # Sort key orders entries by time; the uuid suffix breaks ties
            'logId': f"{created_at}#{uuid.uuid4()}",
            'oldStatus': old_status.value if old_status else None,
            'newStatus': new_status.value,
            'changedBy': changed_by,
            'notes': notes,
            'createdAt': created_at,
        }

    def put_item(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        """Transaction item that appends `entry`; fails if the slot is taken."""
        return transact_put(
            self.table.name,
            entry,
            condition='attribute_not_exists(logId)',
        )

    def history(self, request_id: str, newest_first: bool = False) -> List[Dict[str, Any]]:
        """All entries for a request in transition order."""
        entries = query_all(
            self.table,
            KeyConditionExpression=Key('requestId').eq(request_id),
            ScanIndexForward=not newest_first,
            ConsistentRead=True,
        )
        for entry in entries:
            entry.setdefault('oldStatus', None)
        return entries
