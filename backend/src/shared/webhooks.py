"""
Webhook Dispatcher.

Records outbound notification intents as DeliveryRecords, delivers them to
the organization's registered endpoint with a bounded timeout, and retries
failures up to a configured number of attempts. Delivery is at-least-once:
receivers should de-duplicate on the X-Webhook-Delivery header.

Workflow code only ever calls `notify`, which never raises and never waits
on the network.
"""
import http.client
import json
import socket
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Union

from botocore.exceptions import ClientError

from .config import config
from .delivery_store import DeliveryRecordStore
from .errors import DeliveryError, ValidationError
from .logging import logger
from .models import DeliveryStatus, WebhookEvent
from .organizations import OrganizationStore
from .sqs import send_message
from .utils import now_iso, to_json

USER_AGENT = 'fulfillment-webhooks/1.0'


class WebhookDispatcher:

    def __init__(
        self,
        records: DeliveryRecordStore,
        organizations: OrganizationStore,
        timeout: float = None,
        max_attempts: int = None,
        max_workers: int = None,
        queue_url: Optional[str] = None
    ):
        self.records = records
        self.organizations = organizations
        self.timeout = timeout if timeout is not None else config.WEBHOOK_TIMEOUT_SECONDS
        self.max_attempts = max_attempts if max_attempts is not None else config.WEBHOOK_MAX_ATTEMPTS
        self.max_workers = max_workers if max_workers is not None else config.WEBHOOK_MAX_WORKERS
        self.queue_url = queue_url
        self._executor: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(self, org_id: str, event: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Record a delivery intent for the organization's endpoint.
        No-op (returns None) when the organization has no endpoint.
        """
        org = self.organizations.get(org_id)
        url = org.get('webhookUrl') if org else None
        if not url:
            logger.debug(f"No webhook registered for {org_id}, skipping {event}")
            return None

        record = self.records.create(org_id, event, payload, url)
        logger.info(f"Queued {event} delivery {record['eventId']} for {org_id}")
        return record

    def schedule(self, record: Dict[str, Any]) -> None:
        """Hand a record off for asynchronous delivery."""
        if self.queue_url:
            if not send_message(self.queue_url, {'eventId': record['eventId']}):
                # Picked up later by the stale-pending sweep
                logger.warning(f"Could not hand off delivery {record['eventId']}")
            return

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='webhook')
        self._executor.submit(self.deliver, record['eventId'])

    def notify(self, org_id: str, event: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Enqueue and schedule. Failures are logged, never raised."""
        try:
            record = self.enqueue(org_id, event, payload)
            if record:
                self.schedule(record)
            return record
        except Exception as e:
            logger.error(f"Failed to queue {event} for {org_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Deliver
    # ------------------------------------------------------------------

    def deliver(self, record: Union[str, Dict[str, Any]], max_attempts: int = None) -> bool:
        """
        Make one delivery attempt. Returns True on a 2xx response.
        Never raises; every outcome is written to the DeliveryRecord.
        """
        event_id = record if isinstance(record, str) else record['eventId']
        max_attempts = max_attempts if max_attempts is not None else self.max_attempts
        try:
            claimed = self.records.claim_attempt(event_id, max_attempts)
        except ClientError as e:
            logger.error(f"Could not claim delivery {event_id}: {e}")
            return False

        if claimed is None:
            current = self._safe_get(event_id)
            if current and current.get('status') == DeliveryStatus.SUCCESS.value:
                return True
            if current and current.get('status') == DeliveryStatus.PENDING.value:
                # Attempts were claimed but their results never written
                self._close_exhausted(event_id, max_attempts)
            logger.info(f"Delivery {event_id} not attempted (missing or out of attempts)")
            return False

        try:
            summary = self._post(claimed)
            success = True
        except DeliveryError as e:
            summary = e.summary
            success = False
        except Exception as e:
            logger.exception(f"Unexpected error delivering {event_id}")
            summary = f"Delivery error: {type(e).__name__}: {e}"
            success = False

        try:
            self.records.record_result(event_id, success, summary)
        except ClientError as e:
            logger.error(f"Could not record result for delivery {event_id}: {e}")
            return False

        if success:
            logger.info(f"Delivered {claimed['event']} {event_id} (attempt {claimed['attempts']})")
        else:
            logger.warning(f"Webhook delivery {event_id} failed (attempt {claimed['attempts']}): {summary}")
        return success

    def _post(self, record: Dict[str, Any]) -> str:
        """POST the webhook body. Returns a response summary or raises DeliveryError."""
        body = to_json({
            'event': record['event'],
            'data': record['payload'],
            'timestamp': record['createdAt'],
        }).encode('utf-8')

        request = urllib.request.Request(
            record['url'],
            data=body,
            method='POST',
            headers={
                'Content-Type': 'application/json',
                'User-Agent': USER_AGENT,
                'X-Webhook-Event': record['event'],
                'X-Webhook-Delivery': record['eventId'],
            },
        )

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
                text = response.read(1024).decode('utf-8', errors='replace')
        except urllib.error.HTTPError as e:
            raise DeliveryError(f"HTTP {e.code}: {e.reason}", status_code=e.code)
        except (socket.timeout, TimeoutError):
            raise DeliveryError(f"Timed out after {self.timeout}s")
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise DeliveryError(f"Timed out after {self.timeout}s")
            raise DeliveryError(f"Connection error: {e.reason}")
        except http.client.HTTPException as e:
            # Malformed status line, truncated body
            raise DeliveryError(f"Invalid HTTP response: {type(e).__name__}: {e}")
        except (OSError, ValueError) as e:
            raise DeliveryError(f"Delivery error: {e}")

        if not 200 <= status < 300:
            raise DeliveryError(f"HTTP {status}", status_code=status)
        return json.dumps({'status': status, 'data': text})

    def _close_exhausted(self, event_id: str, max_attempts: int) -> None:
        try:
            if self.records.mark_exhausted(event_id, max_attempts):
                logger.warning(f"Delivery {event_id} left PENDING without attempts, marked FAILED")
        except ClientError as e:
            logger.error(f"Could not close delivery {event_id}: {e}")

    def _safe_get(self, event_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.records.get(event_id)
        except ClientError as e:
            logger.error(f"Could not read delivery {event_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Retry sweep
    # ------------------------------------------------------------------

    def retry_failed(self, max_attempts: int = None, batch_size: int = None) -> Dict[str, int]:
        """
        Re-deliver FAILED records that have attempts left.
        Intended for a periodic trigger.
        """
        max_attempts = max_attempts if max_attempts is not None else self.max_attempts
        batch_size = batch_size if batch_size is not None else config.WEBHOOK_RETRY_BATCH_SIZE
        records = self.records.list_retryable(max_attempts, batch_size)
        logger.info(f"Retrying {len(records)} failed webhook deliveries")

        return self._deliver_all(records, max_attempts)

    def deliver_stale_pending(self, older_than_minutes: int = None, batch_size: int = None) -> Dict[str, int]:
        """Deliver PENDING records whose hand-off was lost."""
        older_than_minutes = older_than_minutes if older_than_minutes is not None else config.WEBHOOK_PENDING_GRACE_MINUTES
        batch_size = batch_size if batch_size is not None else config.WEBHOOK_RETRY_BATCH_SIZE
        # Records out of attempts are skipped so they cannot fill every batch
        records = self.records.list_stale_pending(older_than_minutes, batch_size, self.max_attempts)
        if records:
            logger.info(f"Delivering {len(records)} stale pending webhook deliveries")
        return self._deliver_all(records)

    def _deliver_all(self, records: List[Dict[str, Any]], max_attempts: int = None) -> Dict[str, int]:
        if not records:
            return {'checked': 0, 'succeeded': 0, 'failed': 0}

        # Each worker is bounded by the request timeout, so a hung endpoint holds one slot at most
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='webhook-retry') as pool:
            results = list(pool.map(
                lambda event_id: self.deliver(event_id, max_attempts),
                [r['eventId'] for r in records],
            ))

        succeeded = sum(1 for ok in results if ok)
        return {'checked': len(records), 'succeeded': succeeded, 'failed': len(records) - succeeded}

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def send_test(self, org_id: str) -> Dict[str, Any]:
        """Create a webhook.test record and deliver it synchronously."""
        org = self.organizations.require(org_id)
        if not org.get('webhookUrl'):
            raise ValidationError('No webhook URL registered')

        record = self.records.create(
            org_id,
            WebhookEvent.TEST,
            {'message': 'This is a test webhook', 'timestamp': now_iso()},
            org['webhookUrl'],
        )
        success = self.deliver(record['eventId'])
        return {'success': success, 'record': self.records.get(record['eventId'])}

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None


def request_status_payload(
    request: Dict[str, Any],
    old_status: Optional[str],
    new_status: str,
    project: Optional[Dict[str, Any]] = None,
    creator: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Data for a request.status_changed event."""
    return {
        'requestId': request['requestId'],
        'title': request.get('title'),
        'oldStatus': old_status,
        'newStatus': new_status,
        'project': {
            'id': project['projectId'],
            'creatorName': (creator or {}).get('name'),
            'deliverableUrl': project.get('deliverableUrl'),
        } if project else None,
    }


def project_completed_payload(
    project: Dict[str, Any],
    request: Dict[str, Any],
    creator: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Data for a project.completed event."""
    return {
        'projectId': project['projectId'],
        'requestId': project['requestId'],
        'requestTitle': request.get('title'),
        'creatorName': (creator or {}).get('name'),
        'deliverableUrl': project.get('deliverableUrl'),
        'completedAt': project.get('completedAt'),
    }
