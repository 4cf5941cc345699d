"""
Workflow Engine for the Request / Bid / Project lifecycle.

Each state-changing operation is a single DynamoDB transaction holding the
state writes and the audit log entry, guarded by condition expressions on
the statuses it read. Notifications are queued only after the transaction
commits, and queueing failures never fail the operation.
"""
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from .audit_log import AuditLog
from .dynamo import (
    MAX_TRANSACTION_ITEMS,
    is_transaction_cancelled,
    query_all,
    transact_put,
    transact_update,
    transact_write,
)
from .errors import (
    Conflict,
    DuplicateBid,
    InvalidTransition,
    NotAcceptingBids,
    NotFound,
    ValidationError,
)
from .logging import logger
from .matching import CreatorDirectory, find_matches
from .models import (
    BID_ACCEPTING_STATUSES,
    MANUAL_TARGETS,
    BidStatus,
    ProjectStatus,
    RequestStatus,
    WebhookEvent,
    can_transition,
    parse_request_status,
)
from .organizations import OrganizationStore
from .utils import now_iso, paginate
from .webhooks import WebhookDispatcher, project_completed_payload, request_status_payload

# Optimistic retries when a concurrent bid lands between AcceptBid's read and write
ACCEPT_RETRIES = 5

# Request update + winning bid + project + audit entry
ACCEPT_FIXED_ITEMS = 4

_BID_ACCEPTING_CONDITION = '(#st = :pending OR #st = :open)'
_BID_ACCEPTING_VALUES = {
    ':pending': RequestStatus.PENDING.value,
    ':open': RequestStatus.OPEN_FOR_BIDS.value,
}


class WorkflowEngine:

    def __init__(
        self,
        dynamodb,
        requests_table,
        bids_table,
        projects_table,
        audit_log: AuditLog,
        organizations: OrganizationStore,
        creators: CreatorDirectory,
        dispatcher: WebhookDispatcher
    ):
        self.client = dynamodb.meta.client
        self.requests = requests_table
        self.bids = bids_table
        self.projects = projects_table
        self.audit_log = audit_log
        self.organizations = organizations
        self.creators = creators
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def create_request(self, org_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """New Request in PENDING with its first audit entry (null -> PENDING)."""
        title = _text(fields.get('title'))
        description = _text(fields.get('description'))
        requirements = fields.get('requirements')
        service_type = _text(fields.get('serviceType'))

        missing = [
            name for name, value in (
                ('title', title),
                ('description', description),
                ('requirements', requirements),
                ('serviceType', service_type),
            ) if not value
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if not isinstance(requirements, dict):
            raise ValidationError('requirements must be an object')
        skills = requirements.get('skills', [])
        if not isinstance(skills, list) or not all(isinstance(s, str) for s in skills):
            raise ValidationError('requirements.skills must be a list of strings')

        now = now_iso()
        request = {
            'requestId': str(uuid.uuid4()),
            'orgId': org_id,
            'title': title,
            'description': description,
            'requirements': requirements,
            'serviceType': service_type,
            'budget': _parse_amount(fields.get('budget'), 'budget'),
            'deadline': _parse_deadline(fields.get('deadline')),
            'status': RequestStatus.PENDING.value,
            'bidCount': 0,
            'createdAt': now,
            'updatedAt': now,
        }
        entry = self.audit_log.entry(request['requestId'], None, RequestStatus.PENDING, org_id, 'Request created')

        transact_write(self.client, [
            transact_put(self.requests.name, request, condition='attribute_not_exists(requestId)'),
            self.audit_log.put_item(entry),
        ])
        logger.info(f"Created request {request['requestId']} for {org_id}")
        return request

    def get_request(self, org_id: str, request_id: str) -> Dict[str, Any]:
        """Request with its bids, project and status history (newest first)."""
        request = _public_request(self._get_owned_request(org_id, request_id))
        return {
            **request,
            'bids': self._bids_with_creators(request_id),
            'project': self._project_with_creator(request.get('projectId')),
            'statusLogs': self.audit_log.history(request_id, newest_first=True),
        }

    def list_requests(
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
            parsed = parse_request_status(status)
            if parsed is None:
                raise ValidationError(f"Unknown status: {status}")
            params['FilterExpression'] = Attr('status').eq(parsed.value)

        page_items, pagination = paginate(query_all(self.requests, **params), page, limit)
        for request in page_items:
            request['bids'] = self._bids_with_creators(request['requestId'])
            request['project'] = self._project_with_creator(request.get('projectId'))
            _strip_internal(request)
        return page_items, pagination

    def list_available_requests(
        self,
        service_type: Optional[str],
        page: int,
        limit: int
    ) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
        """Requests still accepting bids, newest first."""
        items = []
        for status in (RequestStatus.PENDING, RequestStatus.OPEN_FOR_BIDS):
            params = {
                'IndexName': 'StatusIndex',
                'KeyConditionExpression': Key('status').eq(status.value),
            }
            if service_type:
                params['FilterExpression'] = Attr('serviceType').eq(service_type)
            items.extend(query_all(self.requests, **params))

        items.sort(key=lambda r: r.get('createdAt', ''), reverse=True)
        page_items, pagination = paginate(items, page, limit)

        orgs: Dict[str, Any] = {}
        for request in page_items:
            org_id = request['orgId']
            if org_id not in orgs:
                org = self.organizations.get(org_id) or {}
                orgs[org_id] = {'id': org_id, 'name': org.get('name')}
            request['organization'] = orgs[org_id]
            request['bids'] = [
                {
                    'id': bid['bidId'],
                    'creatorId': bid['creatorId'],
                    'amount': bid['amount'],
                    'createdAt': bid['createdAt'],
                }
                for bid in self._bids_for(request['requestId'])
            ]
            _strip_internal(request)
        return page_items, pagination

    def change_request_status(
        self,
        org_id: str,
        request_id: str,
        new_status: Any,
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Organization-initiated transition (open for bids, cancel).
        BID_ACCEPTED and COMPLETED are only reachable through accept_bid and
        submit_project, which write the bids and project alongside.
        """
        if not new_status:
            raise ValidationError('Status is required')
        target = parse_request_status(new_status)
        if target is None:
            raise ValidationError(f"Unknown status: {new_status}")

        request = self._get_owned_request(org_id, request_id)
        old = RequestStatus(request['status'])
        if target not in MANUAL_TARGETS or not can_transition(old, target):
            raise InvalidTransition(old, target)

        entry = self.audit_log.entry(request_id, old, target, org_id, notes)
        try:
            transact_write(self.client, [
                transact_update(
                    self.requests.name,
                    {'requestId': request_id},
                    set_fields={'status': target.value, 'updatedAt': now_iso()},
                    condition='#st = :old',
                    names={'#st': 'status'},
                    values={':old': old.value},
                ),
                self.audit_log.put_item(entry),
            ])
        except ClientError as e:
            if is_transaction_cancelled(e):
                current = self._get_request(request_id)
                raise InvalidTransition(current['status'], target)
            raise

        logger.info(f"Request {request_id}: {old.value} -> {target.value}")
        updated = self._get_request(request_id)
        project = self._get_project_or_none(updated.get('projectId'))
        self.dispatcher.notify(
            org_id,
            WebhookEvent.REQUEST_STATUS_CHANGED,
            request_status_payload(updated, old.value, target.value, project, self._creator_for(project)),
        )
        return _public_request(updated)

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    def submit_bid(
        self,
        request_id: str,
        creator_id: str,
        amount: Any,
        proposal: Optional[str],
        estimated_days: Any = None
    ) -> Dict[str, Any]:
        """
        New PENDING bid. One bid per creator per request; the request's
        bidCount and bidders set are updated in the same transaction.
        """
        proposal = _text(proposal)
        if not request_id or not creator_id or amount in (None, '') or not proposal:
            raise ValidationError('Missing required fields: requestId, creatorId, amount, proposal')
        amount = _parse_amount(amount, 'amount')
        estimated_days = _parse_days(estimated_days)

        request = self._get_request(request_id)
        if RequestStatus(request['status']) not in BID_ACCEPTING_STATUSES:
            raise NotAcceptingBids(request['status'])
        creator = self.creators.require(creator_id)
        if creator_id in request.get('bidders', set()):
            raise DuplicateBid(request_id, creator_id)

        now = now_iso()
        bid = {
            'requestId': request_id,
            'bidId': str(uuid.uuid4()),
            'creatorId': creator_id,
            'amount': amount,
            'proposal': proposal,
            'estimatedDays': estimated_days,
            'status': BidStatus.PENDING.value,
            'createdAt': now,
            'updatedAt': now,
        }

        try:
            transact_write(self.client, [
                transact_update(
                    self.requests.name,
                    {'requestId': request_id},
                    set_fields={'updatedAt': now},
                    add_fields={'bidCount': 1, 'bidders': {creator_id}},
                    condition=f'{_BID_ACCEPTING_CONDITION} AND NOT contains(#bidders, :creator)',
                    names={'#st': 'status', '#bidders': 'bidders'},
                    values={**_BID_ACCEPTING_VALUES, ':creator': creator_id},
                ),
                transact_put(self.bids.name, bid, condition='attribute_not_exists(bidId)'),
            ])
        except ClientError as e:
            if not is_transaction_cancelled(e):
                raise
            current = self._get_request(request_id)
            if RequestStatus(current['status']) not in BID_ACCEPTING_STATUSES:
                raise NotAcceptingBids(current['status'])
            if creator_id in current.get('bidders', set()):
                raise DuplicateBid(request_id, creator_id)
            raise

        logger.info(f"Creator {creator_id} bid {amount} on request {request_id}")
        return {**bid, 'creator': _creator_summary(creator)}

    def accept_bid(
        self,
        org_id: str,
        request_id: str,
        bid_id: str,
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Accept one bid: the bid becomes ACCEPTED, every PENDING sibling becomes
        REJECTED, the request moves to BID_ACCEPTED, a project is created and
        one audit entry is written, all in one transaction.
        """
        if not bid_id:
            raise ValidationError('Bid ID is required')

        for attempt in range(ACCEPT_RETRIES):
            request = self._get_owned_request(org_id, request_id)
            bid = self._get_bid(request_id, bid_id)
            old = RequestStatus(request['status'])
            if old not in BID_ACCEPTING_STATUSES:
                raise InvalidTransition(old, RequestStatus.BID_ACCEPTED)
            if bid['status'] != BidStatus.PENDING.value:
                raise InvalidTransition(bid['status'], BidStatus.ACCEPTED, entity='Bid')

            bids = self._bids_for(request_id)
            bid_count = int(request.get('bidCount', 0))
            if len(bids) != bid_count:
                # A bid transaction committed between the two reads
                continue

            siblings = [
                b for b in bids
                if b['bidId'] != bid_id and b['status'] == BidStatus.PENDING.value
            ]
            if len(siblings) + ACCEPT_FIXED_ITEMS > MAX_TRANSACTION_ITEMS:
                raise ValidationError(
                    f"Request has {len(siblings)} pending bids; at most "
                    f"{MAX_TRANSACTION_ITEMS - ACCEPT_FIXED_ITEMS} can be rejected atomically"
                )

            project = self._execute_accept(org_id, request, bid, siblings, bid_count, notes)
            if project is not None:
                break
            logger.info(f"Accept of bid {bid_id} lost a race (attempt {attempt + 1}), re-reading")
        else:
            raise Conflict(f"Request {request_id} is receiving bids too quickly; retry the acceptance")

        logger.info(f"Accepted bid {bid_id} on request {request_id}, project {project['projectId']}")
        updated = self._get_request(request_id)
        winner = self.creators.get(bid['creatorId'])
        self.dispatcher.notify(
            org_id,
            WebhookEvent.REQUEST_STATUS_CHANGED,
            request_status_payload(
                updated, old.value, RequestStatus.BID_ACCEPTED.value, project, winner
            ),
        )
        return {'request': _public_request(updated), 'project': project}

    def _execute_accept(
        self,
        org_id: str,
        request: Dict[str, Any],
        bid: Dict[str, Any],
        siblings: List[Dict[str, Any]],
        bid_count: int,
        notes: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        """Run the acceptance transaction. Returns None if a condition failed."""
        request_id = request['requestId']
        old = RequestStatus(request['status'])
        now = now_iso()
        project = {
            'projectId': str(uuid.uuid4()),
            'requestId': request_id,
            'creatorId': bid['creatorId'],
            'bidId': bid['bidId'],
            'status': ProjectStatus.IN_PROGRESS.value,
            'startedAt': now,
            'updatedAt': now,
        }
        entry = self.audit_log.entry(
            request_id, old, RequestStatus.BID_ACCEPTED, org_id,
            notes or f"Accepted bid from creator {bid['creatorId']}",
        )

        pending = {':bid_pending': BidStatus.PENDING.value}
        items = [
            transact_update(
                self.requests.name,
                {'requestId': request_id},
                set_fields={
                    'status': RequestStatus.BID_ACCEPTED.value,
                    'acceptedBidId': bid['bidId'],
                    'projectId': project['projectId'],
                    'updatedAt': now,
                },
                condition=f'{_BID_ACCEPTING_CONDITION} AND #count = :count',
                names={'#st': 'status', '#count': 'bidCount'},
                values={**_BID_ACCEPTING_VALUES, ':count': bid_count},
            ),
            transact_update(
                self.bids.name,
                {'requestId': request_id, 'bidId': bid['bidId']},
                set_fields={'status': BidStatus.ACCEPTED.value, 'updatedAt': now},
                condition='#st = :bid_pending',
                names={'#st': 'status'},
                values=pending,
            ),
        ]
        for sibling in siblings:
            items.append(transact_update(
                self.bids.name,
                {'requestId': request_id, 'bidId': sibling['bidId']},
                set_fields={'status': BidStatus.REJECTED.value, 'updatedAt': now},
                condition='#st = :bid_pending',
                names={'#st': 'status'},
                values=pending,
            ))
        items.append(transact_put(self.projects.name, project, condition='attribute_not_exists(projectId)'))
        items.append(self.audit_log.put_item(entry))

        try:
            transact_write(self.client, items)
        except ClientError as e:
            if is_transaction_cancelled(e):
                return None
            raise
        return project

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def submit_project(
        self,
        project_id: str,
        deliverable_url: Optional[str],
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """Project -> SUBMITTED and Request -> COMPLETED in one transaction."""
        deliverable_url = _text(deliverable_url)
        if not deliverable_url:
            raise ValidationError('Deliverable URL is required')

        project = self._get_project(project_id)
        if project['status'] != ProjectStatus.IN_PROGRESS.value:
            raise InvalidTransition(project['status'], ProjectStatus.SUBMITTED, entity='Project')
        request = self._get_request(project['requestId'])
        old = RequestStatus(request['status'])
        if not can_transition(old, RequestStatus.COMPLETED):
            raise InvalidTransition(old, RequestStatus.COMPLETED)

        now = now_iso()
        entry = self.audit_log.entry(
            request['requestId'], old, RequestStatus.COMPLETED, project['creatorId'],
            'Project submitted by creator',
        )
        try:
            transact_write(self.client, [
                transact_update(
                    self.projects.name,
                    {'projectId': project_id},
                    set_fields={
                        'status': ProjectStatus.SUBMITTED.value,
                        'deliverableUrl': deliverable_url,
                        'notes': _text(notes),
                        'completedAt': now,
                        'updatedAt': now,
                    },
                    condition='#st = :in_progress',
                    names={'#st': 'status'},
                    values={':in_progress': ProjectStatus.IN_PROGRESS.value},
                ),
                transact_update(
                    self.requests.name,
                    {'requestId': request['requestId']},
                    set_fields={'status': RequestStatus.COMPLETED.value, 'updatedAt': now},
                    condition='#st = :accepted',
                    names={'#st': 'status'},
                    values={':accepted': RequestStatus.BID_ACCEPTED.value},
                ),
                self.audit_log.put_item(entry),
            ])
        except ClientError as e:
            if not is_transaction_cancelled(e):
                raise
            current = self._get_project(project_id)
            if current['status'] != ProjectStatus.IN_PROGRESS.value:
                raise InvalidTransition(current['status'], ProjectStatus.SUBMITTED, entity='Project')
            raise InvalidTransition(self._get_request(request['requestId'])['status'], RequestStatus.COMPLETED)

        logger.info(f"Project {project_id} submitted, request {request['requestId']} completed")
        updated_project = self._get_project(project_id)
        updated_request = self._get_request(request['requestId'])
        creator = self.creators.get(project['creatorId'])

        self.dispatcher.notify(
            request['orgId'],
            WebhookEvent.PROJECT_COMPLETED,
            project_completed_payload(updated_project, updated_request, creator),
        )
        self.dispatcher.notify(
            request['orgId'],
            WebhookEvent.REQUEST_STATUS_CHANGED,
            request_status_payload(
                updated_request, old.value, RequestStatus.COMPLETED.value, updated_project, creator
            ),
        )
        return {**updated_project, 'request': _public_request(updated_request), 'creator': _creator_summary(creator)}

    def approve_project(self, org_id: str, project_id: str, notes: Optional[str] = None) -> Dict[str, Any]:
        """
        Organization sign-off: SUBMITTED -> APPROVED. Credits the creator's
        completed-project counter. The request is already COMPLETED, so no
        audit entry is written.
        """
        project = self._get_project(project_id)
        self._get_owned_request(org_id, project['requestId'])
        if project['status'] != ProjectStatus.SUBMITTED.value:
            raise InvalidTransition(project['status'], ProjectStatus.APPROVED, entity='Project')

        now = now_iso()
        try:
            transact_write(self.client, [
                transact_update(
                    self.projects.name,
                    {'projectId': project_id},
                    set_fields={
                        'status': ProjectStatus.APPROVED.value,
                        'approvedAt': now,
                        'approvalNotes': _text(notes),
                        'updatedAt': now,
                    },
                    condition='#st = :submitted',
                    names={'#st': 'status'},
                    values={':submitted': ProjectStatus.SUBMITTED.value},
                ),
                transact_update(
                    self.creators.table.name,
                    {'creatorId': project['creatorId']},
                    add_fields={'completedProjects': 1},
                    condition='attribute_exists(creatorId)',
                ),
            ])
        except ClientError as e:
            if not is_transaction_cancelled(e):
                raise
            current = self._get_project(project_id)
            if current['status'] != ProjectStatus.SUBMITTED.value:
                raise InvalidTransition(current['status'], ProjectStatus.APPROVED, entity='Project')
            raise NotFound('Creator', project['creatorId'])

        logger.info(f"Project {project_id} approved by {org_id}")
        return self._get_project(project_id)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def find_matches(self, request_id: str) -> List[Dict[str, Any]]:
        return find_matches(self._get_request(request_id), self.creators)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get_request(self, request_id: str) -> Dict[str, Any]:
        response = self.requests.get_item(Key={'requestId': request_id}, ConsistentRead=True)
        item = response.get('Item')
        if not item:
            raise NotFound('Request', request_id)
        return item

    def _get_owned_request(self, org_id: str, request_id: str) -> Dict[str, Any]:
        request = self._get_request(request_id)
        # Requests of other organizations are indistinguishable from missing ones
        if request.get('orgId') != org_id:
            raise NotFound('Request', request_id)
        return request

    def _get_bid(self, request_id: str, bid_id: str) -> Dict[str, Any]:
        response = self.bids.get_item(Key={'requestId': request_id, 'bidId': bid_id}, ConsistentRead=True)
        item = response.get('Item')
        if not item:
            raise NotFound('Bid', bid_id)
        return item

    def _bids_for(self, request_id: str) -> List[Dict[str, Any]]:
        bids = query_all(
            self.bids,
            KeyConditionExpression=Key('requestId').eq(request_id),
            ConsistentRead=True,
        )
        bids.sort(key=lambda b: b.get('createdAt', ''))
        return bids

    def _bids_with_creators(self, request_id: str) -> List[Dict[str, Any]]:
        creators: Dict[str, Any] = {}
        bids = []
        for bid in self._bids_for(request_id):
            creator_id = bid['creatorId']
            if creator_id not in creators:
                creators[creator_id] = _creator_summary(self.creators.get(creator_id))
            bids.append({**bid, 'creator': creators[creator_id]})
        return bids

    def _get_project(self, project_id: str) -> Dict[str, Any]:
        project = self._get_project_or_none(project_id)
        if not project:
            raise NotFound('Project', project_id)
        return project

    def _get_project_or_none(self, project_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not project_id:
            return None
        response = self.projects.get_item(Key={'projectId': project_id}, ConsistentRead=True)
        return response.get('Item')

    def _project_with_creator(self, project_id: Optional[str]) -> Optional[Dict[str, Any]]:
        project = self._get_project_or_none(project_id)
        if not project:
            return None
        return {**project, 'creator': _creator_summary(self._creator_for(project))}

    def _creator_for(self, project: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        return self.creators.get(project['creatorId']) if project else None


# Bookkeeping attributes used by the bid transactions, not part of the API view
_INTERNAL_REQUEST_FIELDS = ('bidders',)


def _strip_internal(request: Dict[str, Any]) -> None:
    for field in _INTERNAL_REQUEST_FIELDS:
        request.pop(field, None)


def _public_request(request: Dict[str, Any]) -> Dict[str, Any]:
    public = dict(request)
    _strip_internal(public)
    return public


def _creator_summary(creator: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not creator:
        return None
    return {
        'id': creator['creatorId'],
        'name': creator.get('name'),
        'email': creator.get('email'),
        'skills': sorted(creator.get('skills') or []),
        'rating': creator.get('rating'),
        'completedProjects': creator.get('completedProjects', 0),
    }


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_amount(value: Any, field: str) -> Optional[Decimal]:
    """Positive money amount, or None when absent."""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return amount


def _parse_days(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValidationError('estimatedDays must be an integer')
    if days <= 0:
        raise ValidationError('estimatedDays must be greater than zero')
    return days


def _parse_deadline(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    try:
        deadline = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError('deadline must be an ISO-8601 date or datetime')
    return deadline.isoformat()
