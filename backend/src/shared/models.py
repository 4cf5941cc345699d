"""
Data models and status constants for the fulfillment platform.
Request lifecycle: Pending → OpenForBids → BidAccepted → Completed, with Cancelled
reachable from any state before a bid is accepted.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional


class RequestStatus(str, Enum):
    """Request lifecycle statuses."""
    PENDING = 'PENDING'
    OPEN_FOR_BIDS = 'OPEN_FOR_BIDS'
    BID_ACCEPTED = 'BID_ACCEPTED'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'


class BidStatus(str, Enum):
    """Bid review statuses."""
    PENDING = 'PENDING'
    ACCEPTED = 'ACCEPTED'
    REJECTED = 'REJECTED'


class ProjectStatus(str, Enum):
    """Project execution statuses."""
    IN_PROGRESS = 'IN_PROGRESS'
    SUBMITTED = 'SUBMITTED'
    APPROVED = 'APPROVED'


class DeliveryStatus(str, Enum):
    """Webhook delivery record statuses."""
    PENDING = 'PENDING'
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'


class WebhookEvent:
    """Event names sent to organization endpoints."""
    REQUEST_STATUS_CHANGED = 'request.status_changed'
    PROJECT_COMPLETED = 'project.completed'
    TEST = 'webhook.test'


# Request statuses in which bids may be submitted or accepted.
BID_ACCEPTING_STATUSES: FrozenSet[RequestStatus] = frozenset({
    RequestStatus.PENDING,
    RequestStatus.OPEN_FOR_BIDS,
})

REQUEST_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.OPEN_FOR_BIDS,
        RequestStatus.BID_ACCEPTED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.OPEN_FOR_BIDS: frozenset({
        RequestStatus.BID_ACCEPTED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.BID_ACCEPTED: frozenset({RequestStatus.COMPLETED}),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

# BID_ACCEPTED and COMPLETED need companion writes (bids, project), so they are
# reachable only through accept_bid and submit_project.
MANUAL_TARGETS: FrozenSet[RequestStatus] = frozenset({
    RequestStatus.OPEN_FOR_BIDS,
    RequestStatus.CANCELLED,
})


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    """Check a Request transition against the lifecycle table."""
    return target in REQUEST_TRANSITIONS[current]


def parse_request_status(value: Optional[str]) -> Optional[RequestStatus]:
    """Map a raw string onto RequestStatus, or None when it names no status."""
    if value is None:
        return None
    try:
        return RequestStatus(str(value).strip().upper())
    except ValueError:
        return None
