"""
Error taxonomy for the fulfillment workflow.

Every error a caller can see derives from FulfillmentError and carries a
stable `kind` plus the HTTP status the API layer answers with. Store-layer
exceptions (botocore ClientError) are translated before they leave the
shared package.
"""
from typing import Any, Dict, Optional


class FulfillmentError(Exception):
    """Base class for errors returned to API callers."""

    kind = 'FulfillmentError'
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {'error': self.kind, 'message': self.message}


class ValidationError(FulfillmentError):
    """Missing or malformed input. The caller must correct it."""

    kind = 'ValidationError'
    status_code = 400


class AuthenticationError(FulfillmentError):
    """Missing, unknown or inactive credential."""

    kind = 'AuthenticationError'

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


class NotFound(FulfillmentError):
    kind = 'NotFound'
    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        message = f"{entity} not found" if not entity_id else f"{entity} {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class StateError(FulfillmentError):
    """A state-machine precondition does not hold."""

    status_code = 409

    def __init__(self, message: str, current_status: Optional[str], attempted_status: Optional[str]):
        super().__init__(message)
        self.current_status = current_status
        self.attempted_status = attempted_status

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body['currentStatus'] = self.current_status
        body['attemptedStatus'] = self.attempted_status
        return body


class InvalidTransition(StateError):
    kind = 'InvalidTransition'

    def __init__(self, current_status: Any, attempted_status: Any, entity: str = 'Request'):
        current = _status_value(current_status)
        attempted = _status_value(attempted_status)
        super().__init__(
            f"Cannot move {entity} from {current} to {attempted}",
            current,
            attempted,
        )
        self.entity = entity


class NotAcceptingBids(StateError):
    kind = 'NotAcceptingBids'

    def __init__(self, current_status: Any):
        current = _status_value(current_status)
        super().__init__(f"Request is not accepting bids (status: {current})", current, None)


class DuplicateBid(FulfillmentError):
    kind = 'DuplicateBid'
    status_code = 409

    def __init__(self, request_id: str, creator_id: str):
        super().__init__(f"Creator {creator_id} already has a bid on request {request_id}")


class Conflict(FulfillmentError):
    """Concurrent writes kept invalidating the operation's reads. Safe to retry."""

    kind = 'Conflict'
    status_code = 409


class DeliveryError(Exception):
    """Webhook send failed. Recorded on the DeliveryRecord, never surfaced to workflow callers."""

    def __init__(self, summary: str, status_code: Optional[int] = None):
        super().__init__(summary)
        self.summary = summary
        self.status_code = status_code


def _status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, 'value', status)
