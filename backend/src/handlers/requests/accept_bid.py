"""
Accept Bid Handler.
POST /requests/{requestId}/accept-bid
Body: { "bidId": "...", "notes"? }

Concurrent acceptances on the same request are serialized by the store:
the first commit wins, the others get 409 InvalidTransition.
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, get_path_param, internal_error, parse_body


def handler(event, context):
    log_event(event)

    try:
        services = get_services()
        org = services.identity.authenticate(event)
        body = parse_body(event)

        result = services.workflow.accept_bid(
            org['orgId'],
            get_path_param(event, 'requestId'),
            body.get('bidId'),
            body.get('notes')
        )

        return format_response(200, {'success': True, 'data': result})

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error accepting bid: {e}")
        return internal_error('Failed to accept bid')
