"""
Submit Bid Handler (creator workspace, unauthenticated).
POST /creators/bids
Body: { "requestId", "creatorId", "amount", "proposal", "estimatedDays"? }
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, internal_error, parse_body


def handler(event, context):
    log_event(event)

    try:
        body = parse_body(event)
        bid = get_services().workflow.submit_bid(
            body.get('requestId'),
            body.get('creatorId'),
            body.get('amount'),
            body.get('proposal'),
            body.get('estimatedDays')
        )

        return format_response(201, {'success': True, 'data': bid})

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error creating bid: {e}")
        return internal_error('Failed to create bid')
