"""
Update Request Status Handler.
PATCH /requests/{requestId}/status
Body: { "status": "OPEN_FOR_BIDS" | "CANCELLED", "notes"? }
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

        request = services.workflow.change_request_status(
            org['orgId'],
            get_path_param(event, 'requestId'),
            body.get('status'),
            body.get('notes')
        )

        return format_response(200, {'success': True, 'data': request})

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error updating request status: {e}")
        return internal_error('Failed to update request status')
