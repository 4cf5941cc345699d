"""
Get Request Handler.
GET /requests/{requestId}
Includes bids, project and status history.
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, get_path_param, internal_error


def handler(event, context):
    log_event(event)

    try:
        services = get_services()
        org = services.identity.authenticate(event)
        request = services.workflow.get_request(org['orgId'], get_path_param(event, 'requestId'))

        return format_response(200, {'success': True, 'data': request})

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching request: {e}")
        return internal_error('Failed to fetch request')
